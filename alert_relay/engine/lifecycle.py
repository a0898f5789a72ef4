"""Trade lifecycle engine.

Every inbound signal is either an entry (no TP/SL flag set) or an exit
update for a trade that was opened earlier. State per trade:

    OPEN (no leg hit) -> OPEN (one TP leg hit) -> CLOSED
    OPEN (any)        -> CLOSED                    via stop-loss

Updates are applied with conditional writes ("only while still open"), not
locks. Partial updates and final closes are separate writes, so an exit
request always ends with a re-read that closes a trade whose two legs are
both hit but which is still open.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from alert_relay.engine.errors import InvalidSignal, StoreError, TradeNotFound
from alert_relay.engine.pnl import blended_pnl_percent, pnl_percent
from alert_relay.engine.position_store import PositionStore
from alert_relay.engine.trade_key import TradeKey, resolve_trade_key
from alert_relay.models.trade import Trade
from alert_relay.schemas.signal import SignalPayload
from alert_relay.utils.constants import (
    ALERT_ENTRY,
    ALERT_SL,
    ALERT_TP1,
    ALERT_TP2,
    CLOSE_AUTO_OPPOSITE,
    CLOSE_SL,
    CLOSE_SL_AFTER_PARTIAL,
    CLOSE_TP1_TP2,
    DEFAULT_TIER,
    DIRECTIONS,
    LONG,
    SHORT,
)

logger = logging.getLogger(__name__)

# (symbol, timeframe minutes, setup type) -> tier
TierLookup = Callable[[str, int, str | None], str]

_DIRECTION_ALIASES = {
    "BUY": LONG,
    "BULL": LONG,
    "BULLISH": LONG,
    "SELL": SHORT,
    "BEAR": SHORT,
    "BEARISH": SHORT,
}


@dataclass
class LifecycleResult:
    status: str  # "opened", "updated", "closed", "ignored"
    trade_id: str
    reason: str | None = None  # why an event was ignored
    trade: Trade | None = None
    auto_closed: list[str] = field(default_factory=list)
    events: list[str] = field(default_factory=list)  # ENTRY / TP1 / TP2 / SL applied

    @property
    def ignored(self) -> bool:
        return self.status == "ignored"


def normalize_direction(value: str | None) -> str:
    text = (value or "").strip().upper()
    text = _DIRECTION_ALIASES.get(text, text)
    if text not in DIRECTIONS:
        raise InvalidSignal(f"direction must be LONG or SHORT, got {value!r}")
    return text


def opposite(direction: str) -> str:
    return SHORT if direction == LONG else LONG


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def _stage(trade_id: str, stage: str):
    """Log primary-path store failures with enough context to replay."""
    try:
        yield
    except StoreError as e:
        e.stage = e.stage or stage
        logger.error(f"[lifecycle] {trade_id} failed at stage={stage}: {e}")
        raise


class LifecycleEngine:
    def __init__(self, store: PositionStore, tier_lookup: TierLookup | None = None):
        self.store = store
        self._tier_lookup = tier_lookup

    def process(self, payload: SignalPayload) -> LifecycleResult:
        """Route a webhook payload to the entry or exit path."""
        key = resolve_trade_key(payload.id)
        if payload.is_exit:
            return self.apply_exit(key, payload)
        return self.open_entry(key, payload)

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    def open_entry(self, key: TradeKey, payload: SignalPayload) -> LifecycleResult:
        direction = normalize_direction(payload.direction)
        now = _utcnow()

        auto_closed = []
        try:
            closed_id = self._auto_close_opposite(key, direction, payload.entry_price, now)
            if closed_id:
                auto_closed.append(closed_id)
        except Exception as e:
            # A lost auto-close is less harmful than a lost entry
            logger.error(f"[lifecycle] {key.trade_id} failed at stage=auto_close: {e}")

        with _stage(key.trade_id, "dedupe"):
            existing = self.store.get_open(key.trade_id)
        if existing is not None:
            logger.info(f"[lifecycle] {key.trade_id} duplicate entry ignored")
            return LifecycleResult(
                "ignored", key.trade_id, reason="duplicate_entry",
                trade=existing, auto_closed=auto_closed,
            )

        trade = Trade(
            trade_id=key.trade_id,
            symbol=key.symbol,
            timeframe=key.timeframe,
            timeframe_token=key.raw_token,
            direction=direction,
            setup_type=payload.setup_type,
            entry_price=payload.entry_price,
            stop_loss=payload.stop_loss,
            risk=payload.risk,
            score=payload.score,
            started_at=now,
            timestamp=now,
            tier=self._assign_tier(key, payload.setup_type),
            signal=payload.opaque_fields(),
        )

        with _stage(key.trade_id, "entry_insert"):
            inserted = self.store.put_if_absent(trade)
        if not inserted:
            return LifecycleResult(
                "ignored", key.trade_id, reason="duplicate_entry", auto_closed=auto_closed,
            )

        logger.info(
            f"[lifecycle] {key.trade_id} opened {direction} @ {trade.entry_price} "
            f"tier={trade.tier}"
        )
        return LifecycleResult(
            "opened", key.trade_id, trade=trade,
            auto_closed=auto_closed, events=[ALERT_ENTRY],
        )

    def _auto_close_opposite(
        self,
        key: TradeKey,
        direction: str,
        entry_price: float | None,
        now: datetime,
    ) -> str | None:
        """Close the latest open opposite-direction trade on the same symbol+timeframe."""
        opp = self.store.latest_open(key.symbol, key.timeframe, opposite(direction))
        if opp is None:
            return None
        if opp.sl_hit:
            logger.info(f"[lifecycle] {opp.trade_id} stop-loss already hit, auto-close skipped")
            return None

        patch = {"auto_closed": True, "closed_at": now, "timestamp": now}
        legs = {"tp1": (opp.tp1_hit, opp.tp1_price), "tp2": (opp.tp2_hit, opp.tp2_price)}
        if entry_price:
            # Legs still pending are filled at the new entry's price
            for leg, (hit, _) in list(legs.items()):
                if hit:
                    continue
                legs[leg] = (True, entry_price)
                patch[f"{leg}_hit"] = True
                patch[f"{leg}_price"] = entry_price
                patch[f"{leg}_percent"] = pnl_percent(opp.entry_price, entry_price, opp.direction)

        both_hit = legs["tp1"][0] and legs["tp2"][0]
        patch["close_reason"] = CLOSE_TP1_TP2 if both_hit else CLOSE_AUTO_OPPOSITE
        tp1_price, tp2_price = legs["tp1"][1], legs["tp2"][1]
        if tp1_price is not None and tp2_price is not None:
            patch["pnl_percent"] = blended_pnl_percent(
                opp.entry_price, tp1_price, tp2_price, opp.direction
            )

        if not self.store.update_where_open(opp.trade_id, patch):
            return None
        logger.info(
            f"[lifecycle] {opp.trade_id} auto-closed by {key.trade_id} "
            f"reason={patch['close_reason']} pnl={patch.get('pnl_percent')}"
        )
        return opp.trade_id

    def _assign_tier(self, key: TradeKey, setup_type: str | None) -> str:
        if self._tier_lookup is None:
            return DEFAULT_TIER
        try:
            return self._tier_lookup(key.symbol, key.timeframe, setup_type)
        except Exception as e:
            logger.error(f"[lifecycle] {key.trade_id} failed at stage=tier_lookup: {e}")
            return DEFAULT_TIER

    # ------------------------------------------------------------------
    # Exit updates
    # ------------------------------------------------------------------

    def apply_exit(self, key: TradeKey, payload: SignalPayload) -> LifecycleResult:
        trade_id = key.trade_id
        with _stage(trade_id, "exit_read"):
            trade = self.store.get(trade_id)
        if trade is None:
            raise TradeNotFound(f"no trade found for {trade_id}")
        if trade.closed_at is not None:
            return LifecycleResult("ignored", trade_id, reason="already_closed", trade=trade)
        if trade.sl_hit and (payload.tp1_hit or payload.tp2_hit):
            return LifecycleResult("ignored", trade_id, reason="sl_blocks_tp", trade=trade)

        now = _utcnow()
        if payload.sl_hit:
            return self._apply_stop_loss(trade, payload, now)

        legs = {"tp1": (trade.tp1_hit, trade.tp1_price), "tp2": (trade.tp2_hit, trade.tp2_price)}
        requested = {
            "tp1": (payload.tp1_hit, _first(payload.tp1_price, payload.price)),
            "tp2": (payload.tp2_hit, _first(payload.tp2_price, payload.price)),
        }
        for leg, (wanted, price) in requested.items():
            if wanted and not legs[leg][0] and price is None:
                raise InvalidSignal(f"{trade_id}: {leg} hit without {leg}Price or price")

        events = []
        written: dict[str, float] = {}  # legs recorded by this request
        closed = False
        for leg, alert_type in (("tp1", ALERT_TP1), ("tp2", ALERT_TP2)):
            wanted, price = requested[leg]
            if not wanted or legs[leg][0]:
                continue
            outcome = self._apply_leg(trade, leg, price, legs, now)
            if outcome == "lost":
                return LifecycleResult("ignored", trade_id, reason="already_closed")
            legs[leg] = (True, price)
            written[leg] = price
            events.append(alert_type)
            if outcome == "closed":
                closed = True
                break

        if not closed:
            closed = self._close_if_both_legs_hit(trade_id, written, now)

        with _stage(trade_id, "exit_reread"):
            current = self.store.get(trade_id)
        if closed:
            return LifecycleResult("closed", trade_id, trade=current, events=events)
        if events:
            return LifecycleResult("updated", trade_id, trade=current, events=events)
        return LifecycleResult("ignored", trade_id, reason="duplicate_leg", trade=current)

    def _apply_stop_loss(self, trade: Trade, payload: SignalPayload, now: datetime) -> LifecycleResult:
        sl_price = _first(payload.sl_price, payload.price, trade.stop_loss)
        if sl_price is None:
            raise InvalidSignal(f"{trade.trade_id}: sl hit without slPrice, price or a stored stop")
        partial = trade.tp1_hit or trade.tp2_hit
        patch = {
            "sl_hit": True,
            "sl_price": sl_price,
            "pnl_percent": pnl_percent(trade.entry_price, sl_price, trade.direction),
            "closed_at": now,
            "close_reason": CLOSE_SL_AFTER_PARTIAL if partial else CLOSE_SL,
            "timestamp": now,
        }
        with _stage(trade.trade_id, "exit_update"):
            rows = self.store.update_where_open(trade.trade_id, patch)
        if not rows:
            return LifecycleResult("ignored", trade.trade_id, reason="already_closed")

        logger.info(
            f"[lifecycle] {trade.trade_id} stopped out @ {sl_price} "
            f"reason={patch['close_reason']} pnl={patch['pnl_percent']}"
        )
        with _stage(trade.trade_id, "exit_reread"):
            current = self.store.get(trade.trade_id)
        return LifecycleResult("closed", trade.trade_id, trade=current, events=[ALERT_SL])

    def _apply_leg(
        self,
        trade: Trade,
        leg: str,
        price: float | None,
        legs: dict[str, tuple[bool, float | None]],
        now: datetime,
    ) -> str:
        """Record one take-profit leg; close in the same write if the other leg is in.

        Returns "updated", "closed" or "lost" (the trade closed under us).
        """
        other = "tp2" if leg == "tp1" else "tp1"
        patch = {
            f"{leg}_hit": True,
            f"{leg}_price": price,
            f"{leg}_percent": pnl_percent(trade.entry_price, price, trade.direction),
            "timestamp": now,
        }
        other_hit, other_price = legs[other]
        if other_hit:
            prices = {leg: price, other: other_price}
            patch.update(self._final_close_patch(trade, prices["tp1"], prices["tp2"], now))

        with _stage(trade.trade_id, "exit_update"):
            rows = self.store.update_where_open(trade.trade_id, patch)
        if not rows:
            return "lost"

        if other_hit:
            logger.info(
                f"[lifecycle] {trade.trade_id} closed on {leg.upper()} "
                f"pnl={patch['pnl_percent']}"
            )
            return "closed"
        logger.info(f"[lifecycle] {trade.trade_id} {leg.upper()} hit @ {price}")
        return "updated"

    def _close_if_both_legs_hit(
        self,
        trade_id: str,
        written: dict[str, float],
        now: datetime,
    ) -> bool:
        """Close a trade left open with both legs hit, e.g. by two racing updates."""
        with _stage(trade_id, "final_close"):
            current = self.store.get(trade_id)
        if current is None or current.closed_at is not None:
            return False
        if not (current.tp1_hit and current.tp2_hit):
            return False

        # A leg written by this request wins; every other leg uses its stored price
        tp1_price = _first(written.get("tp1"), current.tp1_price)
        tp2_price = _first(written.get("tp2"), current.tp2_price)
        patch = self._final_close_patch(current, tp1_price, tp2_price, now)
        patch["timestamp"] = now

        with _stage(trade_id, "final_close"):
            rows = self.store.update_where_open(trade_id, patch)
        if rows:
            logger.warning(
                f"[lifecycle] {trade_id} both legs hit but still open, "
                f"closed by safeguard pnl={patch['pnl_percent']}"
            )
        return bool(rows)

    @staticmethod
    def _final_close_patch(
        trade: Trade,
        tp1_price: float | None,
        tp2_price: float | None,
        now: datetime,
    ) -> dict:
        pnl = None
        if tp1_price is not None and tp2_price is not None:
            pnl = blended_pnl_percent(trade.entry_price, tp1_price, tp2_price, trade.direction)
        return {
            "pnl_percent": pnl,
            "closed_at": now,
            "close_reason": CLOSE_TP1_TP2,
        }
