"""Trade key resolver: canonical identity from an alert identifier.

Identifiers look like ``<symbol>_<timeframe token>_<sequence>``, e.g.
``BTCUSDT_15_42`` or ``ETHUSDT_1D_7``. The symbol itself may contain
underscores, so the identifier is split from the right.
"""

from dataclasses import dataclass

from alert_relay.engine.errors import InvalidTradeKey
from alert_relay.utils.constants import TIMEFRAME_SUFFIX_MINUTES, UNDEFINED_PLACEHOLDER


@dataclass(frozen=True)
class TradeKey:
    trade_id: str
    symbol: str
    timeframe: int  # minutes
    raw_token: str
    sequence: str


def timeframe_minutes(token: str | int) -> int:
    """Normalize a timeframe token to minutes.

    "15" -> 15, "1D" -> 1440, "2W" -> 20160.
    """
    text = str(token).strip().upper()
    if not text:
        raise InvalidTradeKey("empty timeframe token")

    suffix = text[-1]
    if suffix in TIMEFRAME_SUFFIX_MINUTES:
        count = text[:-1] or "1"
        if not count.isdigit():
            raise InvalidTradeKey(f"invalid timeframe token: {token!r}")
        return int(count) * TIMEFRAME_SUFFIX_MINUTES[suffix]

    if not text.isdigit():
        raise InvalidTradeKey(f"invalid timeframe token: {token!r}")
    return int(text)


def resolve_trade_key(trade_id: str | None) -> TradeKey:
    """Split an alert identifier into symbol, timeframe and sequence."""
    if not trade_id or not isinstance(trade_id, str):
        raise InvalidTradeKey("missing trade id")

    trade_id = trade_id.strip()
    if UNDEFINED_PLACEHOLDER in trade_id.lower():
        raise InvalidTradeKey(f"trade id contains placeholder: {trade_id!r}")

    parts = trade_id.rsplit("_", 2)
    if len(parts) != 3 or not all(parts):
        raise InvalidTradeKey(f"trade id must look like SYMBOL_TF_SEQ: {trade_id!r}")

    symbol, token, sequence = parts
    return TradeKey(
        trade_id=trade_id,
        symbol=symbol,
        timeframe=timeframe_minutes(token),
        raw_token=token.upper(),
        sequence=sequence,
    )
