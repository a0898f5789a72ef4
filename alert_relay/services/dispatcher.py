"""Notification dispatcher: at-most-once fan-out of prerendered alerts.

The text is composed upstream and sent verbatim. Delivery is guarded by a
unique ``NotificationRecord`` row per (trade, recipient, alert type) that is
inserted *before* the send: a failed send or a crash after the insert means
that recipient is not retried, never that it is messaged twice.

Database work runs on a small thread pool so the event loop only awaits the
sends.
"""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from alert_relay.models.notification import NotificationKey, NotificationRecord
from alert_relay.models.recipient import ChannelLink, RecipientPreference
from alert_relay.services import directory
from alert_relay.utils.constants import ALERT_ENTRY

logger = logging.getLogger(__name__)


class MessageSender(Protocol):
    async def send_message(self, chat_id: str, text: str) -> None: ...


class InvalidNotification(ValueError):
    """A relay request is missing a required field."""


@dataclass
class Notification:
    trade_id: str
    title: str
    body: str
    alert_type: str = ALERT_ENTRY
    idempotency_key: str | None = None
    symbol: str | None = None
    timeframe: str | None = None
    tier: str | None = None

    @property
    def text(self) -> str:
        return f"{self.title}\n\n{self.body}"


@dataclass
class DispatchReport:
    trade_id: str
    alert_type: str
    suppressed: bool = False  # content firewall
    duplicate_key: bool = False  # idempotency key already seen (advisory)
    burst_duplicate: bool = False  # follow-up absorbed by the in-process cache
    recipients: int = 0
    sent: int = 0
    already_sent: int = 0
    filtered: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class BurstCache:
    """Tiny TTL set used to absorb immediate duplicate follow-up requests."""

    def __init__(self, ttl_seconds: float):
        self.ttl = ttl_seconds
        self._entries: dict[tuple, float] = {}

    def add_if_absent(self, key: tuple) -> bool:
        """Returns False if ``key`` was added less than ``ttl`` seconds ago."""
        now = time.monotonic()
        self._entries = {k: exp for k, exp in self._entries.items() if exp > now}
        if key in self._entries:
            return False
        self._entries[key] = now + self.ttl
        return True

    def discard(self, key: tuple):
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class NotificationDispatcher:
    def __init__(
        self,
        engine: Engine,
        sender: MessageSender | None,
        blocked_marker: str = "",
        followup_ttl_seconds: float = 120,
        global_key_check: bool = True,
        db_workers: int = 4,
    ):
        self._engine = engine
        self.sender = sender
        self.blocked_marker = blocked_marker.lower()
        self.global_key_check = global_key_check
        self.followup_cache = BurstCache(followup_ttl_seconds)
        self._executor = ThreadPoolExecutor(max_workers=db_workers, thread_name_prefix="dispatch-db")

    def close(self):
        self._executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def dispatch_entry(self, note: Notification) -> DispatchReport:
        """Relay an entry alert to every linked recipient whose preferences match."""
        self._require(note, ("trade_id", "idempotency_key", "title", "body"))
        report = DispatchReport(trade_id=note.trade_id, alert_type=note.alert_type)

        if self._is_blocked(note):
            report.suppressed = True
            return report

        if self.global_key_check and not await self._in_db(self._claim_key, note.idempotency_key):
            # Advisory only: the per-recipient records below are authoritative
            report.duplicate_key = True
            logger.info(f"[dispatch] {note.trade_id} duplicate idempotency key {note.idempotency_key}")

        recipients = await self._in_db(self._linked_recipients)

        targets = []
        for link, prefs in recipients:
            if directory.preferences_allow(prefs, note.symbol, note.timeframe, note.tier):
                targets.append(link)
            else:
                report.filtered += 1

        await self._fan_out(note, targets, report)
        return report

    async def dispatch_followup(self, note: Notification) -> DispatchReport:
        """Relay a follow-up (TP/SL) alert to the recipients of the trade's entry alert."""
        self._require(note, ("trade_id", "alert_type", "title", "body"))
        report = DispatchReport(trade_id=note.trade_id, alert_type=note.alert_type)

        if self._is_blocked(note):
            report.suppressed = True
            return report

        cache_key = (note.trade_id, note.alert_type)
        if not self.followup_cache.add_if_absent(cache_key):
            report.burst_duplicate = True
            logger.info(f"[dispatch] {note.trade_id} {note.alert_type} burst duplicate dropped")
            return report

        try:
            targets = await self._in_db(self._entry_recipients, note.trade_id)
        except SQLAlchemyError:
            self.followup_cache.discard(cache_key)
            raise

        await self._fan_out(note, targets, report)
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _in_db(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    @staticmethod
    def _require(note: Notification, fields: tuple[str, ...]):
        missing = [name for name in fields if not getattr(note, name)]
        if missing:
            raise InvalidNotification(f"missing required fields: {', '.join(missing)}")

    def _is_blocked(self, note: Notification) -> bool:
        if self.blocked_marker and self.blocked_marker in note.body.lower():
            logger.warning(f"[dispatch] {note.trade_id} {note.alert_type} suppressed by content filter")
            return True
        return False

    def _claim_key(self, key: str) -> bool:
        """First-writer-wins insert of a process-wide idempotency key."""
        try:
            with Session(self._engine) as session:
                session.add(NotificationKey(key=key))
                session.commit()
        except IntegrityError:
            return False
        except SQLAlchemyError as e:
            logger.warning(f"[dispatch] idempotency key check unavailable: {e}")
        return True

    def _linked_recipients(self) -> list[tuple[ChannelLink, RecipientPreference | None]]:
        with Session(self._engine) as session:
            return directory.linked_recipients(session)

    def _entry_recipients(self, trade_id: str) -> list[ChannelLink]:
        """Verified links of recipients that got the ENTRY alert and still want messages."""
        with Session(self._engine) as session:
            recipient_ids = session.exec(
                select(NotificationRecord.recipient_id).where(
                    NotificationRecord.trade_id == trade_id,
                    NotificationRecord.alert_type == ALERT_ENTRY,
                )
            ).all()
            if not recipient_ids:
                return []

            links = session.exec(
                select(ChannelLink).where(
                    ChannelLink.recipient_id.in_(recipient_ids),  # type: ignore[attr-defined]
                    ChannelLink.verified == True,  # noqa: E712
                    ChannelLink.chat_id.is_not(None),
                )
            ).all()
            disabled = set(
                session.exec(
                    select(RecipientPreference.recipient_id).where(
                        RecipientPreference.recipient_id.in_(recipient_ids),  # type: ignore[attr-defined]
                        RecipientPreference.channel_enabled == False,  # noqa: E712
                    )
                ).all()
            )
        return [link for link in links if link.recipient_id not in disabled]

    def _insert_record(self, note: Notification, recipient_id: int) -> int | None:
        """Claim the (trade, recipient, alert type) slot. None if already claimed."""
        record = NotificationRecord(
            trade_id=note.trade_id,
            recipient_id=recipient_id,
            alert_type=note.alert_type,
            idempotency_key=note.idempotency_key,
        )
        try:
            with Session(self._engine) as session:
                session.add(record)
                session.commit()
                session.refresh(record)
                return record.id
        except IntegrityError:
            return None

    def _flag_failed(self, record_id: int, error: str):
        try:
            with Session(self._engine) as session:
                record = session.get(NotificationRecord, record_id)
                if record:
                    record.delivery_failed = True
                    record.error = error[:500]
                    session.add(record)
                    session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"[dispatch] could not flag record {record_id}: {e}")

    async def _fan_out(self, note: Notification, targets: list[ChannelLink], report: DispatchReport):
        report.recipients = len(targets)
        if not targets:
            logger.info(f"[dispatch] {note.trade_id} {note.alert_type}: no recipients")
            return
        if self.sender is None:
            logger.warning(
                f"[dispatch] {note.trade_id} {note.alert_type}: no channel configured, "
                f"{len(targets)} recipients not notified"
            )
            return

        text = note.text
        for link in targets:
            try:
                record_id = await self._in_db(self._insert_record, note, link.recipient_id)
            except SQLAlchemyError as e:
                report.failed += 1
                report.errors.append(f"recipient {link.recipient_id}: {e}")
                logger.error(
                    f"[dispatch] {note.trade_id} {note.alert_type} failed at stage=record "
                    f"for recipient {link.recipient_id}: {e}"
                )
                continue
            if record_id is None:
                report.already_sent += 1
                continue

            try:
                await self.sender.send_message(link.chat_id, text)
                report.sent += 1
            except Exception as e:
                # Not retried: the record stays so a replay cannot double-send
                report.failed += 1
                report.errors.append(f"recipient {link.recipient_id}: {e}")
                logger.warning(
                    f"[dispatch] {note.trade_id} {note.alert_type} failed at stage=send "
                    f"to chat {link.chat_id}: {e}"
                )
                await self._in_db(self._flag_failed, record_id, str(e))

        logger.info(
            f"[dispatch] {note.trade_id} {note.alert_type}: sent={report.sent} "
            f"already_sent={report.already_sent} failed={report.failed} filtered={report.filtered}"
        )
