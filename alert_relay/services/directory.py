"""Recipient directory: channel linking and subscription preferences.

Linking works with a one-time numeric code: the recipient asks for a code
over the API, then sends it to the bot (``/link 123456``). The bot claims
the code and records its chat id as the recipient's verified handle.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from alert_relay.engine.errors import InvalidTradeKey
from alert_relay.engine.trade_key import timeframe_minutes
from alert_relay.models.recipient import ChannelLink, LinkCode, RecipientPreference
from alert_relay.utils.constants import DEFAULT_TIER

logger = logging.getLogger(__name__)

CODE_DIGITS = 6
_MAX_CODE_ATTEMPTS = 10
_CHAT_TAKEN = "This chat is already linked to another account. Unlink it there first."


@dataclass
class ClaimResult:
    ok: bool
    message: str  # shown to the user in the channel
    recipient_id: int | None = None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _new_code() -> str:
    return str(secrets.randbelow(10**CODE_DIGITS)).zfill(CODE_DIGITS)


# ---------------------------------------------------------------------------
# Linking
# ---------------------------------------------------------------------------

def request_link_code(session: Session, recipient_id: int, ttl_minutes: int) -> LinkCode:
    """Issue a fresh one-time code bound to ``recipient_id``."""
    now = datetime.now(timezone.utc)

    for _ in range(_MAX_CODE_ATTEMPTS):
        code = _new_code()
        if session.get(LinkCode, code) is None:
            break
    else:
        raise RuntimeError("could not allocate a unique link code")

    link_code = LinkCode(
        code=code,
        recipient_id=recipient_id,
        created_at=now,
        expires_at=now + timedelta(minutes=ttl_minutes),
    )
    session.add(link_code)

    link = session.exec(select(ChannelLink).where(ChannelLink.recipient_id == recipient_id)).first()
    if link is None:
        session.add(ChannelLink(recipient_id=recipient_id, verified=False))

    session.commit()
    session.refresh(link_code)
    logger.info(f"[directory] Issued link code for recipient {recipient_id}")
    return link_code


def claim_link_code(
    session: Session,
    code: str,
    chat_id: int | str,
    username: str | None = None,
) -> ClaimResult:
    """Verify a code sent from the channel and bind the chat to its recipient."""
    code = (code or "").strip()
    if not code.isdigit():
        return ClaimResult(False, "Send the numeric code from your account page, e.g. /link 123456.")

    link_code = session.get(LinkCode, code)
    now = datetime.now(timezone.utc)
    if link_code is None or link_code.claimed_at is not None:
        return ClaimResult(False, "Unknown code. Request a new one from your account page.")
    if _as_utc(link_code.expires_at) < now:
        return ClaimResult(False, "This code has expired. Request a new one from your account page.")

    # A chat delivers to one recipient only
    holder = session.exec(
        select(ChannelLink).where(
            ChannelLink.chat_id == str(chat_id),
            ChannelLink.recipient_id != link_code.recipient_id,
        )
    ).first()
    if holder is not None and holder.verified:
        return ClaimResult(False, _CHAT_TAKEN)
    if holder is not None:
        holder.chat_id = None
        session.add(holder)
        session.flush()

    link = session.exec(
        select(ChannelLink).where(ChannelLink.recipient_id == link_code.recipient_id)
    ).first()
    if link is None:
        link = ChannelLink(recipient_id=link_code.recipient_id)

    link.chat_id = str(chat_id)
    link.channel_username = username
    link.verified = True
    link.linked_at = now
    link_code.claimed_at = now
    session.add(link)
    session.add(link_code)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.warning(f"[directory] chat {chat_id} was linked concurrently, claim refused")
        return ClaimResult(False, _CHAT_TAKEN)

    logger.info(f"[directory] Recipient {link_code.recipient_id} linked to chat {chat_id}")
    return ClaimResult(True, "Linked. You will receive trade alerts here.", link_code.recipient_id)


def link_status(session: Session, recipient_id: int) -> dict:
    link = session.exec(select(ChannelLink).where(ChannelLink.recipient_id == recipient_id)).first()
    linked = bool(link and link.verified and link.chat_id)
    return {
        "linked": linked,
        "chat_id": link.chat_id if linked else None,
        "username": link.channel_username if linked else None,
    }


def unlink(session: Session, recipient_id: int) -> bool:
    link = session.exec(select(ChannelLink).where(ChannelLink.recipient_id == recipient_id)).first()
    if link is None:
        return False
    session.delete(link)
    session.commit()
    logger.info(f"[directory] Recipient {recipient_id} unlinked")
    return True


def find_recipient_by_chat(session: Session, chat_id: int | str) -> ChannelLink | None:
    return session.exec(
        select(ChannelLink).where(
            ChannelLink.chat_id == str(chat_id),
            ChannelLink.verified == True,  # noqa: E712
        )
    ).first()


def linked_recipients(session: Session) -> list[tuple[ChannelLink, RecipientPreference | None]]:
    """All verified links with their preferences (None = defaults)."""
    links = session.exec(
        select(ChannelLink).where(
            ChannelLink.verified == True,  # noqa: E712
            ChannelLink.chat_id.is_not(None),
        )
    ).all()
    if not links:
        return []
    ids = [link.recipient_id for link in links]
    prefs = session.exec(
        select(RecipientPreference).where(RecipientPreference.recipient_id.in_(ids))  # type: ignore[attr-defined]
    ).all()
    pref_map = {p.recipient_id: p for p in prefs}
    return [(link, pref_map.get(link.recipient_id)) for link in links]


def purge_expired_codes(session: Session, now: datetime | None = None) -> int:
    """Delete expired or already-claimed link codes. Returns rows removed."""
    now = now or datetime.now(timezone.utc)
    codes = session.exec(select(LinkCode)).all()
    removed = 0
    for code in codes:
        if code.claimed_at is not None or _as_utc(code.expires_at) < now:
            session.delete(code)
            removed += 1
    session.commit()
    return removed


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------

def get_preferences(session: Session, recipient_id: int) -> RecipientPreference:
    prefs = session.get(RecipientPreference, recipient_id)
    if prefs is None:
        prefs = RecipientPreference(recipient_id=recipient_id)
    return prefs


def update_preferences(session: Session, recipient_id: int, changes: dict) -> RecipientPreference:
    prefs = session.get(RecipientPreference, recipient_id)
    if prefs is None:
        prefs = RecipientPreference(recipient_id=recipient_id)
    for key, value in changes.items():
        if key in ("symbols", "timeframes", "tiers"):
            # JSON columns are not mutation-tracked; assign a new list
            value = sorted({str(v).strip() for v in value if str(v).strip()})
        setattr(prefs, key, value)
    prefs.updated_at = datetime.now(timezone.utc)
    session.add(prefs)
    session.commit()
    session.refresh(prefs)
    return prefs


def set_channel_enabled(session: Session, recipient_id: int, enabled: bool) -> RecipientPreference:
    return update_preferences(session, recipient_id, {"channel_enabled": enabled})


def _timeframe_variants(timeframe: str | int | None) -> set[str]:
    """Allow-list forms of a timeframe: "1D" also matches "1440"."""
    if timeframe is None or str(timeframe).strip() == "":
        return set()
    raw = str(timeframe).strip().upper()
    variants = {raw}
    try:
        variants.add(str(timeframe_minutes(raw)))
    except InvalidTradeKey:
        pass
    return variants


def preferences_allow(
    prefs: RecipientPreference | None,
    symbol: str | None,
    timeframe: str | int | None,
    tier: str | None,
) -> bool:
    """Whether a recipient wants an alert. Empty allow-lists allow everything."""
    if prefs is None:
        return True
    if not prefs.channel_enabled:
        return False
    if prefs.symbols:
        allowed = {s.upper() for s in prefs.symbols}
        if not symbol or symbol.upper() not in allowed:
            return False
    if prefs.timeframes:
        allowed = set()
        for tf in prefs.timeframes:
            allowed |= _timeframe_variants(tf)
        if not (_timeframe_variants(timeframe) & allowed):
            return False
    if prefs.tiers:
        if (tier or DEFAULT_TIER).lower() not in {t.lower() for t in prefs.tiers}:
            return False
    return True
