"""Shared API dependencies."""

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlmodel import Session, select

from alert_relay.config import settings
from alert_relay.database import engine, get_session
from alert_relay.engine.lifecycle import LifecycleEngine
from alert_relay.engine.position_store import PositionStore
from alert_relay.models.user import User
from alert_relay.services.auth import decode_access_token, secrets_match
from alert_relay.services.dispatcher import NotificationDispatcher
from alert_relay.services.telegram_bot import get_bot
from alert_relay.services.tiering import lookup_tier

bearer_scheme = HTTPBearer()

_dispatcher: NotificationDispatcher | None = None


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> User:
    """Validate JWT and return the current user."""
    username = decode_access_token(credentials.credentials)
    if username is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    user = session.exec(select(User).where(User.username == username)).first()
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user


def get_position_store() -> PositionStore:
    return PositionStore(engine)


def get_lifecycle_engine(store: PositionStore = Depends(get_position_store)) -> LifecycleEngine:
    return LifecycleEngine(
        store,
        tier_lookup=lambda symbol, timeframe, setup: lookup_tier(engine, symbol, timeframe, setup),
    )


def get_dispatcher() -> NotificationDispatcher:
    """Process-wide dispatcher; holds the follow-up burst cache."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher(
            engine,
            sender=None,
            blocked_marker=settings.relay_blocked_marker,
            followup_ttl_seconds=settings.followup_cache_seconds,
        )
    if _dispatcher.sender is None:
        # The bot starts after the first import of this module
        _dispatcher.sender = get_bot()
    return _dispatcher


def require_relay_secret(x_relay_secret: str | None = Header(default=None)):
    """Shared-secret check for relay routes; disabled when no secret is configured."""
    if settings.relay_secret and not secrets_match(settings.relay_secret, x_relay_secret):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid relay secret")


def close_dispatcher():
    """Release the dispatcher's database workers on shutdown."""
    global _dispatcher
    if _dispatcher is not None:
        _dispatcher.close()
        _dispatcher = None
