"""Recipient login: issues the bearer token used by the recipient routes."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlmodel import Session, select

from alert_relay.database import get_session
from alert_relay.models.user import User
from alert_relay.services import directory
from alert_relay.services.auth import verify_password, verify_totp, create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username: str
    password: str
    totp_code: str | None = None


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    recipient_id: int
    # Lets the client prompt for /link right after login
    linked: bool
    channel_enabled: bool
    previous_login_at: datetime | None = None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


@router.post("/login", response_model=LoginResponse)
def login(body: LoginRequest, session: Session = Depends(get_session)):
    user = session.exec(select(User).where(User.username == body.username)).first()

    # Unknown, inactive and wrong-password accounts look the same to the caller
    if not user or not user.is_active or not verify_password(body.password, user.hashed_password):
        logger.info(f"[auth] login refused for {body.username!r}")
        raise _unauthorized("Invalid credentials")
    if not verify_totp(user.totp_secret, body.totp_code):
        logger.info(f"[auth] bad second factor for {user.username!r}")
        raise _unauthorized("Invalid TOTP code")

    previous = user.last_login_at
    user.last_login_at = datetime.now(timezone.utc)
    session.add(user)
    session.commit()
    session.refresh(user)

    link = directory.link_status(session, user.id)
    prefs = directory.get_preferences(session, user.id)
    return LoginResponse(
        access_token=create_access_token(subject=user.username),
        recipient_id=user.id,
        linked=link["linked"],
        channel_enabled=prefs.channel_enabled,
        previous_login_at=previous,
    )
