"""Recipient-facing API: channel linking and alert preferences."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from alert_relay.config import settings
from alert_relay.database import get_session
from alert_relay.models.user import User
from alert_relay.schemas.recipient import (
    LinkCodeRead,
    LinkStatusRead,
    PreferencesRead,
    PreferencesUpdate,
)
from alert_relay.services import directory
from alert_relay.api.deps import get_current_user

router = APIRouter(prefix="/api/recipients/me", tags=["recipients"])


@router.post("/link-code", response_model=LinkCodeRead)
def request_link_code(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Issue a one-time code to send to the bot with /link <code>."""
    link_code = directory.request_link_code(session, user.id, settings.link_code_ttl_minutes)
    return LinkCodeRead(code=link_code.code, expires_at=link_code.expires_at)


@router.get("/link", response_model=LinkStatusRead)
def get_link_status(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return directory.link_status(session, user.id)


@router.delete("/link", status_code=204)
def delete_link(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    directory.unlink(session, user.id)


@router.get("/preferences", response_model=PreferencesRead)
def get_preferences(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return directory.get_preferences(session, user.id)


@router.put("/preferences", response_model=PreferencesRead)
def update_preferences(
    data: PreferencesUpdate,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    return directory.update_preferences(session, user.id, changes)
