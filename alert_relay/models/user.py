"""Recipient accounts.

A user is whoever receives alerts: they log in to manage preferences and to
request the one-time code that links their chat. ``id`` is the recipient id
used by the directory and the notification ledger.
"""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(unique=True, index=True)
    hashed_password: str
    totp_secret: str | None = None  # second factor, checked only when enrolled
    is_active: bool = Field(default=True)  # inactive accounts neither log in nor count as recipients
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_login_at: datetime | None = None
