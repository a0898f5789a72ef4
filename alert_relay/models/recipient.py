"""Recipient directory models: preferences, channel links and link codes."""

from datetime import datetime, timezone

from sqlalchemy import JSON
from sqlmodel import SQLModel, Field, Column


class RecipientPreference(SQLModel, table=True):
    __tablename__ = "recipient_preference"

    recipient_id: int = Field(primary_key=True, foreign_key="user.id")
    channel_enabled: bool = True
    # Empty list = allow all
    symbols: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    timeframes: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    tiers: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ChannelLink(SQLModel, table=True):
    __tablename__ = "channel_link"

    id: int | None = Field(default=None, primary_key=True)
    recipient_id: int = Field(foreign_key="user.id", unique=True, index=True)
    chat_id: str | None = Field(default=None, unique=True, index=True)
    channel_username: str | None = None
    verified: bool = False
    linked_at: datetime | None = None


class LinkCode(SQLModel, table=True):
    __tablename__ = "link_code"

    code: str = Field(primary_key=True)  # 6-digit one-time code
    recipient_id: int = Field(foreign_key="user.id", index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime
    claimed_at: datetime | None = None
