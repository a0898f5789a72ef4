"""Notification bookkeeping: per-recipient delivery records and global keys."""

from datetime import datetime, timezone

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class NotificationRecord(SQLModel, table=True):
    """Existence of a row means the notification was attempted for this recipient."""

    __tablename__ = "notification_record"
    __table_args__ = (
        UniqueConstraint("trade_id", "recipient_id", "alert_type", name="uq_notification_record"),
    )

    id: int | None = Field(default=None, primary_key=True)
    trade_id: str = Field(index=True)
    recipient_id: int = Field(index=True)
    alert_type: str  # "ENTRY" or a follow-up type key ("TP1", "TP2", "SL", ...)
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    delivery_failed: bool = False
    error: str | None = None


class NotificationKey(SQLModel, table=True):
    """Process-wide idempotency keys seen by the entry relay."""

    __tablename__ = "notification_key"

    id: int | None = Field(default=None, primary_key=True)
    key: str = Field(unique=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
