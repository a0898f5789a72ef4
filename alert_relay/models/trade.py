"""Trade model: one row per trade lifecycle, from entry to close."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, UniqueConstraint
from sqlmodel import SQLModel, Field, Column


class Trade(SQLModel, table=True):
    __tablename__ = "trade"
    # open_marker is 1 while open and NULL once closed, so an identifier is
    # unique among open rows but may be reused after close.
    __table_args__ = (UniqueConstraint("trade_id", "open_marker", name="uq_trade_open_id"),)

    id: int | None = Field(default=None, primary_key=True)
    trade_id: str = Field(index=True)  # e.g. "BTCUSDT_15_42"
    symbol: str = Field(index=True)
    timeframe: int = Field(index=True)  # minutes
    timeframe_token: str = ""  # raw token as sent, e.g. "1D"
    direction: str  # "LONG" or "SHORT"
    setup_type: str | None = None

    entry_price: float | None = None
    stop_loss: float | None = None
    risk: float | None = None
    score: float | None = None

    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    tp1_hit: bool = False
    tp2_hit: bool = False
    sl_hit: bool = False
    tp1_price: float | None = None
    tp2_price: float | None = None
    sl_price: float | None = None
    tp1_percent: float | None = None
    tp2_percent: float | None = None
    pnl_percent: float | None = None

    closed_at: datetime | None = Field(default=None, index=True)
    close_reason: str | None = None  # "sl", "sl-after-partial", "tp1+tp2", "auto-opposite"
    auto_closed: bool = False
    tier: str = "base"  # frozen at entry
    open_marker: int | None = 1

    # Opaque signal fields carried through from the webhook
    signal: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    @property
    def is_open(self) -> bool:
        return self.closed_at is None
