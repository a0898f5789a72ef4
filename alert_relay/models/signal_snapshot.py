"""SignalSnapshot model: latest merged webhook payload per symbol and timeframe."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON
from sqlmodel import SQLModel, Field, Column


class SignalSnapshot(SQLModel, table=True):
    __tablename__ = "signal_snapshot"

    key: str = Field(primary_key=True)  # "<symbol>_<timeframe token>"
    symbol: str = Field(index=True)
    timeframe: str
    total_score: float | None = None
    payload: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
