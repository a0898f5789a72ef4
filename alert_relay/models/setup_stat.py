"""SetupStat model: verified historical statistics per setup, used for tiering."""

from datetime import datetime, timezone

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class SetupStat(SQLModel, table=True):
    __tablename__ = "setup_stat"
    __table_args__ = (
        UniqueConstraint("symbol", "timeframe", "setup_type", name="uq_setup_stat"),
    )

    id: int | None = Field(default=None, primary_key=True)
    symbol: str = Field(index=True)
    timeframe: int
    setup_type: str = "default"
    win_rate: float  # 0..1
    profit_factor: float
    sample_size: int = 0
    verified: bool = True
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
