"""Pydantic schemas for the internal notification relay."""

from pydantic import BaseModel, ConfigDict, Field


class EntryRelayRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    trade_id: str | None = Field(default=None, alias="tradeId")
    idempotency_key: str | None = Field(default=None, alias="idempotencyKey")
    title: str | None = None
    body: str | None = None
    symbol: str | None = None
    timeframe: str | int | None = None
    tier: str | None = None


class FollowupRelayRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    trade_id: str | None = Field(default=None, alias="tradeId")
    type: str | None = None  # follow-up type key, e.g. "TP1", "TP2", "SL"
    title: str | None = None
    body: str | None = None
