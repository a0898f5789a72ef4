"""Pydantic schemas for recipient-facing endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from alert_relay.utils.constants import TIERS


class LinkCodeRead(BaseModel):
    code: str
    expires_at: datetime


class LinkStatusRead(BaseModel):
    linked: bool
    chat_id: str | None = None
    username: str | None = None


class PreferencesRead(BaseModel):
    channel_enabled: bool
    symbols: list[str]
    timeframes: list[str]
    tiers: list[str]

    model_config = {"from_attributes": True}


class PreferencesUpdate(BaseModel):
    channel_enabled: bool | None = None
    symbols: list[str] | None = Field(default=None, max_length=200)
    timeframes: list[str] | None = Field(default=None, max_length=50)
    tiers: list[str] | None = None

    @field_validator("tiers")
    @classmethod
    def _validate_tiers(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        cleaned = [t.strip().lower() for t in value if t.strip()]
        unknown = sorted(set(cleaned) - set(TIERS))
        if unknown:
            allowed = ", ".join(TIERS)
            raise ValueError(f"unknown tiers {unknown}; must be one of: {allowed}")
        return cleaned

    @field_validator("symbols")
    @classmethod
    def _upper_symbols(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return [s.strip().upper() for s in value if s.strip()]
