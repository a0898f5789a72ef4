"""Pydantic schemas for the inbound signal webhook."""

from pydantic import BaseModel, ConfigDict, Field


class RenderedNotification(BaseModel):
    """Notification text composed upstream; relayed verbatim."""

    title: str = Field(min_length=1)
    body: str = Field(min_length=1)


class SignalPayload(BaseModel):
    """Webhook body. Unknown fields are opaque signal data and are kept."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str | None = None
    symbol: str | None = None
    timeframe: str | int | None = None
    direction: str | None = None
    setup_type: str | None = Field(default=None, alias="setupType")

    entry_price: float | None = Field(default=None, alias="entryPrice")
    stop_loss: float | None = Field(default=None, alias="stopLoss")
    risk: float | None = None
    score: float | None = None
    tier: str | None = None  # ignored; tiers are assigned server-side

    tp1_hit: bool = Field(default=False, alias="tp1Hit")
    tp2_hit: bool = Field(default=False, alias="tp2Hit")
    sl_hit: bool = Field(default=False, alias="slHit")
    tp1_price: float | None = Field(default=None, alias="tp1Price")
    tp2_price: float | None = Field(default=None, alias="tp2Price")
    sl_price: float | None = Field(default=None, alias="slPrice")
    price: float | None = None  # generic fill price, fallback for any leg

    notification: RenderedNotification | None = None

    @property
    def is_exit(self) -> bool:
        return self.tp1_hit or self.tp2_hit or self.sl_hit

    def opaque_fields(self) -> dict:
        """Everything the caller sent, minus the relayed notification text."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"notification"})
