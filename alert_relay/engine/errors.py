"""Exceptions raised by the trade lifecycle layer."""


class LifecycleError(Exception):
    """Base class for lifecycle failures."""


class InvalidSignal(LifecycleError):
    """The inbound signal cannot be processed as sent (client error)."""


class InvalidTradeKey(InvalidSignal):
    """The alert identifier is missing or malformed."""


class TradeNotFound(LifecycleError):
    """An exit update referenced a trade that was never opened."""


class StoreError(LifecycleError):
    """The position store rejected or failed a primary write."""

    def __init__(self, message: str, trade_id: str | None = None, stage: str | None = None):
        super().__init__(message)
        self.trade_id = trade_id
        self.stage = stage
