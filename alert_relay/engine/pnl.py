"""PnL calculator."""

from alert_relay.utils.constants import PNL_DECIMALS, SHORT


def pnl_percent(entry_price: float | None, exit_price: float | None, direction: str) -> float:
    """Percentage return of a position from entry to exit.

    Returns 0.0 when either price is missing or zero. SHORT positions gain
    when the exit is below the entry.
    """
    if not entry_price or not exit_price:
        return 0.0
    entry = float(entry_price)
    exit_ = float(exit_price)
    if str(direction).upper() == SHORT:
        pct = (entry - exit_) / entry * 100
    else:
        pct = (exit_ - entry) / entry * 100
    return round(pct, PNL_DECIMALS)


def blended_exit_price(tp1_price: float | None, tp2_price: float | None) -> float | None:
    """Arithmetic mean of the two take-profit legs, or None if a leg is missing."""
    if tp1_price is None or tp2_price is None:
        return None
    return (float(tp1_price) + float(tp2_price)) / 2


def blended_pnl_percent(
    entry_price: float | None,
    tp1_price: float | None,
    tp2_price: float | None,
    direction: str,
) -> float:
    return pnl_percent(entry_price, blended_exit_price(tp1_price, tp2_price), direction)
