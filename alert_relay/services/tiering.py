"""Tier assignment from verified setup statistics."""

import logging

from sqlalchemy import Engine
from sqlmodel import Session, select

from alert_relay.models.setup_stat import SetupStat
from alert_relay.utils.constants import DEFAULT_SETUP_TYPE, DEFAULT_TIER

logger = logging.getLogger(__name__)

ELITE_MIN_WIN_RATE = 0.70
ELITE_MIN_PROFIT_FACTOR = 4.0
GREAT_MIN_BLEND = 55.0
GOOD_MIN_BLEND = 45.0


def blended_score(win_rate: float, profit_factor: float) -> float:
    return win_rate * 100 * 0.65 + profit_factor * 10 * 0.35


def tier_from_stats(win_rate: float | None, profit_factor: float | None) -> str:
    """Map win rate (0..1) and profit factor to a tier label."""
    if win_rate is None or profit_factor is None:
        return DEFAULT_TIER
    if win_rate >= ELITE_MIN_WIN_RATE and profit_factor >= ELITE_MIN_PROFIT_FACTOR:
        return "elite"
    blend = blended_score(win_rate, profit_factor)
    if blend >= GREAT_MIN_BLEND:
        return "great"
    if blend >= GOOD_MIN_BLEND:
        return "good"
    return DEFAULT_TIER


def lookup_tier(engine: Engine, symbol: str, timeframe: int, setup_type: str | None) -> str:
    """Tier for a verified setup, or the default tier when none is recorded."""
    with Session(engine) as session:
        stat = session.exec(
            select(SetupStat).where(
                SetupStat.symbol == symbol,
                SetupStat.timeframe == timeframe,
                SetupStat.setup_type == (setup_type or DEFAULT_SETUP_TYPE),
                SetupStat.verified == True,  # noqa: E712
            )
        ).first()

    if stat is None:
        return DEFAULT_TIER
    return tier_from_stats(stat.win_rate, stat.profit_factor)
