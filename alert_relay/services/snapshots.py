"""Latest-signal board: last known payload per symbol and timeframe."""

import logging
from datetime import datetime, timezone

from sqlmodel import Session, select

from alert_relay.models.signal_snapshot import SignalSnapshot

logger = logging.getLogger(__name__)


def _score(payload: dict) -> float | None:
    for field in ("totalScore", "score"):
        value = payload.get(field)
        if value is None:
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None


def merge_snapshot(session: Session, symbol: str, timeframe: str, payload: dict) -> SignalSnapshot:
    """Shallow-merge ``payload`` into the snapshot for symbol+timeframe."""
    key = f"{symbol}_{timeframe}"
    snapshot = session.get(SignalSnapshot, key)
    if snapshot is None:
        snapshot = SignalSnapshot(key=key, symbol=symbol, timeframe=str(timeframe))

    merged = {**(snapshot.payload or {}), **payload}
    snapshot.payload = merged
    snapshot.total_score = _score(merged)
    snapshot.updated_at = datetime.now(timezone.utc)
    session.add(snapshot)
    session.commit()
    session.refresh(snapshot)
    return snapshot


def latest_signals(session: Session, limit: int = 200) -> list[dict]:
    """Snapshots sorted by total score, highest first; unscored last."""
    rows = session.exec(select(SignalSnapshot)).all()
    rows = sorted(
        rows,
        key=lambda s: (s.total_score is None, -(s.total_score or 0.0)),
    )
    return [
        {**s.payload, "symbol": s.symbol, "timeframe": s.timeframe, "updatedAt": s.updated_at.isoformat()}
        for s in rows[:limit]
    ]
