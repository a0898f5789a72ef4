"""Trade query API and latest-signal board."""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from alert_relay.config import settings
from alert_relay.database import get_session
from alert_relay.engine.position_store import PositionStore
from alert_relay.services import snapshots
from alert_relay.api.deps import get_position_store
from alert_relay.utils.constants import MAX_RECENT_TRADES

router = APIRouter(prefix="/api", tags=["trades"])


@router.get("/trades")
def list_trades(
    limit: int | None = Query(default=None, ge=1, le=MAX_RECENT_TRADES),
    closed_within_hours: float | None = Query(default=None, gt=0),
    store: PositionStore = Depends(get_position_store),
):
    """Open and recently closed trades, newest first."""
    closed_since = None
    if closed_within_hours is not None:
        closed_since = datetime.now(timezone.utc) - timedelta(hours=closed_within_hours)
    return store.list_recent(limit=limit or settings.recent_trades_limit, closed_since=closed_since)


@router.get("/trades/{trade_id}")
def get_trade(trade_id: str, store: PositionStore = Depends(get_position_store)):
    trade = store.get(trade_id)
    if not trade:
        raise HTTPException(status_code=404, detail="Trade not found")
    return trade


@router.get("/latest-signals")
def latest_signals(
    limit: int = Query(default=200, ge=1, le=MAX_RECENT_TRADES),
    session: Session = Depends(get_session),
):
    """Latest merged signal per symbol and timeframe, highest score first."""
    return snapshots.latest_signals(session, limit=limit)
