"""Notification relay API: trusted callers hand over fully rendered alerts."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from alert_relay.schemas.notify import EntryRelayRequest, FollowupRelayRequest
from alert_relay.services.dispatcher import (
    InvalidNotification,
    Notification,
    NotificationDispatcher,
)
from alert_relay.api.deps import get_dispatcher, require_relay_secret
from alert_relay.utils.constants import ALERT_ENTRY

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/notify",
    tags=["notify"],
    dependencies=[Depends(require_relay_secret)],
)


@router.post("/entry")
async def relay_entry(
    body: EntryRelayRequest,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    note = Notification(
        trade_id=body.trade_id,
        idempotency_key=body.idempotency_key,
        title=body.title,
        body=body.body,
        alert_type=ALERT_ENTRY,
        symbol=body.symbol,
        timeframe=str(body.timeframe) if body.timeframe is not None else None,
        tier=body.tier,
    )
    try:
        await dispatcher.dispatch_entry(note)
    except InvalidNotification as e:
        raise HTTPException(status_code=400, detail=str(e))
    # Same response whether delivered, deduplicated or filtered
    return {"success": True, "tradeId": body.trade_id}


@router.post("/followup")
async def relay_followup(
    body: FollowupRelayRequest,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    note = Notification(
        trade_id=body.trade_id,
        alert_type=(body.type or "").strip().upper(),
        title=body.title,
        body=body.body,
    )
    try:
        await dispatcher.dispatch_followup(note)
    except InvalidNotification as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "tradeId": body.trade_id}
