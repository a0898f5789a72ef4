"""Inbound signal webhook: entries and TP/SL exit updates."""

import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import ValidationError
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from alert_relay.config import settings
from alert_relay.database import engine
from alert_relay.engine.errors import InvalidSignal, StoreError, TradeNotFound
from alert_relay.engine.lifecycle import LifecycleEngine, LifecycleResult
from alert_relay.schemas.signal import SignalPayload
from alert_relay.services import snapshots
from alert_relay.services.auth import secrets_match
from alert_relay.services.dispatcher import Notification, NotificationDispatcher
from alert_relay.api.deps import get_dispatcher, get_lifecycle_engine
from alert_relay.utils.constants import ALERT_ENTRY

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


@router.post("/webhook")
async def receive_signal(
    data: dict = Body(...),
    token: str | None = Query(default=None),
    lifecycle: LifecycleEngine = Depends(get_lifecycle_engine),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    if not secrets_match(settings.webhook_token, token):
        raise HTTPException(status_code=403, detail="Invalid token")

    try:
        payload = SignalPayload.model_validate(data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors(include_url=False, include_context=False))

    try:
        result = await run_in_threadpool(lifecycle.process, payload)
    except InvalidSignal as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TradeNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StoreError as e:
        raise HTTPException(
            status_code=500,
            detail=f"Store failure at {e.stage or 'unknown'} for {e.trade_id or payload.id}",
        )

    await run_in_threadpool(_record_snapshot, result, payload)

    if payload.notification and not result.ignored:
        await _relay_notification(dispatcher, result, payload)

    return {
        "success": True,
        "ignored": result.ignored,
        "status": result.status,
        "reason": result.reason,
        "tradeId": result.trade_id,
        "autoClosed": result.auto_closed,
    }


def _record_snapshot(result: LifecycleResult, payload: SignalPayload):
    trade = result.trade
    if trade is None:
        return
    try:
        with Session(engine) as session:
            snapshots.merge_snapshot(
                session, trade.symbol, trade.timeframe_token, payload.opaque_fields()
            )
    except Exception as e:
        logger.error(f"[webhook] {result.trade_id} failed at stage=snapshot: {e}")


async def _relay_notification(
    dispatcher: NotificationDispatcher,
    result: LifecycleResult,
    payload: SignalPayload,
):
    """Best-effort fan-out of the prerendered text carried by the webhook.

    A webhook carries one rendered message, so it is relayed once. When a
    payload applies several events (TP1 and TP2 together) the message goes
    out under the last one, which is the state the text describes. Trades
    closed as a side effect (auto-close) carry no text of their own and are
    only logged.
    """
    trade = result.trade
    rendered = payload.notification
    for closed_id in result.auto_closed:
        logger.info(f"[webhook] {closed_id} auto-closed by {result.trade_id}, no message relayed")
    if len(result.events) > 1:
        logger.info(
            f"[webhook] {result.trade_id} applied {'+'.join(result.events)}, "
            f"relaying one message as {result.events[-1]}"
        )
    try:
        if ALERT_ENTRY in result.events:
            await dispatcher.dispatch_entry(Notification(
                trade_id=result.trade_id,
                idempotency_key=f"{result.trade_id}:{ALERT_ENTRY}",
                title=rendered.title,
                body=rendered.body,
                symbol=trade.symbol if trade else None,
                timeframe=trade.timeframe_token if trade else None,
                tier=trade.tier if trade else None,
            ))
        elif result.events:
            await dispatcher.dispatch_followup(Notification(
                trade_id=result.trade_id,
                alert_type=result.events[-1],
                title=rendered.title,
                body=rendered.body,
            ))
    except Exception as e:
        logger.error(f"[webhook] {result.trade_id} failed at stage=dispatch: {e}")
