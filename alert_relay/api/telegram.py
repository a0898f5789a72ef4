"""Telegram update forwarding (webhook mode)."""

import logging

from fastapi import APIRouter, Header, Request

from alert_relay.config import settings
from alert_relay.services.auth import secrets_match
from alert_relay.services.telegram_bot import get_bot

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/telegram", tags=["telegram"])


@router.post("/webhook")
async def telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: str | None = Header(default=None),
):
    """Always answers 200; Telegram retries anything else indefinitely."""
    if settings.telegram_webhook_secret and not secrets_match(
        settings.telegram_webhook_secret, x_telegram_bot_api_secret_token
    ):
        logger.warning("[telegram] update with bad secret token dropped")
        return {"ok": True}

    bot = get_bot()
    if bot is None or not bot.running:
        logger.warning("[telegram] update received but bot is not running")
        return {"ok": True}

    try:
        data = await request.json()
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        await bot.process_update(data)
    except Exception as e:
        logger.error(f"[telegram] failed to process update: {e}")
    return {"ok": True}
