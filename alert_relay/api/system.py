"""System API: health check and scheduler status."""

from fastapi import APIRouter, Depends

from alert_relay.api.deps import get_current_user
from alert_relay.services.telegram_bot import get_bot

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    bot = get_bot()
    return {"status": "ok", "telegram": bool(bot and bot.running)}


@router.get("/scheduler", dependencies=[Depends(get_current_user)])
def scheduler_status():
    """Current scheduler state with job details."""
    from alert_relay.engine.scheduler import get_scheduler_status
    return get_scheduler_status()
