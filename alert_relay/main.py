"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from alert_relay.config import settings
from alert_relay.database import create_db_and_tables
from alert_relay.utils.logging import setup_logging
from alert_relay.api import auth, webhook, trades, notify, recipients, telegram, system

logger = logging.getLogger(__name__)


def warn_insecure_settings():
    """Log the open doors left by default settings."""
    if settings.webhook_token == "change-me":
        logger.warning("TA_WEBHOOK_TOKEN is the default value, signal webhook is guessable")
    if not settings.relay_secret:
        logger.warning("TA_RELAY_SECRET is empty, relay routes accept unauthenticated requests")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    warn_insecure_settings()
    create_db_and_tables()
    from alert_relay.engine.scheduler import start_scheduler, stop_scheduler
    start_scheduler()

    # Start Telegram bot if configured
    telegram_bot = None
    if settings.telegram_bot_token:
        from alert_relay.services.telegram_bot import init_bot
        telegram_bot = init_bot()
        await telegram_bot.start()

    yield

    if telegram_bot:
        await telegram_bot.stop()
    from alert_relay.api.deps import close_dispatcher
    close_dispatcher()
    stop_scheduler()


app = FastAPI(
    title="Trade Alert Relay",
    description="Trade lifecycle tracking and alert fan-out for webhook signals",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(webhook.router)
app.include_router(trades.router)
app.include_router(notify.router)
app.include_router(recipients.router)
app.include_router(telegram.router)
app.include_router(auth.router)
app.include_router(system.router)
