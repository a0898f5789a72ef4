"""Telegram bot: alert delivery channel and account linking commands."""

import asyncio
import logging
from typing import Optional

from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes
from sqlmodel import Session

from alert_relay.config import settings
from alert_relay.services import directory

logger = logging.getLogger(__name__)

_bot_instance: Optional["TelegramBot"] = None

HELP_TEXT = (
    "Link this chat to your account: request a code on your account page, "
    "then send /link <code>.\n"
    "/status shows whether this chat is linked.\n"
    "/stop pauses alerts, /resume turns them back on."
)


# Handlers run on the event loop; database work goes to the default executor

async def _in_db(fn, *args):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, fn, *args)


def _claim_code(code: str, chat_id: int, username: str | None) -> directory.ClaimResult:
    from alert_relay.database import engine

    with Session(engine) as session:
        return directory.claim_link_code(session, code, chat_id=chat_id, username=username)


def _chat_alerts_enabled(chat_id: int) -> bool | None:
    """None when the chat is not linked."""
    from alert_relay.database import engine

    with Session(engine) as session:
        link = directory.find_recipient_by_chat(session, chat_id)
        if link is None:
            return None
        return directory.get_preferences(session, link.recipient_id).channel_enabled


def _set_chat_alerts(chat_id: int, enabled: bool) -> bool:
    from alert_relay.database import engine

    with Session(engine) as session:
        link = directory.find_recipient_by_chat(session, chat_id)
        if link is None:
            return False
        directory.set_channel_enabled(session, link.recipient_id, enabled)
        return True


class TelegramBot:
    """Telegram application sharing the API server's event loop.

    Updates arrive either through long polling or, when
    ``telegram_use_webhook`` is set, through ``process_update`` called by the
    ``/api/telegram/webhook`` route.
    """

    def __init__(self, token: str, use_webhook: bool = False):
        self.token = token
        self.use_webhook = use_webhook
        self._app: Optional[Application] = None

    @property
    def running(self) -> bool:
        return self._app is not None and self._app.running

    async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        # Deep links arrive as "/start <code>"
        if context.args:
            await self._claim(update, context.args[0])
            return
        await update.message.reply_text(HELP_TEXT)

    async def _cmd_link(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not context.args:
            await update.message.reply_text("Usage: /link <code>")
            return
        await self._claim(update, context.args[0])

    async def _claim(self, update: Update, code: str):
        chat = update.effective_chat
        user = update.effective_user
        result = await _in_db(_claim_code, code, chat.id, user.username if user else None)
        await update.message.reply_text(result.message)

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        enabled = await _in_db(_chat_alerts_enabled, update.effective_chat.id)
        if enabled is None:
            await update.message.reply_text("This chat is not linked. " + HELP_TEXT)
            return
        state = "on" if enabled else "paused"
        await update.message.reply_text(f"Linked. Alerts are {state}.")

    async def _set_enabled(self, update: Update, enabled: bool):
        if not await _in_db(_set_chat_alerts, update.effective_chat.id, enabled):
            await update.message.reply_text("This chat is not linked.")
            return
        await update.message.reply_text("Alerts resumed." if enabled else "Alerts paused.")

    async def _cmd_stop(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await self._set_enabled(update, False)

    async def _cmd_resume(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await self._set_enabled(update, True)

    async def send_message(self, chat_id: str, text: str):
        """Send one message. Errors propagate to the caller."""
        if not self._app or not self._app.bot:
            raise RuntimeError("Telegram bot is not running")
        await self._app.bot.send_message(chat_id=chat_id, text=text)

    async def process_update(self, data: dict):
        """Feed one update received on the webhook route into the handlers."""
        if not self._app:
            raise RuntimeError("Telegram bot is not running")
        update = Update.de_json(data, self._app.bot)
        await self._app.process_update(update)

    def _build(self) -> Application:
        builder = Application.builder().token(self.token)
        if self.use_webhook:
            builder = builder.updater(None)
        app = builder.build()
        app.add_handler(CommandHandler("start", self._cmd_start))
        app.add_handler(CommandHandler("link", self._cmd_link))
        app.add_handler(CommandHandler("status", self._cmd_status))
        app.add_handler(CommandHandler("stop", self._cmd_stop))
        app.add_handler(CommandHandler("resume", self._cmd_resume))
        return app

    async def start(self):
        self._app = self._build()
        logger.info(f"Telegram bot starting ({'webhook' if self.use_webhook else 'polling'})...")
        await self._app.initialize()
        await self._app.start()
        if not self.use_webhook:
            await self._app.updater.start_polling()

    async def stop(self):
        if not self._app:
            return
        if self._app.updater and self._app.updater.running:
            await self._app.updater.stop()
        await self._app.stop()
        await self._app.shutdown()
        logger.info("Telegram bot stopped")


def init_bot() -> TelegramBot:
    """Initialize and return the bot singleton."""
    global _bot_instance
    _bot_instance = TelegramBot(
        token=settings.telegram_bot_token,
        use_webhook=settings.telegram_use_webhook,
    )
    return _bot_instance


def get_bot() -> Optional[TelegramBot]:
    """Get the bot singleton, or None if not initialized."""
    return _bot_instance
