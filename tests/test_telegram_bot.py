"""Tests for the bot's linking commands, driven with fake updates."""

import threading
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlmodel import Session

from alert_relay.services import directory
from alert_relay.services.telegram_bot import TelegramBot


def fake_update(chat_id: int = 4242, username: str | None = "alice_tg"):
    update = MagicMock()
    update.effective_chat.id = chat_id
    update.effective_user.username = username
    update.message.reply_text = AsyncMock()
    return update


def fake_context(*args):
    context = MagicMock()
    context.args = list(args)
    return context


def replied(update) -> str:
    return update.message.reply_text.await_args.args[0]


@pytest.fixture
def bot():
    return TelegramBot(token="123:abc")


@pytest.fixture
def link_code(db, make_recipient):
    user_id = make_recipient("alice")
    with Session(db) as session:
        return user_id, directory.request_link_code(session, user_id, ttl_minutes=10).code


@pytest.mark.asyncio
async def test_link_command_binds_chat(bot, db, link_code):
    user_id, code = link_code
    update = fake_update()

    await bot._cmd_link(update, fake_context(code))

    assert replied(update).startswith("Linked.")
    with Session(db) as session:
        assert directory.link_status(session, user_id)["chat_id"] == "4242"


@pytest.mark.asyncio
async def test_claim_runs_off_the_event_loop(bot, link_code, monkeypatch):
    _, code = link_code
    loop_thread = threading.current_thread().name
    seen = []
    claim = directory.claim_link_code

    def tracking_claim(*args, **kwargs):
        seen.append(threading.current_thread().name)
        return claim(*args, **kwargs)

    monkeypatch.setattr(directory, "claim_link_code", tracking_claim)

    await bot._cmd_start(fake_update(), fake_context(code))

    assert seen and seen[0] != loop_thread


@pytest.mark.asyncio
async def test_status_and_pause_for_linked_chat(bot, make_recipient):
    make_recipient("alice", chat_id="4242")

    status = fake_update()
    await bot._cmd_status(status, fake_context())
    stop = fake_update()
    await bot._cmd_stop(stop, fake_context())
    after = fake_update()
    await bot._cmd_status(after, fake_context())

    assert replied(status) == "Linked. Alerts are on."
    assert replied(stop) == "Alerts paused."
    assert replied(after) == "Linked. Alerts are paused."


@pytest.mark.asyncio
async def test_commands_from_unlinked_chat(bot):
    status = fake_update(chat_id=1)
    resume = fake_update(chat_id=1)

    await bot._cmd_status(status, fake_context())
    await bot._cmd_resume(resume, fake_context())

    assert replied(status).startswith("This chat is not linked.")
    assert replied(resume) == "This chat is not linked."


@pytest.mark.asyncio
async def test_link_without_code_shows_usage(bot):
    update = fake_update()

    await bot._cmd_link(update, fake_context())

    assert replied(update) == "Usage: /link <code>"
