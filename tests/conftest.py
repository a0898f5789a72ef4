"""Shared fixtures: in-memory database, fake channel sender, API client."""

import os

os.environ["TA_DATABASE_URL"] = "sqlite://"
os.environ["TA_WEBHOOK_TOKEN"] = "test-token"
os.environ["TA_RELAY_SECRET"] = ""
os.environ["TA_RELAY_BLOCKED_MARKER"] = "legacy-signal"
os.environ["TA_TELEGRAM_BOT_TOKEN"] = ""

from unittest.mock import AsyncMock

import pytest
from sqlmodel import Session, SQLModel

from alert_relay.database import create_db_and_tables, engine
from alert_relay.engine.lifecycle import LifecycleEngine
from alert_relay.engine.position_store import PositionStore
from alert_relay.models.recipient import ChannelLink, RecipientPreference
from alert_relay.models.user import User
from alert_relay.services.auth import hash_password
from alert_relay.services.dispatcher import NotificationDispatcher


@pytest.fixture(autouse=True)
def db():
    create_db_and_tables()
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def store(db) -> PositionStore:
    return PositionStore(db)


@pytest.fixture
def lifecycle(store) -> LifecycleEngine:
    return LifecycleEngine(store)


@pytest.fixture
def sender():
    fake = AsyncMock()
    fake.send_message = AsyncMock(return_value=None)
    return fake


@pytest.fixture
def dispatcher(db, sender) -> NotificationDispatcher:
    # One database worker keeps access to the shared in-memory connection serial
    dispatcher = NotificationDispatcher(db, sender=sender, blocked_marker="legacy-signal", db_workers=1)
    yield dispatcher
    dispatcher.close()


@pytest.fixture
def make_recipient(db):
    return add_recipient


def add_recipient(
    username: str,
    chat_id: str | None = None,
    verified: bool = True,
    **prefs,
) -> int:
    """Create a user with an optional channel link and preferences. Returns the user id."""
    with Session(engine) as session:
        user = User(username=username, hashed_password=hash_password("secret"))
        session.add(user)
        session.commit()
        session.refresh(user)
        if chat_id is not None:
            session.add(ChannelLink(recipient_id=user.id, chat_id=chat_id, verified=verified))
        if prefs:
            session.add(RecipientPreference(recipient_id=user.id, **prefs))
        session.commit()
        return user.id
