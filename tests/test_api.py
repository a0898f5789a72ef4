"""API tests through FastAPI's TestClient (lifespan not started)."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from alert_relay.api.deps import get_dispatcher
from alert_relay.config import settings
from alert_relay.main import app
from alert_relay.models.notification import NotificationRecord
from alert_relay.services import directory
from alert_relay.services.auth import create_access_token


@pytest.fixture
def client(dispatcher):
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()


def post_signal(client, payload: dict, token: str = "test-token"):
    return client.post("/webhook", params={"token": token}, json=payload)


def auth_headers(username: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(subject=username)}"}


# ---------------------------------------------------------------------------
# 1. Webhook
# ---------------------------------------------------------------------------

class TestWebhook:
    def test_rejects_bad_token(self, client):
        resp = post_signal(client, {"id": "BTCUSDT_15_1", "direction": "LONG"}, token="nope")
        assert resp.status_code == 403

    def test_rejects_missing_token(self, client):
        resp = client.post("/webhook", json={"id": "BTCUSDT_15_1", "direction": "LONG"})
        assert resp.status_code == 403

    @pytest.mark.parametrize(
        "payload",
        [
            {"direction": "LONG"},
            {"id": "BTCUSDT_undefined_1", "direction": "LONG"},
            {"id": "BTCUSDT15", "direction": "LONG"},
            {"id": "BTCUSDT_15_1", "direction": "SIDEWAYS"},
            {"id": "BTCUSDT_15_1", "direction": "LONG", "entryPrice": "abc"},
        ],
    )
    def test_malformed_signal_is_client_error(self, client, payload):
        resp = post_signal(client, payload)
        assert resp.status_code == 400

    def test_opens_and_ignores_duplicate(self, client):
        payload = {"id": "BTCUSDT_15_1", "direction": "LONG", "entryPrice": 100}

        first = post_signal(client, payload)
        second = post_signal(client, payload)

        assert first.status_code == 200
        assert first.json()["status"] == "opened"
        assert first.json()["ignored"] is False
        assert second.status_code == 200
        assert second.json()["ignored"] is True
        assert second.json()["reason"] == "duplicate_entry"

    def test_exit_for_unknown_trade_is_not_found(self, client):
        resp = post_signal(client, {"id": "BTCUSDT_15_9", "tp1Hit": True, "tp1Price": 110})
        assert resp.status_code == 404

    def test_full_lifecycle_relays_notifications(self, client, sender, make_recipient):
        make_recipient("alice", chat_id="100")
        note = {"title": "BTCUSDT", "body": "update"}

        post_signal(client, {
            "id": "BTCUSDT_15_1", "direction": "LONG", "entryPrice": 100,
            "notification": {"title": "BTCUSDT LONG", "body": "Entry 100"},
        })
        tp1 = post_signal(client, {"id": "BTCUSDT_15_1", "tp1Hit": True, "tp1Price": 110, "notification": note})
        tp2 = post_signal(client, {"id": "BTCUSDT_15_1", "tp2Hit": True, "tp2Price": 130, "notification": note})
        replay = post_signal(client, {"id": "BTCUSDT_15_1", "tp2Hit": True, "tp2Price": 130, "notification": note})

        assert tp1.json()["status"] == "updated"
        assert tp2.json()["status"] == "closed"
        assert replay.json()["reason"] == "already_closed"
        assert sender.send_message.await_count == 3
        sender.send_message.assert_any_await("100", "BTCUSDT LONG\n\nEntry 100")

        trade = client.get("/api/trades/BTCUSDT_15_1").json()
        assert trade["close_reason"] == "tp1+tp2"
        assert trade["pnl_percent"] == pytest.approx(20.0)

    def test_auto_close_reported(self, client):
        post_signal(client, {"id": "SYM_15_1", "direction": "SHORT", "entryPrice": 100})

        resp = post_signal(client, {"id": "SYM_15_2", "direction": "LONG", "entryPrice": 90})

        assert resp.json()["autoClosed"] == ["SYM_15_1"]

    def test_take_profit_without_price_is_client_error(self, client):
        post_signal(client, {"id": "BTCUSDT_15_1", "direction": "LONG", "entryPrice": 100})

        resp = post_signal(client, {"id": "BTCUSDT_15_1", "tp1Hit": True})

        assert resp.status_code == 400
        trade = client.get("/api/trades/BTCUSDT_15_1").json()
        assert trade["tp1_hit"] is False
        assert trade["pnl_percent"] is None

    def test_both_legs_in_one_payload_relay_one_message(self, client, db, sender, make_recipient):
        make_recipient("alice", chat_id="100")
        post_signal(client, {
            "id": "BTCUSDT_15_1", "direction": "LONG", "entryPrice": 100,
            "notification": {"title": "BTCUSDT LONG", "body": "Entry 100"},
        })

        resp = post_signal(client, {
            "id": "BTCUSDT_15_1", "tp1Hit": True, "tp1Price": 110, "tp2Hit": True, "tp2Price": 130,
            "notification": {"title": "BTCUSDT", "body": "Both targets hit"},
        })

        assert resp.json()["status"] == "closed"
        assert sender.send_message.await_count == 2
        sender.send_message.assert_awaited_with("100", "BTCUSDT\n\nBoth targets hit")
        with Session(db) as session:
            types = session.exec(
                select(NotificationRecord.alert_type).where(NotificationRecord.trade_id == "BTCUSDT_15_1")
            ).all()
        assert sorted(types) == ["ENTRY", "TP2"]

    def test_auto_closed_trade_gets_no_message(self, client, sender, make_recipient, caplog):
        make_recipient("alice", chat_id="100")
        post_signal(client, {
            "id": "SYM_15_1", "direction": "SHORT", "entryPrice": 100,
            "notification": {"title": "SYM SHORT", "body": "Entry 100"},
        })
        sender.send_message.reset_mock()

        with caplog.at_level(logging.INFO, logger="alert_relay.api.webhook"):
            resp = post_signal(client, {
                "id": "SYM_15_2", "direction": "LONG", "entryPrice": 90,
                "notification": {"title": "SYM LONG", "body": "Entry 90"},
            })

        assert resp.json()["autoClosed"] == ["SYM_15_1"]
        sender.send_message.assert_awaited_once_with("100", "SYM LONG\n\nEntry 90")
        assert "SYM_15_1 auto-closed by SYM_15_2" in caplog.text

    def test_ignored_update_relays_nothing(self, client, sender, make_recipient):
        make_recipient("alice", chat_id="100")
        post_signal(client, {"id": "BTCUSDT_15_1", "direction": "LONG", "entryPrice": 100})

        resp = post_signal(client, {
            "id": "BTCUSDT_15_1", "direction": "LONG", "entryPrice": 100,
            "notification": {"title": "BTCUSDT LONG", "body": "Entry 100"},
        })

        assert resp.json()["ignored"] is True
        sender.send_message.assert_not_awaited()

    def test_store_failure_is_server_error(self, client, monkeypatch):
        from alert_relay.engine.errors import StoreError
        from alert_relay.engine.position_store import PositionStore

        def fail(self, trade):
            raise StoreError("disk full", trade_id=trade.trade_id, stage="insert")

        monkeypatch.setattr(PositionStore, "put_if_absent", fail)

        resp = post_signal(client, {"id": "BTCUSDT_15_1", "direction": "LONG"})

        assert resp.status_code == 500
        assert "insert" in resp.json()["detail"]


# ---------------------------------------------------------------------------
# 2. Trade queries and signal board
# ---------------------------------------------------------------------------

def test_trade_listing(client):
    post_signal(client, {"id": "BTCUSDT_15_1", "direction": "LONG", "entryPrice": 100})
    post_signal(client, {"id": "ETHUSDT_60_1", "direction": "SHORT", "entryPrice": 50})

    trades = client.get("/api/trades").json()

    assert [t["trade_id"] for t in trades] == ["ETHUSDT_60_1", "BTCUSDT_15_1"]
    assert client.get("/api/trades/NOPE_15_1").status_code == 404


def test_latest_signals_sorted_by_score(client):
    post_signal(client, {"id": "BTCUSDT_15_1", "direction": "LONG", "totalScore": 40})
    post_signal(client, {"id": "ETHUSDT_60_1", "direction": "LONG", "totalScore": 80})
    post_signal(client, {"id": "SOLUSDT_5_1", "direction": "LONG"})

    board = client.get("/api/latest-signals").json()

    assert [row["symbol"] for row in board] == ["ETHUSDT", "BTCUSDT", "SOLUSDT"]
    assert board[0]["timeframe"] == "60"


# ---------------------------------------------------------------------------
# 3. Notification relay
# ---------------------------------------------------------------------------

class TestNotifyRelay:
    def entry_body(self, **overrides) -> dict:
        body = {
            "tradeId": "BTCUSDT_15_1",
            "idempotencyKey": "BTCUSDT_15_1:ENTRY",
            "title": "BTCUSDT LONG",
            "body": "Entry 100",
            "symbol": "BTCUSDT",
            "timeframe": 15,
        }
        body.update(overrides)
        return body

    def test_entry_delivers(self, client, sender, make_recipient):
        make_recipient("alice", chat_id="100")

        resp = client.post("/api/notify/entry", json=self.entry_body())

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "tradeId": "BTCUSDT_15_1"}
        sender.send_message.assert_awaited_once_with("100", "BTCUSDT LONG\n\nEntry 100")

    def test_blocked_content_looks_successful(self, client, sender, make_recipient):
        make_recipient("alice", chat_id="100")

        resp = client.post("/api/notify/entry", json=self.entry_body(body="legacy-signal entry"))

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        sender.send_message.assert_not_awaited()

    @pytest.mark.parametrize("missing", ["tradeId", "idempotencyKey", "title", "body"])
    def test_entry_missing_field(self, client, missing):
        body = self.entry_body()
        del body[missing]
        assert client.post("/api/notify/entry", json=body).status_code == 400

    def test_followup_missing_type(self, client):
        resp = client.post(
            "/api/notify/followup",
            json={"tradeId": "BTCUSDT_15_1", "title": "TP1", "body": "hit"},
        )
        assert resp.status_code == 400

    def test_followup_delivers_to_entry_recipients(self, client, sender, make_recipient):
        make_recipient("alice", chat_id="100")
        client.post("/api/notify/entry", json=self.entry_body())
        sender.send_message.reset_mock()

        resp = client.post(
            "/api/notify/followup",
            json={"tradeId": "BTCUSDT_15_1", "type": "tp1", "title": "TP1", "body": "hit"},
        )

        assert resp.status_code == 200
        sender.send_message.assert_awaited_once_with("100", "TP1\n\nhit")

    def test_relay_secret_enforced(self, client, monkeypatch):
        monkeypatch.setattr(settings, "relay_secret", "s3cret")

        denied = client.post("/api/notify/entry", json=self.entry_body())
        allowed = client.post(
            "/api/notify/entry", json=self.entry_body(), headers={"X-Relay-Secret": "s3cret"}
        )

        assert denied.status_code == 403
        assert allowed.status_code == 200


# ---------------------------------------------------------------------------
# 4. Recipients
# ---------------------------------------------------------------------------

def test_recipient_link_flow(client, db, make_recipient):
    make_recipient("alice")
    headers = auth_headers("alice")

    code = client.post("/api/recipients/me/link-code", headers=headers).json()["code"]
    assert client.get("/api/recipients/me/link", headers=headers).json()["linked"] is False

    with Session(db) as session:
        assert directory.claim_link_code(session, code, chat_id=555).ok

    status = client.get("/api/recipients/me/link", headers=headers).json()
    assert status["linked"] is True
    assert status["chat_id"] == "555"

    assert client.delete("/api/recipients/me/link", headers=headers).status_code == 204
    assert client.get("/api/recipients/me/link", headers=headers).json()["linked"] is False


def test_recipient_preferences(client, make_recipient):
    make_recipient("alice")
    headers = auth_headers("alice")

    defaults = client.get("/api/recipients/me/preferences", headers=headers).json()
    assert defaults == {"channel_enabled": True, "symbols": [], "timeframes": [], "tiers": []}

    updated = client.put(
        "/api/recipients/me/preferences",
        headers=headers,
        json={"symbols": ["ethusdt"], "tiers": ["Elite"]},
    ).json()
    assert updated["symbols"] == ["ETHUSDT"]
    assert updated["tiers"] == ["elite"]

    bad = client.put("/api/recipients/me/preferences", headers=headers, json={"tiers": ["platinum"]})
    assert bad.status_code == 422


def test_recipient_routes_require_auth(client):
    assert client.get("/api/recipients/me/preferences").status_code in (401, 403)
    bad = client.get("/api/recipients/me/preferences", headers={"Authorization": "Bearer junk"})
    assert bad.status_code == 401


def test_login(client, make_recipient):
    make_recipient("alice")

    ok = client.post("/api/auth/login", json={"username": "alice", "password": "secret"})
    bad = client.post("/api/auth/login", json={"username": "alice", "password": "wrong"})
    unknown = client.post("/api/auth/login", json={"username": "mallory", "password": "secret"})

    assert ok.status_code == 200 and ok.json()["access_token"]
    assert bad.status_code == 401
    assert unknown.status_code == 401
    assert unknown.json()["detail"] == bad.json()["detail"]


def test_login_reports_link_state(client, db, make_recipient):
    user_id = make_recipient("alice", channel_enabled=False)
    first = client.post("/api/auth/login", json={"username": "alice", "password": "secret"}).json()

    with Session(db) as session:
        code = directory.request_link_code(session, user_id, ttl_minutes=10)
        directory.claim_link_code(session, code.code, chat_id=555)
    second = client.post("/api/auth/login", json={"username": "alice", "password": "secret"}).json()

    assert first["recipient_id"] == user_id
    assert first["linked"] is False
    assert first["channel_enabled"] is False
    assert first["previous_login_at"] is None
    assert second["linked"] is True
    assert second["previous_login_at"] is not None


def test_inactive_user_cannot_log_in(client, db, make_recipient):
    from alert_relay.models.user import User

    user_id = make_recipient("alice")
    with Session(db) as session:
        user = session.get(User, user_id)
        user.is_active = False
        session.add(user)
        session.commit()

    resp = client.post("/api/auth/login", json={"username": "alice", "password": "secret"})

    assert resp.status_code == 401


# ---------------------------------------------------------------------------
# 5. Telegram webhook and system
# ---------------------------------------------------------------------------

def test_telegram_webhook_always_ok(client):
    resp = client.post("/api/telegram/webhook", json={"update_id": 1, "message": {}})
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


@pytest.fixture
def running_bot(monkeypatch):
    bot = MagicMock()
    bot.running = True
    bot.process_update = AsyncMock()
    monkeypatch.setattr("alert_relay.api.telegram.get_bot", lambda: bot)
    return bot


@pytest.mark.parametrize(
    "kwargs",
    [
        {"content": b"not json", "headers": {"Content-Type": "application/json"}},
        {"json": [1, 2, 3]},
        {"json": "update"},
    ],
)
def test_telegram_webhook_malformed_body_still_ok(client, running_bot, kwargs):
    resp = client.post("/api/telegram/webhook", **kwargs)

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    running_bot.process_update.assert_not_awaited()


def test_telegram_webhook_forwards_update(client, running_bot):
    update = {"update_id": 7, "message": {"text": "/status"}}

    resp = client.post("/api/telegram/webhook", json=update)

    assert resp.json() == {"ok": True}
    running_bot.process_update.assert_awaited_once_with(update)


def test_telegram_webhook_handler_error_still_ok(client, running_bot):
    running_bot.process_update.side_effect = RuntimeError("boom")

    resp = client.post("/api/telegram/webhook", json={"update_id": 8})

    assert resp.status_code == 200


def test_insecure_defaults_are_logged(monkeypatch, caplog):
    from alert_relay.main import warn_insecure_settings

    monkeypatch.setattr(settings, "webhook_token", "change-me")
    monkeypatch.setattr(settings, "relay_secret", "")
    with caplog.at_level(logging.WARNING, logger="alert_relay.main"):
        warn_insecure_settings()

    assert "TA_WEBHOOK_TOKEN" in caplog.text
    assert "TA_RELAY_SECRET" in caplog.text


def test_configured_secrets_log_nothing(monkeypatch, caplog):
    from alert_relay.main import warn_insecure_settings

    monkeypatch.setattr(settings, "webhook_token", "a-long-random-token")
    monkeypatch.setattr(settings, "relay_secret", "s3cret")
    with caplog.at_level(logging.WARNING, logger="alert_relay.main"):
        warn_insecure_settings()

    assert [r for r in caplog.records if r.name == "alert_relay.main"] == []


def test_health(client):
    assert client.get("/api/system/health").json() == {"status": "ok", "telegram": False}
