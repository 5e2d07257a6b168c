"""HTTP API tests using FastAPI's TestClient with an in-memory store."""

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pyotp
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from airtrack.api.deps import get_current_user, get_quotes, get_store, get_trade_broadcaster
from airtrack.database import get_session
from airtrack.engine import tick
from airtrack.main import app
from airtrack.models.tick_log import TickLog
from airtrack.models.trade import Trade
from airtrack.models.user import User
from airtrack.services.auth import hash_password
from airtrack.services.market_data import QuoteUnavailable


@pytest.fixture
def broadcaster():
    fake = MagicMock()
    fake.broadcast_active_trades = AsyncMock(return_value=0)
    return fake


@pytest.fixture
def client(engine, store, quotes, broadcaster):
    def _session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_quotes] = lambda: quotes
    app.dependency_overrides[get_trade_broadcaster] = lambda: broadcaster
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_client(client):
    app.dependency_overrides[get_current_user] = lambda: SimpleNamespace(
        id=None, username="admin", is_active=True, is_admin=True
    )
    return client


# ---------------------------------------------------------------------------
# 1. Auth
# ---------------------------------------------------------------------------

class TestLogin:
    @pytest.fixture
    def admin(self, engine):
        secret = pyotp.random_base32()
        with Session(engine) as session:
            session.add(User(username="ops", hashed_password=hash_password("hunter22"), totp_secret=secret))
            session.commit()
        return secret

    def test_login_then_create_trade(self, client, admin, engine):
        resp = client.post("/api/auth/login", json={
            "username": "ops", "password": "hunter22", "totp_code": pyotp.TOTP(admin).now(),
        })
        assert resp.status_code == 200
        token = resp.json()["access_token"]

        resp = client.post(
            "/api/trades",
            json={"symbol": "btc", "side": "long", "entry_price": 100, "tp_price": 110, "sl_price": 95},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 201
        assert resp.json()["userId"] is not None

        with Session(engine) as session:
            user = session.exec(select(User).where(User.username == "ops")).one()
        assert user.last_login_at is not None

    def test_wrong_password(self, client, admin):
        resp = client.post("/api/auth/login", json={
            "username": "ops", "password": "nope", "totp_code": pyotp.TOTP(admin).now(),
        })
        assert resp.status_code == 401

    def test_wrong_totp(self, client, admin):
        resp = client.post("/api/auth/login", json={
            "username": "ops", "password": "hunter22", "totp_code": "000000x",
        })
        assert resp.status_code == 401

    def test_bad_token_rejected(self, client):
        resp = client.post("/api/trades/close-all", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401


def test_mutations_require_auth(client):
    resp = client.post("/api/trades", json={
        "symbol": "BTC", "side": "LONG", "entry_price": 1, "tp_price": 2, "sl_price": 0.5,
    })
    assert resp.status_code in (401, 403)
    assert client.post("/api/database/reset").status_code in (401, 403)


# ---------------------------------------------------------------------------
# 2. Trades
# ---------------------------------------------------------------------------

class TestCreateTrade:
    def test_pair_symbol_is_split(self, admin_client, broadcaster):
        resp = admin_client.post("/api/trades", json={
            "symbol": "eth/usdc", "side": "short", "entry_price": 3000,
            "tp_price": 2800, "sl_price": 3100, "post_url": "https://example.com/p/1",
        })
        assert resp.status_code == 201
        body = resp.json()
        assert body["symbol"] == "ETH"
        assert body["quote"] == "USDC"
        assert body["side"] == "SHORT"
        assert body["status"] == "PENDING"
        assert body["post_url"] == "https://example.com/p/1"
        broadcaster.broadcast_active_trades.assert_awaited_once()

    def test_default_quote_and_open_status(self, admin_client):
        resp = admin_client.post("/api/trades", json={
            "symbol": "SOL", "side": "LONG", "entry_price": 20, "tp_price": 25,
            "sl_price": 18, "status": "open",
        })
        body = resp.json()
        assert body["quote"] == "USDT"
        assert body["status"] == "OPEN"
        assert body["opened_at"] is not None

    @pytest.mark.parametrize(
        "override",
        [
            {"side": "flat"},
            {"entry_price": 0},
            {"tp_price": -1},
            {"status": "CLOSED"},
            {"symbol": "/USDT"},
        ],
    )
    def test_validation(self, admin_client, override):
        payload = {"symbol": "BTC", "side": "LONG", "entry_price": 100, "tp_price": 110, "sl_price": 95}
        payload.update(override)
        assert admin_client.post("/api/trades", json=payload).status_code == 422


class TestListTrades:
    def test_filters_and_pages_newest_first(self, client, make_trade):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for i in range(5):
            make_trade(symbol=f"T{i}", status="OPEN" if i % 2 else "PENDING",
                       created_at=base + timedelta(minutes=i))
        make_trade(symbol="OLD", status="CLOSED", created_at=base - timedelta(days=1))

        resp = client.get("/api/trades", params={"statuses": "open,pending", "page": 1, "limit": 2})
        assert [t["symbol"] for t in resp.json()] == ["T4", "T3"]

        resp = client.get("/api/trades", params={"statuses": "OPEN,PENDING", "page": 3, "limit": 2})
        assert [t["symbol"] for t in resp.json()] == ["T0"]

        resp = client.get("/api/trades", params={"statuses": "CLOSED"})
        assert [t["symbol"] for t in resp.json()] == ["OLD"]

    def test_unknown_status(self, client):
        assert client.get("/api/trades", params={"statuses": "ARCHIVED"}).status_code == 422

    def test_get_one(self, client, make_trade):
        trade = make_trade()
        resp = client.get(f"/api/trades/{trade.id}")
        assert resp.status_code == 200
        assert resp.json()["created_at"].endswith(("Z", "+00:00"))
        assert client.get("/api/trades/999").status_code == 404


class TestCloseTrade:
    def test_close_open_with_exit_price(self, admin_client, make_trade, store, broadcaster):
        trade = make_trade(side="SHORT", entry_price=100.0, tp_price=90.0, sl_price=105.0,
                           pnl_unrealized_pct=3.0)

        resp = admin_client.post(f"/api/trades/{trade.id}/close", json={"exit_price": 92})

        assert resp.status_code == 200
        closed = store.get(trade.id)
        assert closed.status == "CLOSED"
        assert closed.pnl_realized_pct == pytest.approx(8.0)
        assert closed.pnl_unrealized_pct == 0.0
        assert closed.closed_at is not None
        broadcaster.broadcast_active_trades.assert_awaited_once()

    def test_realized_override_wins(self, admin_client, make_trade, store):
        trade = make_trade()
        admin_client.post(f"/api/trades/{trade.id}/close", json={"exit_price": 120, "pnl_realized_pct": 1.25})
        assert store.get(trade.id).pnl_realized_pct == pytest.approx(1.25)

    def test_close_without_price_keeps_realized(self, admin_client, make_trade, store):
        trade = make_trade(pnl_realized_pct=0.5)
        assert admin_client.post(f"/api/trades/{trade.id}/close").status_code == 200
        assert store.get(trade.id).pnl_realized_pct == pytest.approx(0.5)

    def test_close_pending_rejected(self, admin_client, make_trade):
        trade = make_trade(status="PENDING")
        assert admin_client.post(f"/api/trades/{trade.id}/close", json={}).status_code == 400

    def test_close_already_closed_rejected(self, admin_client, make_trade):
        trade = make_trade(status="CLOSED")
        assert admin_client.post(f"/api/trades/{trade.id}/close", json={}).status_code == 400

    def test_remove_pending(self, admin_client, make_trade, store):
        trade = make_trade(status="PENDING")
        resp = admin_client.post(f"/api/trades/{trade.id}/close", json={"action": "remove"})
        assert resp.status_code == 200
        assert resp.json()["removed"] is True
        assert store.get(trade.id) is None

    def test_remove_open_rejected(self, admin_client, make_trade, store):
        trade = make_trade(status="OPEN")
        resp = admin_client.post(f"/api/trades/{trade.id}/close", json={"action": "remove"})
        assert resp.status_code == 400
        assert store.get(trade.id) is not None

    def test_unknown_trade(self, admin_client):
        assert admin_client.post("/api/trades/404/close", json={}).status_code == 404


def test_close_all(admin_client, make_trade, store, broadcaster):
    make_trade(status="OPEN")
    make_trade(status="OPEN")
    make_trade(status="PENDING")
    done = make_trade(status="CLOSED", pnl_realized_pct=4.0)

    resp = admin_client.post("/api/trades/close-all")

    assert resp.json() == {"closedCount": 2, "removedPending": 1}
    assert {t.status for t in store.find_many()} == {"CLOSED"}
    assert len(store.find_many()) == 3
    assert store.get(done.id).pnl_realized_pct == 4.0
    broadcaster.broadcast_active_trades.assert_awaited_once()


def test_database_reset(admin_client, make_trade, store):
    make_trade()
    make_trade(status="CLOSED")
    resp = admin_client.post("/api/database/reset")
    assert resp.json() == {"success": True, "deleted": 2}
    assert store.find_many() == []


# ---------------------------------------------------------------------------
# 3. Charts
# ---------------------------------------------------------------------------

def test_ohlcv(client, make_trade, quotes):
    trade = make_trade(symbol="ETH")
    quotes.candles = [{"time": 1, "open": 1.0, "high": 1.0, "low": 1.0, "close": 1.0, "volume": 0.0}]

    resp = client.get(f"/api/trades/{trade.id}/ohlcv", params={"tf": "weekly"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["symbol"] == "ETH"
    assert body["tf"] == "1h"
    assert len(body["data"]) == 1


def test_ohlcv_provider_failure(client, make_trade, quotes):
    trade = make_trade()
    quotes.candles = QuoteUnavailable("rate limited")
    assert client.get(f"/api/trades/{trade.id}/ohlcv", params={"tf": "5m"}).status_code == 502


# ---------------------------------------------------------------------------
# 4. Dashboard
# ---------------------------------------------------------------------------

def test_pnl_empty_has_single_zero_point(client):
    points = client.get("/api/pnl").json()
    assert len(points) == 1
    assert points[0]["cumulativePnl"] == 0.0


def test_pnl_is_cumulative_by_creation_time(client, make_trade):
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    make_trade(status="CLOSED", pnl_realized_pct=-2.0, created_at=base + timedelta(hours=2))
    make_trade(status="CLOSED", pnl_realized_pct=5.0, created_at=base)
    make_trade(status="OPEN", created_at=base + timedelta(hours=1))

    points = client.get("/api/pnl").json()

    assert [p["cumulativePnl"] for p in points] == [5.0, 5.0, 3.0]


def test_reports_window(client, make_trade):
    now = datetime.now(timezone.utc)
    make_trade(status="CLOSED", pnl_realized_pct=10.0, created_at=now - timedelta(days=40))
    make_trade(status="CLOSED", pnl_realized_pct=-3.0, created_at=now - timedelta(days=10))
    make_trade(status="OPEN", created_at=now - timedelta(days=1))
    make_trade(status="PENDING", created_at=now)

    all_time = client.get("/api/reports").json()
    assert all_time["totals"] == {"open": 1, "pending": 1, "closed": 2}
    assert all_time["pnl_realized_pct_sum"] == pytest.approx(7.0)

    month = client.get("/api/reports", params={"window": "1m"}).json()
    assert month["totals"]["closed"] == 1
    assert month["pnl_realized_pct_sum"] == pytest.approx(-3.0)

    week = client.get("/api/reports", params={"window": "7d"}).json()
    assert week["totals"] == {"open": 1, "pending": 1, "closed": 0}

    assert client.get("/api/reports", params={"window": "1y"}).status_code == 422


# ---------------------------------------------------------------------------
# 5. System
# ---------------------------------------------------------------------------

def test_health(client):
    resp = client.get("/api/system/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_manual_tick(admin_client, make_trade, quotes, store, broadcaster, engine):
    trade = make_trade(entry_price=100.0, tp_price=110.0, sl_price=95.0)
    quotes.prices["BTC"] = 111.0

    with patch("airtrack.database.engine", engine):
        resp = admin_client.post("/api/system/tick")

    assert resp.status_code == 200
    assert resp.json()["closed"][0]["trade_id"] == trade.id
    assert store.get(trade.id).status == "CLOSED"
    broadcaster.broadcast_active_trades.assert_awaited_once_with(store)
    with Session(engine) as session:
        row = session.exec(select(TickLog)).one()
    assert row.status == "success"
    assert row.closed == 1


def test_manual_tick_refused_while_tick_running(admin_client, make_trade, quotes, store, broadcaster, engine):
    trade = make_trade(entry_price=100.0, tp_price=110.0, sl_price=95.0)
    quotes.prices["BTC"] = 111.0

    asyncio.run(tick._tick_lock.acquire())
    try:
        with patch("airtrack.database.engine", engine):
            resp = admin_client.post("/api/system/tick")
    finally:
        tick._tick_lock.release()

    assert resp.status_code == 409
    assert store.get(trade.id).status == "OPEN"
    assert quotes.calls == []
    broadcaster.broadcast_active_trades.assert_not_called()
    with Session(engine) as session:
        row = session.exec(select(TickLog)).one()
    assert row.status == "skipped"


def test_tick_logs(admin_client, engine):
    with Session(engine) as session:
        session.add(TickLog(status="success", opened=1, duration_ms=float("nan")))
        session.add(TickLog(status="skipped"))
        session.commit()

    rows = admin_client.get("/api/system/logs", params={"status": "success"}).json()
    assert len(rows) == 1
    assert rows[0]["duration_ms"] is None


def test_trade_model_defaults():
    trade = Trade(symbol="BTC", entry_price=1.0, tp_price=2.0, sl_price=0.5)
    assert trade.status == "PENDING"
    assert trade.quote == "USDT"
