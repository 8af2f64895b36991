"""
Scheduler API Tests.

Tests for the FastAPI endpoints: bearer auth, batch and
detection responses, and error payloads.
"""

import asyncio
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient

from copy_engine.api import create_app
from copy_engine.config import CopyEngineConfig
from copy_engine.detection import TradeDetector
from copy_engine.engine import CopyTradeEngine
from copy_engine.factory import CopyEngineRuntime
from copy_engine.processor import BatchProcessor
from copy_engine.retry import RetryPolicy
from copy_engine.types import BrokerageAccount

from conftest import NOW, BlockingGateway, make_follower, make_trade, seed_follower


SECRET = "cron-secret"
AUTH = {"Authorization": f"Bearer {SECRET}"}


def build_runtime(engine, gateway, store, notifications, clock, cron_secret=SECRET):
    return CopyEngineRuntime(
        config=CopyEngineConfig(cron_secret=cron_secret, dry_run=True),
        gateway=gateway,
        store=store,
        notifications=notifications,
        engine=engine,
        processor=BatchProcessor(engine, store),
        detector=TradeDetector(gateway, store, clock=clock),
        clock=clock,
    )


@pytest.fixture
def runtime(engine, gateway, store, notifications, clock):
    return build_runtime(engine, gateway, store, notifications, clock)


@pytest.fixture
def client(runtime):
    with TestClient(create_app(runtime=runtime)) as test_client:
        yield test_client


class TestAuthorization:
    """Tests for the bearer secret check."""

    @pytest.mark.parametrize("path", ["/cron/process-trades", "/cron/detect-trades"])
    def test_missing_header_rejected(self, client, path):
        response = client.get(path)

        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized"}

    def test_wrong_secret_rejected(self, client):
        response = client.post("/trades/process", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_open_when_no_secret_configured(self, engine, gateway, store, notifications, clock):
        runtime = build_runtime(engine, gateway, store, notifications, clock, cron_secret=None)

        with TestClient(create_app(runtime=runtime)) as client:
            response = client.get("/cron/process-trades")

        assert response.status_code == 200

    def test_descriptions_need_no_auth(self, client):
        response = client.get("/trades/process")

        assert response.status_code == 200
        assert response.json() == {
            "message": "Trade processing endpoint",
            "method": "POST",
            "description": "Processes all pending copy trades",
        }


class TestProcessEndpoints:
    """Tests for the batch processing endpoints."""

    @pytest.mark.parametrize("method,path", [
        ("get", "/cron/process-trades"),
        ("post", "/trades/process"),
    ])
    def test_returns_batch_stats(self, client, store, method, path):
        seed_follower(store, "follower-1")
        seed_follower(store, "follower-2", with_account=False)
        store.add_trade(make_trade())

        response = getattr(client, method)(path, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["stats"] == {
            "total_trades": 1,
            "total_executions": 2,
            "successful_executions": 1,
            "failed_executions": 0,
            "skipped_executions": 1,
        }
        assert body["timestamp"] == NOW.isoformat()

    def test_store_failure_returns_500(self, client, store):
        store.fail_on("get_pending_trades", "database is down")

        response = client.get("/cron/process-trades", headers=AUTH)

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "Failed to process trades",
            "message": "database is down",
        }

    @pytest.mark.asyncio
    async def test_overlapping_request_gets_409(self, store, notifications, clock, sleeper):
        """Test a manual trigger during a running batch is turned away."""
        gateway = BlockingGateway()
        engine = CopyTradeEngine(
            gateway=gateway,
            store=store,
            retry=RetryPolicy(sleep=sleeper),
            notifications=notifications,
            clock=clock,
        )
        runtime = build_runtime(engine, gateway, store, notifications, clock)
        seed_follower(store)
        store.add_trade(make_trade())

        transport = httpx.ASGITransport(app=create_app(runtime=runtime))
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            running = asyncio.create_task(client.get("/cron/process-trades", headers=AUTH))
            await asyncio.wait_for(gateway.entered.wait(), timeout=1)

            rejected = await client.post("/trades/process", headers=AUTH)
            gateway.release.set()
            completed = await running

        assert rejected.status_code == 409
        assert rejected.json()["error"] == "Trade processing already in progress"
        assert completed.status_code == 200
        assert completed.json()["stats"]["successful_executions"] == 1
        assert len(gateway.orders) == 1
        assert len(store.executions_for("trade-1")) == 1


class TestDetectEndpoints:
    """Tests for the leader polling endpoints."""

    def test_detects_leader_trades(self, client, store, gateway):
        store.add_user(make_follower("leader-1", role="leader"))
        store.add_account(BrokerageAccount(
            user_id="leader-1", account_id="leader-account", balance=Decimal("50000"),
        ))
        gateway.set_positions("leader-account", [{"symbol": "TSLA", "units": 5}])

        response = client.post("/trades/detect", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["result"] == {"leaders_polled": 1, "trades_detected": 1}
        assert len(store.trades) == 1

    def test_leader_read_failure_returns_500(self, client, store):
        store.fail_on("get_leaders")

        response = client.get("/cron/detect-trades", headers=AUTH)

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to detect trades"


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.json() == {
            "status": "ok",
            "gateway": "mock",
            "timestamp": NOW.isoformat(),
        }
