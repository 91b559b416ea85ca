from __future__ import annotations

import itertools
import json
from collections.abc import AsyncIterator, Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import httpx
import mongomock
import pytest

from src.alerting.config import BackendConfig
from src.alerting.services.auto_close import AutoCloseSweeper
from src.alerting.services.escalation import EscalationEvaluator
from src.alerting.state import AppState, build_state

# Fixed "now" for deterministic window and age math.
NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

TEST_RULES: Dict[str, Any] = {
    "overspeed": {"windowMinutes": 60, "escalateIfCount": 3, "autoCloseAfterMinutes": 1440},
    "compliance": {"autoCloseIfMetadataKey": "documentValid"},
}


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def rules_file(tmp_path: Path) -> Path:
    """Rules file on disk so reload paths can be exercised."""
    path = tmp_path / "rules.json"
    path.write_text(json.dumps(TEST_RULES), encoding="utf-8")
    return path


@pytest.fixture
def backend_config(rules_file: Path) -> BackendConfig:
    return BackendConfig(
        mongo_uri="mongodb://localhost:27017",
        mongo_db_name="alert_escalation_test",
        rules_config_path=str(rules_file),
        auto_close_enabled=False,
        auto_close_interval_sec=300,
        cache_ttl_seconds=60,
        log_level="INFO",
        mongo_uri_source="test",
    )


@pytest.fixture
def mongo_client() -> Iterator[mongomock.MongoClient]:
    """In-memory MongoDB stand-in; fresh per test so no state leaks across tests."""
    client = mongomock.MongoClient()
    try:
        yield client
    finally:
        client.close()


@pytest.fixture
def state(backend_config: BackendConfig, mongo_client: mongomock.MongoClient) -> AppState:
    """Fully wired AppState backed by mongomock, with indexes in place."""
    app_state = build_state(backend_config, mongo_client=mongo_client)
    app_state.mongo.init_indexes()
    return app_state


@pytest.fixture
def alerts_col(state: AppState):
    """Raw alerts collection for direct inspection."""
    return state.mongo.collections().alerts


@pytest.fixture
def insert_alert(state: AppState) -> Callable[..., dict]:
    """Persist an alert document directly through the store (bypassing escalation)."""
    seq = itertools.count(1)

    def _insert(
        category: str,
        occurred_at: datetime,
        status: str = "OPEN",
        metadata: Optional[Dict[str, Any]] = None,
        external_id: Optional[str] = None,
    ) -> dict:
        return state.store.insert(
            {
                "externalId": external_id or f"ext-{next(seq)}",
                "category": category,
                "severity": "high",
                "occurredAt": occurred_at,
                "status": status,
                "metadata": metadata or {},
                "createdAt": NOW,
            }
        )

    return _insert


@pytest.fixture
def evaluator(state: AppState) -> EscalationEvaluator:
    return EscalationEvaluator(state.catalog, state.store, state.guard, state.invalidator, clock=lambda: NOW)


@pytest.fixture
def sweeper(state: AppState) -> AutoCloseSweeper:
    return AutoCloseSweeper(state.catalog, state.store, state.guard, state.invalidator, clock=lambda: NOW)


@pytest.fixture(scope="session")
def fastapi_app():
    """
    The FastAPI app module, imported once with env configured for tests.

    The module-level state it builds is replaced per test by the mongomock-backed one.
    """
    with pytest.MonkeyPatch.context() as mp:
        mp.setenv("BACKEND_MONGO_URI", "mongodb://localhost:27017")
        mp.setenv("AUTO_CLOSE_ENABLED", "false")
        from src.alerting.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def app(fastapi_app, state: AppState):
    fastapi_app.state.state = state
    return fastapi_app


@pytest.fixture
async def async_client(app) -> AsyncIterator[httpx.AsyncClient]:
    """
    Async HTTP client bound to the FastAPI ASGI app.

    ASGITransport does not run lifespan events, so no Mongo connection or sweeper loop is
    started; tests drive the sweeper explicitly.
    """
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
