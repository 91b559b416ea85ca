from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI
from pymongo import MongoClient

from src.alerting.config import BackendConfig
from src.alerting.db.alert_store import AlertStore
from src.alerting.db.mongo import MongoManager
from src.alerting.services.auto_close import AutoCloseSweeper
from src.alerting.services.cache import CacheInvalidator, TTLCache
from src.alerting.services.escalation import EscalationEvaluator
from src.alerting.services.rule_catalog import RuleCatalog
from src.alerting.services.transitions import TransitionGuard


@dataclass
class AppState:
    """Typed app.state container for shared singletons."""

    config: BackendConfig
    mongo: MongoManager
    store: AlertStore
    catalog: RuleCatalog
    cache: TTLCache
    invalidator: CacheInvalidator
    guard: TransitionGuard
    evaluator: EscalationEvaluator
    sweeper: AutoCloseSweeper
    sweeper_task: Optional[object] = None  # asyncio.Task, but kept loose to avoid import cycles


# PUBLIC_INTERFACE
def build_state(
    config: BackendConfig,
    mongo_client: Optional[MongoClient] = None,
    catalog: Optional[RuleCatalog] = None,
) -> AppState:
    """Wire the store, rule catalog, cache hook and lifecycle services together."""
    mongo = MongoManager(config.mongo_uri, config.mongo_db_name, client=mongo_client)
    store = AlertStore(mongo)
    catalog = catalog if catalog is not None else RuleCatalog.from_path(config.rules_config_path)
    cache = TTLCache(config.cache_ttl_seconds)
    invalidator = CacheInvalidator(cache)
    guard = TransitionGuard(store)
    return AppState(
        config=config,
        mongo=mongo,
        store=store,
        catalog=catalog,
        cache=cache,
        invalidator=invalidator,
        guard=guard,
        evaluator=EscalationEvaluator(catalog, store, guard, invalidator),
        sweeper=AutoCloseSweeper(catalog, store, guard, invalidator),
    )


# PUBLIC_INTERFACE
def init_state(app: FastAPI, config: BackendConfig, mongo_client: Optional[MongoClient] = None) -> AppState:
    """Initialize app.state with config, Mongo manager and lifecycle services."""
    state = build_state(config, mongo_client=mongo_client)
    app.state.state = state
    return state


# PUBLIC_INTERFACE
def get_state(app: FastAPI) -> AppState:
    """Fetch typed AppState from a FastAPI app."""
    return app.state.state  # type: ignore[attr-defined]
