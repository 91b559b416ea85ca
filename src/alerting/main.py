from __future__ import annotations

import asyncio
import logging
import os
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.alerting.config import load_config
from src.alerting.routers import alerts, health, rules
from src.alerting.services.auto_close import auto_close_loop
from src.alerting.state import get_state, init_state

openapi_tags = [
    {"name": "Health", "description": "Service health, Mongo connectivity and sweeper diagnostics."},
    {"name": "Alerts", "description": "Alert ingestion (with inline escalation), listing and manual resolution."},
    {"name": "Rules", "description": "Per-category escalation and auto-close policies."},
]

logger = logging.getLogger(__name__)

config = load_config()
logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Alert Escalation API",
    description=(
        "Backend API for alert ingestion and lifecycle management. "
        "Alerts are stored in MongoDB; each ingested alert is evaluated against its category's escalation "
        "policy, and a background sweeper auto-closes live alerts by age or metadata flag."
    ),
    version="1.0.0",
    openapi_tags=openapi_tags,
)

# Initialize typed app state (config + Mongo manager + lifecycle services)
init_state(app, config)


@app.on_event("startup")
async def _on_startup() -> None:
    """Startup hook: connect to Mongo, validate connectivity, ensure indexes, and start the sweeper."""
    state = get_state(app)

    # Connect + verify early so a misconfigured Mongo doesn't silently break the sweeper.
    state.mongo.connect_app()
    if not state.mongo.ping():
        raise RuntimeError("Mongo connectivity check failed during startup. Verify BACKEND_MONGO_URI / MONGO_URI.")

    state.mongo.init_indexes()

    app.state._sweeper_shutdown = asyncio.Event()
    if state.config.auto_close_enabled:
        state.sweeper_task = asyncio.create_task(
            auto_close_loop(state.sweeper, state.config.auto_close_interval_sec, app.state._sweeper_shutdown)
        )
    else:
        logger.info("Auto-close sweeper disabled (AUTO_CLOSE_ENABLED=false)")


@app.on_event("shutdown")
async def _on_shutdown() -> None:
    """Shutdown hook: stop the sweeper and close Mongo connections."""
    state = get_state(app)

    sweeper_shutdown = getattr(app.state, "_sweeper_shutdown", None)
    if sweeper_shutdown is not None:
        sweeper_shutdown.set()
    sweeper_task = state.sweeper_task
    if sweeper_task is not None:
        try:
            await asyncio.wait_for(sweeper_task, timeout=10.0)
        except Exception:
            logger.exception("Error stopping auto-close sweeper task")

    state.mongo.close()


def _env_frontend_url() -> str | None:
    return os.getenv("FRONTEND_URL")


def _env_cors_extra_origins() -> List[str]:
    # Comma-separated list for preview deployments, etc.
    raw = os.getenv("CORS_ALLOW_ORIGINS") or ""
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    return parts


# CORS: allow local frontend by default, plus explicit frontend URL and optional extra origins.
allowed_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"]
frontend_url = _env_frontend_url()
if frontend_url:
    allowed_origins.append(frontend_url)
allowed_origins.extend(_env_cors_extra_origins())

# De-dupe while preserving order
_seen = set()
allowed_origins = [o for o in allowed_origins if not (o in _seen or _seen.add(o))]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(alerts.router)
app.include_router(rules.router)
