from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from src.alerting.config import sanitize_mongo_uri
from src.alerting.schemas.common import HealthResponse, utc_now
from src.alerting.state import get_state

router = APIRouter(tags=["Health"])


class MongoConnectivityResponse(BaseModel):
    """Response model for backend↔Mongo connectivity diagnostics."""

    ok: bool = Field(..., description="Whether the backend can successfully ping MongoDB.")
    mongo_uri_source: str = Field(..., description="Which source provided the effective MongoDB URI.")
    mongo_db_name: str = Field(..., description="Database holding the alerts collection.")
    mongo_uri_sanitized: str = Field(..., description="MongoDB URI with credentials masked.")
    timestamp: str = Field(..., description="UTC timestamp when the check was performed (ISO string).")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Optional debug metadata.")


class AutoCloseDiagnosticsResponse(BaseModel):
    """Diagnostics model describing the auto-close sweeper."""

    enabled: bool = Field(..., description="Whether the background sweeper loop is started at startup.")
    interval_sec: int = Field(..., description="Seconds between sweep ticks.")
    runs_started: int = Field(..., description="Ticks started since process start.")
    runs_finished: int = Field(..., description="Ticks that completed without error.")
    runs_failed: int = Field(..., description="Ticks abandoned because of an error.")
    in_flight: int = Field(..., description="Ticks currently running (overlap is allowed).")
    last_closed: int = Field(..., description="Alerts closed by the most recently finished tick.")
    last_started_at: Optional[datetime] = Field(default=None, description="UTC start of the latest tick.")
    last_finished_at: Optional[datetime] = Field(default=None, description="UTC end of the latest finished tick.")
    last_error: Optional[str] = Field(default=None, description="Error of the latest failed tick, if any.")
    timestamp: str = Field(..., description="UTC timestamp when the diagnostics were produced (ISO string).")


@router.get(
    "/",
    response_model=HealthResponse,
    summary="Health check",
    description="Basic service liveness check used by deployment and the frontend.",
    operation_id="health_check",
)
def health_check() -> HealthResponse:
    """Return service liveness status."""
    return HealthResponse(status="ok", message="Healthy", timestamp=utc_now())


@router.get(
    "/api/health/mongo",
    response_model=MongoConnectivityResponse,
    summary="Mongo connectivity check",
    description="Pings the backend's configured MongoDB and reports where the URI came from. Credentials are masked.",
    operation_id="mongo_connectivity_check",
)
def mongo_connectivity_check(request: Request) -> MongoConnectivityResponse:
    """Connectivity check endpoint to validate backend↔Mongo and report which URI source is being used."""
    state = get_state(request.app)
    ok = state.mongo.ping()

    return MongoConnectivityResponse(
        ok=ok,
        mongo_uri_source=state.config.mongo_uri_source,
        mongo_db_name=state.config.mongo_db_name,
        mongo_uri_sanitized=sanitize_mongo_uri(state.config.mongo_uri),
        timestamp=utc_now().isoformat(),
        meta={},
    )


@router.get(
    "/api/health/auto-close",
    response_model=AutoCloseDiagnosticsResponse,
    summary="Auto-close sweeper diagnostics",
    description="Reports sweeper configuration and tick counters for troubleshooting auto-close behavior.",
    operation_id="auto_close_diagnostics",
)
def auto_close_diagnostics(request: Request) -> AutoCloseDiagnosticsResponse:
    """Return auto-close sweeper configuration and tick statistics."""
    state = get_state(request.app)
    cfg = state.config
    return AutoCloseDiagnosticsResponse(
        enabled=bool(cfg.auto_close_enabled),
        interval_sec=int(cfg.auto_close_interval_sec),
        timestamp=utc_now().isoformat(),
        **state.sweeper.stats(),
    )
