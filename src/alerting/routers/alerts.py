from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Path, Query, Request, status
from pydantic import ValidationError

from src.alerting.errors import AlertNotFoundError, DuplicateAlertError, StoreUnavailableError
from src.alerting.schemas.alerts import (
    AlertCreate,
    AlertListResponse,
    AlertOut,
    AlertsQuery,
    ResolveResponse,
)
from src.alerting.schemas.common import ErrorResponse
from src.alerting.services import alerts_service
from src.alerting.state import get_state

router = APIRouter(prefix="/api/alerts", tags=["Alerts"])


@router.post(
    "",
    response_model=AlertOut,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Ingest alert",
    description=(
        "Persist a new alert with status OPEN and evaluate it for escalation in the same call. "
        "The response reflects the status after evaluation."
    ),
    operation_id="ingest_alert",
)
def ingest_alert(request: Request, payload: AlertCreate) -> AlertOut:
    """Ingest an alert."""
    for name, value in (("externalId", payload.external_id), ("category", payload.category), ("severity", payload.severity)):
        if not value.strip():
            raise HTTPException(status_code=400, detail=f"{name} must not be empty")
    try:
        return alerts_service.ingest_alert(get_state(request.app), payload)
    except DuplicateAlertError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except StoreUnavailableError:
        raise HTTPException(status_code=503, detail="alert store unavailable")


@router.get(
    "",
    response_model=AlertListResponse,
    summary="List alerts",
    description="List alerts filtered by status, category and occurredAt range. Results sorted by occurredAt desc.",
    operation_id="list_alerts",
)
def list_alerts(
    request: Request,
    status_filter: Optional[str] = Query(default=None, alias="status", description="OPEN|ESCALATED|AUTO_CLOSED|RESOLVED"),
    category: Optional[str] = Query(default=None),
    since: Optional[str] = Query(default=None, description="ISO datetime lower bound (inclusive)"),
    until: Optional[str] = Query(default=None, description="ISO datetime upper bound (inclusive)"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0, le=100000),
) -> AlertListResponse:
    """List alerts with filters and pagination."""
    # Let Pydantic parse status and datetimes via the model.
    try:
        filters = AlertsQuery(
            status=status_filter,
            category=category,
            since=since,
            until=until,
            limit=limit,
            offset=offset,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    try:
        items, total = alerts_service.list_alerts(get_state(request.app), filters)
    except StoreUnavailableError:
        raise HTTPException(status_code=503, detail="alert store unavailable")
    return AlertListResponse(items=items, total=total)


@router.get(
    "/{alert_id}",
    response_model=AlertOut,
    responses={404: {"model": ErrorResponse}},
    summary="Get alert",
    description="Fetch a single alert by id.",
    operation_id="get_alert",
)
def get_alert(
    request: Request,
    alert_id: str = Path(..., description="Alert id (Mongo ObjectId string)."),
) -> AlertOut:
    """Get an alert by id."""
    try:
        alert = alerts_service.get_alert(get_state(request.app), alert_id)
    except StoreUnavailableError:
        raise HTTPException(status_code=503, detail="alert store unavailable")
    if not alert:
        raise HTTPException(status_code=404, detail="alert not found")
    return alert


@router.post(
    "/{alert_id}/resolve",
    response_model=ResolveResponse,
    responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Resolve alert",
    description=(
        "Manually resolve an OPEN or ESCALATED alert. If the alert already reached a terminal state "
        "the alert is returned unchanged with applied=false."
    ),
    operation_id="resolve_alert",
)
def resolve_alert(
    request: Request,
    alert_id: str = Path(..., description="Alert id (Mongo ObjectId string)."),
    actor: str = Header("anonymous", alias="X-Actor", description="Who is resolving the alert."),
) -> ResolveResponse:
    """Resolve an alert."""
    try:
        alert, applied = alerts_service.resolve_alert(get_state(request.app), alert_id, actor.strip() or "anonymous")
    except AlertNotFoundError:
        raise HTTPException(status_code=404, detail="alert not found")
    except StoreUnavailableError:
        raise HTTPException(status_code=503, detail="alert store unavailable")
    return ResolveResponse(alert=alert, applied=applied)
