from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import AliasChoices, BaseModel, Field


class AlertStatus(str, Enum):
    """Lifecycle states of an alert."""

    open = "OPEN"
    escalated = "ESCALATED"
    auto_closed = "AUTO_CLOSED"
    resolved = "RESOLVED"


LIVE_STATUSES: FrozenSet[AlertStatus] = frozenset({AlertStatus.open, AlertStatus.escalated})

# Metadata keys written by the engine itself; never accepted from callers.
ENGINE_METADATA_KEYS: FrozenSet[str] = frozenset(
    {"escalatedAt", "closedAt", "closureNote", "resolvedAt", "resolvedBy"}
)


class AlertCreate(BaseModel):
    """Request model for ingesting an alert."""

    external_id: str = Field(
        ...,
        min_length=1,
        description="Caller-supplied dedup key; a second alert with the same id is rejected.",
        validation_alias=AliasChoices("externalId", "alertid"),
    )
    category: str = Field(
        ...,
        min_length=1,
        description="Event category; selects which policy applies.",
        validation_alias=AliasChoices("category", "sourceType"),
    )
    severity: str = Field(..., min_length=1, description="Severity label (open-ended).")
    occurred_at: datetime = Field(
        ...,
        description="Event time supplied by the caller; naive values are treated as UTC.",
        validation_alias=AliasChoices("occurredAt", "timestamp"),
    )
    metadata: Optional[Dict[str, Any]] = Field(
        default_factory=dict,
        description="Source-specific attributes; null is treated as empty.",
    )


class AlertOut(BaseModel):
    """Response model for an alert."""

    id: str = Field(..., description="Alert id (Mongo ObjectId string).")
    external_id: str = Field(..., description="Caller-supplied dedup key.", alias="externalId")
    category: str = Field(..., description="Event category.")
    severity: str = Field(..., description="Severity label.")
    occurred_at: datetime = Field(..., description="UTC event time.", alias="occurredAt")
    status: AlertStatus = Field(..., description="Current lifecycle status.")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Source attributes plus engine audit fields.")
    created_at: Optional[datetime] = Field(default=None, description="UTC ingestion time.", alias="createdAt")


class AlertListResponse(BaseModel):
    """Envelope for listing alerts."""

    items: List[AlertOut] = Field(..., description="List of alerts.")
    total: int = Field(..., ge=0, description="Total count of alerts matching the filters.")


class ResolveResponse(BaseModel):
    """Outcome of a manual resolve request."""

    alert: AlertOut = Field(..., description="The alert as stored after the resolve attempt.")
    applied: bool = Field(
        ...,
        description="False when the alert had already reached a terminal state before this request.",
    )


class AlertsQuery(BaseModel):
    """Filter/pagination model for listing alerts (used by router query params)."""

    status: Optional[AlertStatus] = Field(default=None, description="Filter by status.")
    category: Optional[str] = Field(default=None, description="Filter by category.")
    since: Optional[datetime] = Field(default=None, description="occurredAt lower bound (inclusive).")
    until: Optional[datetime] = Field(default=None, description="occurredAt upper bound (inclusive).")
    limit: int = Field(100, ge=1, le=500, description="Max number of alerts to return.")
    offset: int = Field(0, ge=0, le=100000, description="Offset for pagination (simple skip).")
