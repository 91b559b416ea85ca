from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from src.alerting.db.alert_store import parse_alert_id
from src.alerting.errors import AlertNotFoundError, StoreUnavailableError
from src.alerting.schemas.alerts import (
    ENGINE_METADATA_KEYS,
    LIVE_STATUSES,
    AlertCreate,
    AlertOut,
    AlertsQuery,
    AlertStatus,
)
from src.alerting.schemas.common import as_utc, utc_now
from src.alerting.services.cache import alert_key, mutation_keys
from src.alerting.state import AppState

logger = logging.getLogger(__name__)


def _doc_to_alert_out(doc: dict) -> AlertOut:
    return AlertOut(
        id=str(doc["_id"]),
        externalId=doc["externalId"],
        category=doc["category"],
        severity=doc.get("severity", ""),
        occurredAt=doc["occurredAt"],
        status=doc["status"],
        metadata=doc.get("metadata") or {},
        createdAt=doc.get("createdAt"),
    )


def _caller_metadata(payload: AlertCreate) -> dict:
    metadata = dict(payload.metadata or {})
    dropped = sorted(k for k in metadata if k in ENGINE_METADATA_KEYS)
    if dropped:
        logger.warning("Dropping engine-owned metadata keys from externalId=%s: %s", payload.external_id, dropped)
    return {k: v for k, v in metadata.items() if k not in ENGINE_METADATA_KEYS}


# PUBLIC_INTERFACE
def evaluate_escalation(state: AppState, alert_doc: dict) -> bool:
    """
    Run the escalation evaluator for a persisted alert.

    Failures are logged and reported as "not escalated"; they never reach the caller,
    so an ingestion that already persisted its alert still succeeds.
    """
    try:
        return state.evaluator.evaluate(alert_doc)
    except StoreUnavailableError:
        logger.exception("Escalation skipped for externalId=%s: store unavailable", alert_doc.get("externalId"))
    except Exception:
        logger.exception("Escalation evaluation failed for externalId=%s", alert_doc.get("externalId"))
    return False


# PUBLIC_INTERFACE
def ingest_alert(state: AppState, payload: AlertCreate) -> AlertOut:
    """
    Persist a new OPEN alert, then evaluate it for escalation in the same call.

    Raises DuplicateAlertError for a known externalId and StoreUnavailableError when the
    insert itself fails.
    """
    doc = {
        "externalId": payload.external_id.strip(),
        "category": payload.category.strip(),
        "severity": payload.severity.strip(),
        "occurredAt": as_utc(payload.occurred_at),
        "status": AlertStatus.open.value,
        "metadata": _caller_metadata(payload),
        "createdAt": utc_now(),
    }
    saved = state.store.insert(doc)
    state.invalidator.on_mutated(mutation_keys(saved["_id"]))
    logger.info("Ingested alert externalId=%s category=%s", saved["externalId"], saved["category"])

    if evaluate_escalation(state, saved):
        try:
            saved = state.store.get(saved["_id"]) or {**saved, "status": AlertStatus.escalated.value}
        except StoreUnavailableError:
            logger.exception("Could not re-read escalated alert externalId=%s", saved["externalId"])
            saved = {**saved, "status": AlertStatus.escalated.value}

    return _doc_to_alert_out(saved)


# PUBLIC_INTERFACE
def resolve_alert(state: AppState, alert_id: str, actor: str) -> Tuple[AlertOut, bool]:
    """
    Manually resolve an OPEN or ESCALATED alert, recording who and when.

    Returns (alert, applied). ``applied`` is False when the alert was already terminal
    (possibly closed by the sweeper a moment earlier); the alert is returned unchanged.
    Raises AlertNotFoundError for unknown or malformed ids.
    """
    oid = parse_alert_id(alert_id)
    if oid is None:
        raise AlertNotFoundError(alert_id)

    applied = state.guard.try_transition(
        oid,
        LIVE_STATUSES,
        AlertStatus.resolved,
        {"resolvedAt": utc_now(), "resolvedBy": actor},
    )
    if applied:
        logger.info("Resolved alert id=%s by %s", oid, actor)
        state.invalidator.on_mutated(mutation_keys(oid))

    doc = state.store.get(oid)
    if doc is None:
        raise AlertNotFoundError(alert_id)
    return _doc_to_alert_out(doc), applied


# PUBLIC_INTERFACE
def get_alert(state: AppState, alert_id: str) -> Optional[AlertOut]:
    """Fetch an alert by id (served from the TTL cache when fresh); None if not found."""
    oid = parse_alert_id(alert_id)
    if oid is None:
        return None

    key = alert_key(oid)
    cached = state.cache.get(key)
    if cached is not None:
        return cached

    epoch = state.cache.epoch()
    doc = state.store.get(oid)
    if doc is None:
        return None
    out = _doc_to_alert_out(doc)
    state.cache.set_if_unchanged(key, out, epoch)
    return out


# PUBLIC_INTERFACE
def list_alerts(state: AppState, filters: AlertsQuery) -> Tuple[List[AlertOut], int]:
    """
    List alerts with filters and pagination, newest occurredAt first.

    Returns (items, total_matching).
    """
    docs, total = state.store.list_alerts(
        status=filters.status,
        category=filters.category,
        since=filters.since,
        until=filters.until,
        limit=filters.limit,
        offset=filters.offset,
    )
    return [_doc_to_alert_out(d) for d in docs], total
