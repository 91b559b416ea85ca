from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from src.alerting.db.mongo import MongoManager
from src.alerting.errors import DuplicateAlertError, StoreUnavailableError
from src.alerting.schemas.alerts import LIVE_STATUSES, AlertStatus

logger = logging.getLogger(__name__)


def parse_alert_id(alert_id: Any) -> Optional[ObjectId]:
    """Return an ObjectId for the given id, or None when it cannot be one."""
    if isinstance(alert_id, ObjectId):
        return alert_id
    try:
        return ObjectId(str(alert_id))
    except (InvalidId, TypeError):
        return None


def to_store_datetime(value: datetime) -> datetime:
    """Naive UTC, truncated to the millisecond resolution of BSON dates."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def _from_store_value(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_store_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_store_datetime(value)
    return value


def _from_store(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    out = {k: _from_store_value(v) for k, v in doc.items()}
    out["metadata"] = {k: _from_store_value(v) for k, v in (doc.get("metadata") or {}).items()}
    return out


def _status_values(statuses: Iterable[AlertStatus]) -> List[str]:
    return sorted(AlertStatus(s).value for s in statuses)


class AlertStore:
    """
    Narrow persistence interface over the ``alerts`` collection.

    Documents go in and come out as plain dicts (camelCase Mongo keys); datetimes are
    returned timezone-aware. Every driver failure surfaces as StoreUnavailableError,
    except duplicate externalIds which raise DuplicateAlertError.
    """

    def __init__(self, mongo: MongoManager):
        self._mongo = mongo

    def _col(self):
        return self._mongo.collections().alerts

    def insert(self, doc: dict) -> dict:
        """Insert a new alert document and return it with its assigned ``_id``."""
        stored = {k: _to_store_value(v) for k, v in doc.items()}
        stored["metadata"] = {k: _to_store_value(v) for k, v in (doc.get("metadata") or {}).items()}
        try:
            res = self._col().insert_one(stored)
        except DuplicateKeyError as exc:
            raise DuplicateAlertError(str(doc.get("externalId"))) from exc
        except PyMongoError as exc:
            raise StoreUnavailableError(f"insert failed: {exc}") from exc
        stored["_id"] = res.inserted_id
        return _from_store(stored)  # type: ignore[return-value]

    def get(self, alert_id: Any) -> Optional[dict]:
        """Fetch one alert by id; None when missing or the id is malformed."""
        oid = parse_alert_id(alert_id)
        if oid is None:
            return None
        try:
            return _from_store(self._col().find_one({"_id": oid}))
        except PyMongoError as exc:
            raise StoreUnavailableError(f"get failed: {exc}") from exc

    def count_in_range(self, category: str, start: datetime, end: datetime) -> int:
        """Count alerts of ``category`` whose occurredAt lies in [start, end]."""
        query = {
            "category": category,
            "occurredAt": {"$gte": to_store_datetime(start), "$lte": to_store_datetime(end)},
        }
        try:
            return int(self._col().count_documents(query))
        except PyMongoError as exc:
            raise StoreUnavailableError(f"count failed: {exc}") from exc

    def find_live(self) -> List[dict]:
        """Load every alert that is still OPEN or ESCALATED."""
        try:
            docs = list(self._col().find({"status": {"$in": _status_values(LIVE_STATUSES)}}))
        except PyMongoError as exc:
            raise StoreUnavailableError(f"find_live failed: {exc}") from exc
        return [_from_store(d) for d in docs]  # type: ignore[misc]

    def conditional_update(
        self,
        alert_id: Any,
        expected_statuses: Iterable[AlertStatus],
        new_status: AlertStatus,
        metadata_patch: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Set status (and metadata keys) only if the stored status is still expected.

        Returns True when a document matched, False when the alert is missing or has
        already moved to a status outside ``expected_statuses``.
        """
        oid = parse_alert_id(alert_id)
        if oid is None:
            return False

        update: Dict[str, Any] = {"status": AlertStatus(new_status).value}
        for key, value in (metadata_patch or {}).items():
            update[f"metadata.{key}"] = _to_store_value(value)

        try:
            res = self._col().update_one(
                {"_id": oid, "status": {"$in": _status_values(expected_statuses)}},
                {"$set": update},
            )
        except PyMongoError as exc:
            raise StoreUnavailableError(f"conditional update failed: {exc}") from exc
        return res.matched_count == 1

    def list_alerts(
        self,
        *,
        status: Optional[AlertStatus] = None,
        category: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[dict], int]:
        """List alerts newest occurredAt first. Returns (items, total_matching)."""
        query: Dict[str, Any] = {}
        if status is not None:
            query["status"] = AlertStatus(status).value
        if category:
            query["category"] = category
        if since or until:
            occurred: Dict[str, Any] = {}
            if since:
                occurred["$gte"] = to_store_datetime(since)
            if until:
                occurred["$lte"] = to_store_datetime(until)
            query["occurredAt"] = occurred

        try:
            col = self._col()
            total = int(col.count_documents(query))
            docs = list(
                col.find(query)
                .sort("occurredAt", DESCENDING)
                .skip(int(offset))
                .limit(int(limit))
            )
        except PyMongoError as exc:
            raise StoreUnavailableError(f"list failed: {exc}") from exc
        return [_from_store(d) for d in docs], total  # type: ignore[misc]
