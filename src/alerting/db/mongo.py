from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from typing import Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MongoCollections:
    """Convenience wrapper for app collections."""

    alerts: Collection


class MongoManager:
    """
    MongoDB connection manager.

    Maintains one MongoClient for the app's storage DB. A pre-built client can be passed
    in (tests hand over a mongomock client); otherwise one is created lazily from the URI.
    """

    def __init__(self, app_mongo_uri: str, db_name: str, client: Optional[MongoClient] = None):
        self._app_mongo_uri = app_mongo_uri
        self._db_name = db_name
        self._app_client: Optional[MongoClient] = client
        self._lock = RLock()

    def connect_app(self) -> None:
        """Initialize app Mongo client if needed."""
        with self._lock:
            if self._app_client is not None:
                return
            # MongoClient is thread-safe and manages internal pooling.
            self._app_client = MongoClient(self._app_mongo_uri, connect=True)

    # PUBLIC_INTERFACE
    def ping(self, timeout_ms: int = 1500) -> bool:
        """
        Ping the configured MongoDB to validate connectivity.

        This is used by startup validation and the connectivity-check endpoint.
        """
        try:
            if self._app_client is None:
                # Ensure client exists before pinging
                self.connect_app()
            assert self._app_client is not None
            self._app_client.admin.command("ping", maxTimeMS=int(max(250, timeout_ms)))
            return True
        except PyMongoError:
            logger.exception("Mongo ping failed (PyMongoError)")
            return False
        except Exception:
            logger.exception("Mongo ping failed (unexpected)")
            return False

    def close(self) -> None:
        """Close the app Mongo client."""
        with self._lock:
            if self._app_client is not None:
                try:
                    self._app_client.close()
                except Exception:
                    logger.exception("Error closing app MongoClient")
                self._app_client = None

    def app_db(self) -> Database:
        """Return the application database handle."""
        if self._app_client is None:
            self.connect_app()
        assert self._app_client is not None
        return self._app_client[self._db_name]

    def collections(self) -> MongoCollections:
        """Return app collections."""
        db = self.app_db()
        return MongoCollections(alerts=db["alerts"])

    def init_indexes(self) -> None:
        """Create required indexes (idempotent)."""
        cols = self.collections()

        # Dedup key: a second ingestion with the same externalId is a constraint violation.
        cols.alerts.create_index([("externalId", ASCENDING)], unique=True, name="uniq_alerts_externalId")

        # Escalation window counts: category + occurredAt range.
        cols.alerts.create_index(
            [("category", ASCENDING), ("occurredAt", ASCENDING)],
            name="idx_alerts_category_occurredAt",
        )

        # Sweeper only loads live alerts.
        cols.alerts.create_index([("status", ASCENDING)], name="idx_alerts_status")

        # Listing feed.
        cols.alerts.create_index([("occurredAt", DESCENDING)], name="idx_alerts_occurredAt_desc")
        cols.alerts.create_index([("createdAt", DESCENDING)], name="idx_alerts_createdAt_desc")
