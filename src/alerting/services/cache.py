from __future__ import annotations

import logging
import time
from threading import RLock
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple

logger = logging.getLogger(__name__)


# Aggregates computed by read-side queries; any alert mutation makes them stale.
SUMMARY_KEY = "alerts:summary"
TRENDS_KEY = "alerts:trends"
LEADERBOARD_KEY = "alerts:leaderboard"
AGGREGATE_KEYS = frozenset({SUMMARY_KEY, TRENDS_KEY, LEADERBOARD_KEY})


def alert_key(alert_id: Any) -> str:
    return f"alert:{alert_id}"


# PUBLIC_INTERFACE
def mutation_keys(alert_id: Any) -> Set[str]:
    """Cache keys made stale by a mutation of one alert."""
    return set(AGGREGATE_KEYS) | {alert_key(alert_id)}


class TTLCache:
    """Small thread-safe in-process cache with a per-entry expiry."""

    def __init__(self, ttl_seconds: int = 60, clock: Callable[[], float] = time.monotonic):
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = RLock()
        # Bumped by every invalidate(); lets readers detect a mutation during a refill.
        self._epoch = 0

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() > expires_at:
                self._entries.pop(key, None)
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = self._ttl if ttl_seconds is None else float(ttl_seconds)
        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)

    def invalidate(self, keys: Iterable[str]) -> None:
        with self._lock:
            self._epoch += 1
            for key in keys:
                self._entries.pop(key, None)

    def epoch(self) -> int:
        with self._lock:
            return self._epoch

    def set_if_unchanged(self, key: str, value: Any, epoch: int) -> bool:
        """
        Store ``value`` only if nothing was invalidated since ``epoch`` was read.

        A refill that raced a mutation is dropped, so the pre-mutation copy is not
        cached for a full TTL.
        """
        with self._lock:
            if self._epoch != epoch:
                return False
            self.set(key, value)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CacheInvalidator:
    """
    Mutation hook for the aggregate cache.

    Called synchronously after every successful alert mutation. Failures are logged and
    never propagate to the mutation that triggered them.
    """

    def __init__(self, cache: TTLCache):
        self._cache = cache

    # PUBLIC_INTERFACE
    def on_mutated(self, keys: Iterable[str]) -> None:
        """Mark ``keys`` stale in the downstream cache."""
        stale = set(keys)
        try:
            self._cache.invalidate(stale)
        except Exception:
            logger.exception("Cache invalidation failed for keys=%s", sorted(stale))
