from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Callable, Dict, Iterable, Optional, Set

from src.alerting.db.alert_store import AlertStore
from src.alerting.errors import StoreUnavailableError
from src.alerting.schemas.alerts import LIVE_STATUSES, AlertStatus
from src.alerting.schemas.common import as_utc, utc_now
from src.alerting.services.cache import CacheInvalidator, mutation_keys
from src.alerting.services.rule_catalog import Policy, RuleCatalog
from src.alerting.services.transitions import TransitionGuard

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def closure_note_for(policy: Policy, alert: dict, now: datetime) -> Optional[str]:
    """
    Return the closure note if ``alert`` qualifies for auto-close under ``policy``.

    The age rule is checked first; the metadata rule only applies when the age rule did
    not fire. Returns None when neither applies.
    """
    if policy.age_closure is not None:
        occurred_at = alert.get("occurredAt")
        if not isinstance(occurred_at, datetime):
            raise ValueError(f"alert {alert.get('_id')} has no usable occurredAt")
        minutes = policy.age_closure.after_minutes
        if as_utc(now) - as_utc(occurred_at) >= timedelta(minutes=minutes):
            return f"auto-closed after {minutes} mins with no resolution"

    if policy.metadata_closure is not None:
        key = policy.metadata_closure.key
        if (alert.get("metadata") or {}).get(key) is True:
            return f"auto-closed because {key} is true"

    return None


class AutoCloseSweeper:
    """
    Periodic scan that closes live alerts whose category policy says they are done.

    ``sweep_once`` is reentrant: overlapping ticks may load the same candidates, and the
    transition guard lets only one of them close each alert.
    """

    def __init__(
        self,
        catalog: RuleCatalog,
        store: AlertStore,
        guard: TransitionGuard,
        invalidator: CacheInvalidator,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._catalog = catalog
        self._store = store
        self._guard = guard
        self._invalidator = invalidator
        self._clock = clock

        self._stats_lock = Lock()
        self._runs_started = 0
        self._runs_finished = 0
        self._runs_failed = 0
        self._in_flight = 0
        self._last_closed = 0
        self._last_started_at: Optional[datetime] = None
        self._last_finished_at: Optional[datetime] = None
        self._last_error: Optional[str] = None

    # PUBLIC_INTERFACE
    def sweep_once(self) -> None:
        """
        Run one sweep tick.

        A store outage abandons the rest of the tick and propagates; the next scheduled
        tick picks up everything still eligible. Any other failure is confined to the
        candidate that caused it.
        """
        self._tick_started()
        closed = 0
        try:
            candidates = self._store.find_live()
            if candidates:
                closed = self.close_eligible(candidates, self._clock())
        except Exception as exc:
            self._tick_finished(closed, error=f"{exc.__class__.__name__}: {exc}")
            raise
        self._tick_finished(closed)

    # PUBLIC_INTERFACE
    def close_eligible(self, candidates: Iterable[dict], now: datetime) -> int:
        """Attempt auto-close on each candidate; return how many this call closed."""
        closed = 0
        for candidate in candidates:
            try:
                if self._close_one(candidate, now):
                    closed += 1
            except StoreUnavailableError:
                raise
            except Exception:
                logger.exception("Auto-close failed for alertId=%s", candidate.get("_id"))
        return closed

    def _close_one(self, candidate: dict, now: datetime) -> bool:
        policy = self._catalog.policy_for(candidate.get("category"))
        if policy is None or not policy.closes_automatically:
            return False

        note = closure_note_for(policy, candidate, now)
        if note is None:
            return False

        applied = self._guard.try_transition(
            candidate["_id"],
            LIVE_STATUSES,
            AlertStatus.auto_closed,
            {"closedAt": now, "closureNote": note},
        )
        if applied:
            logger.info("Auto-closed alert externalId=%s: %s", candidate.get("externalId"), note)
            self._invalidator.on_mutated(mutation_keys(candidate["_id"]))
        return applied

    def _tick_started(self) -> None:
        with self._stats_lock:
            self._runs_started += 1
            self._in_flight += 1
            self._last_started_at = utc_now()

    def _tick_finished(self, closed: int, error: Optional[str] = None) -> None:
        with self._stats_lock:
            self._in_flight -= 1
            self._last_finished_at = utc_now()
            self._last_closed = closed
            if error is None:
                self._runs_finished += 1
            else:
                self._runs_failed += 1
                self._last_error = error

    # PUBLIC_INTERFACE
    def stats(self) -> Dict[str, Any]:
        """Tick counters and timestamps for diagnostics."""
        with self._stats_lock:
            return {
                "runs_started": self._runs_started,
                "runs_finished": self._runs_finished,
                "runs_failed": self._runs_failed,
                "in_flight": self._in_flight,
                "last_closed": self._last_closed,
                "last_started_at": self._last_started_at,
                "last_finished_at": self._last_finished_at,
                "last_error": self._last_error,
            }


async def _run_tick(sweeper: AutoCloseSweeper) -> None:
    try:
        # pymongo is blocking; keep it off the event loop.
        await asyncio.to_thread(sweeper.sweep_once)
    except Exception:
        logger.exception("Auto-close sweep tick failed")


# PUBLIC_INTERFACE
async def auto_close_loop(sweeper: AutoCloseSweeper, interval_sec: int, shutdown_event: asyncio.Event) -> None:
    """
    Background loop driving the auto-close sweeper.

    - Runs a tick immediately (catches alerts that aged out while the process was down)
    - Then starts a new tick every ``interval_sec`` seconds
    - Ticks are independent tasks; a slow tick may still be running when the next starts
    - A failed tick is logged and does not affect later ticks
    """
    interval = max(1, int(interval_sec))
    logger.info("Auto-close sweeper started (interval=%ss)", interval)

    pending: Set[asyncio.Task] = set()
    while not shutdown_event.is_set():
        task = asyncio.create_task(_run_tick(sweeper))
        pending.add(task)
        task.add_done_callback(pending.discard)
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
    logger.info("Auto-close sweeper stopped")
