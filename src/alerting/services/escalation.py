from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from src.alerting.db.alert_store import AlertStore
from src.alerting.schemas.alerts import AlertStatus
from src.alerting.schemas.common import as_utc, utc_now
from src.alerting.services.cache import CacheInvalidator, mutation_keys
from src.alerting.services.rule_catalog import RuleCatalog
from src.alerting.services.transitions import TransitionGuard

logger = logging.getLogger(__name__)


def window_bounds(occurred_at: datetime, window_minutes: int):
    """Inclusive [start, end] window ending at the alert's own event time."""
    end = as_utc(occurred_at)
    return end - timedelta(minutes=int(window_minutes)), end


class EscalationEvaluator:
    """
    Decides, right after an alert is persisted, whether it should become ESCALATED.

    The count is read and the transition written separately; an alert ingested
    concurrently in the same category may be missed by one evaluation. The next alert's
    evaluation recounts from scratch, so no lock is taken for this.
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

    # PUBLIC_INTERFACE
    def evaluate(self, alert: dict) -> bool:
        """
        Escalate ``alert`` if its category's window threshold is met.

        Returns True only when this call performed the OPEN -> ESCALATED write. Calling it
        again on an escalated or terminal alert is a no-op.
        """
        if alert.get("status") != AlertStatus.open.value:
            return False

        category = alert.get("category")
        policy = self._catalog.policy_for(category)
        if policy is None or policy.escalation is None:
            return False
        rule = policy.escalation

        window_start, window_end = window_bounds(alert["occurredAt"], rule.window_minutes)
        # The alert under evaluation is already persisted and is part of this count.
        count = self._store.count_in_range(category, window_start, window_end)
        if count < rule.escalate_if_count:
            return False

        applied = self._guard.try_transition(
            alert["_id"],
            {AlertStatus.open},
            AlertStatus.escalated,
            {"escalatedAt": self._clock()},
        )
        if not applied:
            return False

        logger.info(
            "Escalated alert externalId=%s category=%s (count=%s >= %s within %s mins)",
            alert.get("externalId"),
            category,
            count,
            rule.escalate_if_count,
            rule.window_minutes,
        )
        self._invalidator.on_mutated(mutation_keys(alert["_id"]))
        return True
