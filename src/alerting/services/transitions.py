from __future__ import annotations

import logging
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

from src.alerting.db.alert_store import AlertStore
from src.alerting.errors import InvalidTransitionError
from src.alerting.schemas.alerts import AlertStatus

logger = logging.getLogger(__name__)


# Directed edges of the alert state machine. Terminal states have no outgoing edges.
ALLOWED_TRANSITIONS: Mapping[AlertStatus, FrozenSet[AlertStatus]] = {
    AlertStatus.open: frozenset({AlertStatus.escalated, AlertStatus.auto_closed, AlertStatus.resolved}),
    AlertStatus.escalated: frozenset({AlertStatus.auto_closed, AlertStatus.resolved}),
    AlertStatus.auto_closed: frozenset(),
    AlertStatus.resolved: frozenset(),
}


def validate_transition(from_statuses: Iterable[AlertStatus], to_status: AlertStatus) -> FrozenSet[AlertStatus]:
    """Return ``from_statuses`` as a frozenset, raising if any edge is undefined."""
    sources = frozenset(AlertStatus(s) for s in from_statuses)
    target = AlertStatus(to_status)
    if not sources:
        raise InvalidTransitionError(f"no source status given for transition to {target.value}")
    for source in sources:
        if target not in ALLOWED_TRANSITIONS[source]:
            raise InvalidTransitionError(f"{source.value} -> {target.value} is not a valid transition")
    return sources


class TransitionGuard:
    """
    The only way an alert's status changes.

    Each attempt is a single conditional write: status and metadata are set only while the
    stored status is still one of the expected sources. Racing writers (overlapping sweeps,
    a resolve racing the sweeper, a repeated escalation) therefore have exactly one winner;
    the others get ``False`` and must do nothing further.
    """

    def __init__(self, store: AlertStore):
        self._store = store

    # PUBLIC_INTERFACE
    def try_transition(
        self,
        alert_id: Any,
        from_statuses: Iterable[AlertStatus],
        to_status: AlertStatus,
        mutations: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Attempt the transition; return whether this call applied it."""
        sources = validate_transition(from_statuses, to_status)
        applied = self._store.conditional_update(alert_id, sources, AlertStatus(to_status), mutations or {})
        if not applied:
            logger.debug(
                "Transition to %s not applied for alertId=%s (status no longer in %s)",
                AlertStatus(to_status).value,
                alert_id,
                sorted(s.value for s in sources),
            )
        return applied
