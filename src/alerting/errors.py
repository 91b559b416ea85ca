"""Exception hierarchy for the alert lifecycle engine.

Lost transition races and categories without a policy are not errors: the transition
guard returns ``False`` and the rule catalog returns ``None`` for those.
"""

from __future__ import annotations


class AlertLifecycleError(Exception):
    """Base exception for all alert lifecycle errors."""


class DuplicateAlertError(AlertLifecycleError):
    """An alert with the same externalId has already been ingested."""

    def __init__(self, external_id: str):
        super().__init__(f"alert with externalId={external_id!r} already exists")
        self.external_id = external_id


class AlertNotFoundError(AlertLifecycleError):
    """No alert exists for the given id."""

    def __init__(self, alert_id: str):
        super().__init__(f"alert {alert_id!r} not found")
        self.alert_id = alert_id


class StoreUnavailableError(AlertLifecycleError):
    """Transient failure talking to the alert store."""


class ConfigMalformedError(AlertLifecycleError):
    """The rule catalog could not be loaded; the previous snapshot stays in effect."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"rule catalog at {source} is malformed: {reason}")
        self.source = source
        self.reason = reason


class InvalidTransitionError(AlertLifecycleError):
    """A transition that the alert state machine does not define was requested."""
