from __future__ import annotations

import logging

from src.alerting.schemas.rules import RulesConfigResponse
from src.alerting.services.rule_catalog import CatalogSnapshot
from src.alerting.state import AppState

logger = logging.getLogger(__name__)


def _snapshot_to_response(snapshot: CatalogSnapshot) -> RulesConfigResponse:
    return RulesConfigResponse(
        source=snapshot.source,
        loadedAt=snapshot.loaded_at,
        rules=dict(snapshot.raw),
        skipped=dict(snapshot.skipped),
    )


# PUBLIC_INTERFACE
def current_rules(state: AppState) -> RulesConfigResponse:
    """Return the rule catalog snapshot in effect."""
    return _snapshot_to_response(state.catalog.snapshot())


# PUBLIC_INTERFACE
def reload_rules(state: AppState) -> RulesConfigResponse:
    """
    Re-read the rules file and publish it as the new snapshot.

    Raises ConfigMalformedError when the file cannot be used; the previous snapshot is
    still in effect in that case.
    """
    snapshot = state.catalog.reload()
    logger.info("Rule catalog reloaded from %s", snapshot.source)
    return _snapshot_to_response(snapshot)
