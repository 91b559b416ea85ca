from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from src.alerting.errors import ConfigMalformedError
from src.alerting.schemas.common import ErrorResponse
from src.alerting.schemas.rules import RulesConfigResponse
from src.alerting.services import rules_service
from src.alerting.state import get_state

router = APIRouter(prefix="/api/rules", tags=["Rules"])


@router.get(
    "/config",
    response_model=RulesConfigResponse,
    summary="Current rule catalog",
    description="Return the escalation and auto-close policies currently in effect, keyed by category.",
    operation_id="get_rules_config",
)
def get_rules_config(request: Request) -> RulesConfigResponse:
    """Return the active rule catalog."""
    return rules_service.current_rules(get_state(request.app))


@router.post(
    "/reload",
    response_model=RulesConfigResponse,
    responses={422: {"model": ErrorResponse}},
    summary="Reload rule catalog",
    description=(
        "Re-read the rules file and swap it in as a whole. "
        "If the file is unreadable or malformed the previous catalog stays in effect."
    ),
    operation_id="reload_rules_config",
)
def reload_rules_config(request: Request) -> RulesConfigResponse:
    """Reload the rule catalog from its file."""
    try:
        return rules_service.reload_rules(get_state(request.app))
    except ConfigMalformedError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
