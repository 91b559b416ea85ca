from __future__ import annotations

from datetime import timedelta

import pytest
from bson import ObjectId

from src.alerting.errors import InvalidTransitionError
from src.alerting.schemas.alerts import LIVE_STATUSES, AlertStatus


def test_guarded_write_has_a_single_winner(state, insert_alert, alerts_col, now):
    alert = insert_alert("overspeed", now)

    first = state.guard.try_transition(alert["_id"], {AlertStatus.open}, AlertStatus.escalated, {"escalatedAt": now})
    second = state.guard.try_transition(alert["_id"], {AlertStatus.open}, AlertStatus.escalated, {"escalatedAt": now})

    assert first is True
    assert second is False
    assert alerts_col.find_one({"_id": alert["_id"]})["status"] == "ESCALATED"


def test_mutations_land_in_same_write_and_keep_existing_metadata(state, insert_alert, alerts_col, now):
    alert = insert_alert("compliance", now, metadata={"documentValid": True, "driver": "d-1"})

    applied = state.guard.try_transition(
        alert["_id"], LIVE_STATUSES, AlertStatus.auto_closed, {"closureNote": "note", "closedAt": now}
    )

    assert applied is True
    doc = alerts_col.find_one({"_id": alert["_id"]})
    assert doc["status"] == "AUTO_CLOSED"
    assert doc["metadata"]["closureNote"] == "note"
    assert doc["metadata"]["driver"] == "d-1"
    assert doc["metadata"]["documentValid"] is True


@pytest.mark.parametrize("terminal", ["RESOLVED", "AUTO_CLOSED"])
def test_terminal_alerts_are_never_accepted(state, insert_alert, alerts_col, terminal, now):
    alert = insert_alert("overspeed", now - timedelta(days=3), status=terminal)

    assert state.guard.try_transition(alert["_id"], LIVE_STATUSES, AlertStatus.auto_closed) is False
    assert state.guard.try_transition(alert["_id"], LIVE_STATUSES, AlertStatus.resolved) is False
    assert alerts_col.find_one({"_id": alert["_id"]})["status"] == terminal


def test_resolve_after_escalation(state, insert_alert, alerts_col, now):
    alert = insert_alert("overspeed", now, status="ESCALATED")
    assert state.guard.try_transition(alert["_id"], LIVE_STATUSES, AlertStatus.resolved, {"resolvedBy": "ops"})
    assert alerts_col.find_one({"_id": alert["_id"]})["status"] == "RESOLVED"


def test_escalation_only_from_open(state, insert_alert, now):
    alert = insert_alert("overspeed", now, status="ESCALATED")
    assert state.guard.try_transition(alert["_id"], {AlertStatus.open}, AlertStatus.escalated) is False


@pytest.mark.parametrize(
    "sources,target",
    [
        ({AlertStatus.escalated}, AlertStatus.open),
        ({AlertStatus.escalated}, AlertStatus.escalated),
        ({AlertStatus.resolved}, AlertStatus.auto_closed),
        ({AlertStatus.auto_closed}, AlertStatus.resolved),
        (set(), AlertStatus.resolved),
    ],
)
def test_undefined_transitions_are_rejected(state, insert_alert, now, sources, target):
    alert = insert_alert("overspeed", now)
    with pytest.raises(InvalidTransitionError):
        state.guard.try_transition(alert["_id"], sources, target)


def test_unknown_or_malformed_ids_do_not_match(state):
    assert state.guard.try_transition(ObjectId(), LIVE_STATUSES, AlertStatus.resolved) is False
    assert state.guard.try_transition("not-an-object-id", LIVE_STATUSES, AlertStatus.resolved) is False
