from __future__ import annotations

import json
from pathlib import Path

import pytest

from src.alerting.errors import ConfigMalformedError
from src.alerting.services.rule_catalog import (
    AgeClosure,
    EscalationRule,
    MetadataClosure,
    RuleCatalog,
)


def test_policy_variants_built_from_camel_case_keys(rules_file: Path):
    catalog = RuleCatalog.from_path(str(rules_file))

    overspeed = catalog.policy_for("overspeed")
    assert overspeed is not None
    assert overspeed.escalation == EscalationRule(window_minutes=60, escalate_if_count=3)
    assert overspeed.age_closure == AgeClosure(after_minutes=1440)
    assert overspeed.metadata_closure is None

    compliance = catalog.policy_for("compliance")
    assert compliance is not None
    assert compliance.escalation is None
    assert compliance.age_closure is None
    assert compliance.metadata_closure == MetadataClosure(key="documentValid")


def test_legacy_snake_case_keys_are_accepted():
    catalog = RuleCatalog.from_mapping(
        {
            "overspeed": {"window_mins": 30, "escalate_if_count": 5, "auto_close_mins": 60},
            "compliance": {"auto_close_if": "document_valid"},
        }
    )
    assert catalog.policy_for("overspeed").escalation == EscalationRule(window_minutes=30, escalate_if_count=5)
    assert catalog.policy_for("overspeed").age_closure == AgeClosure(after_minutes=60)
    assert catalog.policy_for("compliance").metadata_closure == MetadataClosure(key="document_valid")


def test_absent_category_has_no_policy(rules_file: Path):
    catalog = RuleCatalog.from_path(str(rules_file))
    assert catalog.policy_for("unknown_category") is None
    assert catalog.policy_for("") is None
    assert catalog.policy_for(None) is None


def test_escalation_needs_both_window_and_count():
    catalog = RuleCatalog.from_mapping({"partial": {"windowMinutes": 10}})
    policy = catalog.policy_for("partial")
    assert policy is not None
    assert policy.escalation is None
    assert not policy.closes_automatically


def test_malformed_category_is_dropped_and_others_kept():
    catalog = RuleCatalog.from_mapping(
        {
            "good": {"autoCloseAfterMinutes": 5},
            "bad_count": {"windowMinutes": 10, "escalateIfCount": 0},
            "bad_type": "not-an-object",
            "bool_numbers": {"windowMinutes": True, "escalateIfCount": True},
            "string_minutes": {"autoCloseAfterMinutes": "1440"},
            "numeric_key": {"autoCloseIfMetadataKey": 1},
        }
    )
    assert catalog.policy_for("good") is not None
    for category in ("bad_count", "bad_type", "bool_numbers", "string_minutes", "numeric_key"):
        assert catalog.policy_for(category) is None
    assert set(catalog.snapshot().skipped) == {
        "bad_count",
        "bad_type",
        "bool_numbers",
        "string_minutes",
        "numeric_key",
    }


def test_missing_file_at_startup_yields_empty_catalog(tmp_path: Path):
    catalog = RuleCatalog.from_path(str(tmp_path / "does-not-exist.json"))
    assert catalog.policy_for("overspeed") is None
    assert dict(catalog.snapshot().policies) == {}


def test_reload_publishes_a_whole_new_snapshot(rules_file: Path):
    catalog = RuleCatalog.from_path(str(rules_file))
    before = catalog.snapshot()

    rules_file.write_text(json.dumps({"overspeed": {"windowMinutes": 5, "escalateIfCount": 2}}), encoding="utf-8")
    after = catalog.reload()

    assert catalog.snapshot() is after
    assert catalog.policy_for("overspeed").escalation == EscalationRule(window_minutes=5, escalate_if_count=2)
    assert catalog.policy_for("compliance") is None

    # The old snapshot a reader may still hold is untouched.
    assert before.policies["overspeed"].escalation == EscalationRule(window_minutes=60, escalate_if_count=3)
    assert "compliance" in before.policies


def test_reload_with_invalid_json_keeps_previous_snapshot(rules_file: Path):
    catalog = RuleCatalog.from_path(str(rules_file))
    before = catalog.snapshot()

    rules_file.write_text("{ this is not json", encoding="utf-8")
    with pytest.raises(ConfigMalformedError):
        catalog.reload()

    assert catalog.snapshot() is before
    assert catalog.policy_for("overspeed") is not None


def test_reload_with_non_object_top_level_keeps_previous_snapshot(rules_file: Path):
    catalog = RuleCatalog.from_path(str(rules_file))
    before = catalog.snapshot()

    rules_file.write_text(json.dumps([{"overspeed": {}}]), encoding="utf-8")
    with pytest.raises(ConfigMalformedError):
        catalog.reload()

    assert catalog.snapshot() is before


def test_snapshot_mappings_are_read_only(rules_file: Path):
    snapshot = RuleCatalog.from_path(str(rules_file)).snapshot()
    with pytest.raises(TypeError):
        snapshot.policies["new"] = snapshot.policies["overspeed"]  # type: ignore[index]


def test_replace_swaps_inline_mapping():
    catalog = RuleCatalog.from_mapping({"a": {"autoCloseAfterMinutes": 1}})
    catalog.replace({"b": {"autoCloseAfterMinutes": 2}})
    assert catalog.policy_for("a") is None
    assert catalog.policy_for("b").age_closure == AgeClosure(after_minutes=2)

    with pytest.raises(ConfigMalformedError):
        catalog.reload()
    assert catalog.policy_for("b") is not None
