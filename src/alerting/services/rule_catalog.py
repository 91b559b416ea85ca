from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Lock
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from src.alerting.errors import ConfigMalformedError
from src.alerting.schemas.common import utc_now
from src.alerting.schemas.rules import PolicyConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscalationRule:
    """Escalate an OPEN alert once enough same-category alerts fall in a trailing window."""

    window_minutes: int
    escalate_if_count: int


@dataclass(frozen=True)
class AgeClosure:
    """Auto-close a live alert once it is at least this old (by occurredAt)."""

    after_minutes: int


@dataclass(frozen=True)
class MetadataClosure:
    """Auto-close a live alert once ``metadata[key]`` is exactly True."""

    key: str


@dataclass(frozen=True)
class Policy:
    """Parsed policy for one category. Any variant may be absent."""

    category: str
    escalation: Optional[EscalationRule] = None
    age_closure: Optional[AgeClosure] = None
    metadata_closure: Optional[MetadataClosure] = None

    @property
    def closes_automatically(self) -> bool:
        return self.age_closure is not None or self.metadata_closure is not None


def policy_from_config(category: str, cfg: PolicyConfig) -> Policy:
    """Turn a validated raw entry into tagged policy variants."""
    escalation = None
    if cfg.window_minutes is not None and cfg.escalate_if_count is not None:
        escalation = EscalationRule(window_minutes=cfg.window_minutes, escalate_if_count=cfg.escalate_if_count)
    age_closure = None
    if cfg.auto_close_after_minutes is not None:
        age_closure = AgeClosure(after_minutes=cfg.auto_close_after_minutes)
    metadata_closure = None
    if cfg.auto_close_if_metadata_key:
        metadata_closure = MetadataClosure(key=cfg.auto_close_if_metadata_key)
    return Policy(
        category=category,
        escalation=escalation,
        age_closure=age_closure,
        metadata_closure=metadata_closure,
    )


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable, fully-built view of the rule catalog."""

    policies: Mapping[str, Policy]
    raw: Mapping[str, PolicyConfig]
    skipped: Mapping[str, str]
    source: str
    loaded_at: datetime = field(default_factory=utc_now)


def _empty_snapshot(source: str) -> CatalogSnapshot:
    return CatalogSnapshot(
        policies=MappingProxyType({}),
        raw=MappingProxyType({}),
        skipped=MappingProxyType({}),
        source=source,
    )


def build_snapshot(raw: Any, source: str) -> CatalogSnapshot:
    """
    Validate a ``category -> policy`` mapping and build a snapshot from it.

    A top level that is not a mapping raises ConfigMalformedError. A category whose entry
    fails validation is left out of the snapshot (it will never auto-transition) and
    reported in ``skipped``.
    """
    if not isinstance(raw, Mapping):
        raise ConfigMalformedError(source, f"expected an object at top level, got {type(raw).__name__}")

    policies: Dict[str, Policy] = {}
    configs: Dict[str, PolicyConfig] = {}
    skipped: Dict[str, str] = {}
    for category, entry in raw.items():
        if not isinstance(category, str) or not category:
            skipped[str(category)] = "category must be a non-empty string"
            continue
        try:
            cfg = PolicyConfig.model_validate(entry)
        except ValidationError as exc:
            skipped[category] = "; ".join(err.get("msg", "invalid") for err in exc.errors())
            logger.warning("Ignoring malformed policy for category=%s: %s", category, skipped[category])
            continue
        configs[category] = cfg
        policies[category] = policy_from_config(category, cfg)

    return CatalogSnapshot(
        policies=MappingProxyType(policies),
        raw=MappingProxyType(configs),
        skipped=MappingProxyType(skipped),
        source=source,
    )


def _read_rules_file(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigMalformedError(str(path), f"unreadable ({exc.__class__.__name__}: {exc})") from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigMalformedError(str(path), f"invalid JSON ({exc})") from exc


class RuleCatalog:
    """
    Category -> Policy lookup shared by the escalation evaluator and the sweeper.

    Readers go through :meth:`policy_for` without locking; they see whichever snapshot
    was published last. Reloads build a complete new snapshot first and publish it with
    a single reference assignment, so a failed reload leaves the previous one in place.
    """

    def __init__(self, path: Optional[str] = None, snapshot: Optional[CatalogSnapshot] = None):
        self._path = Path(path) if path else None
        self._snapshot = snapshot or _empty_snapshot(str(self._path) if self._path else "empty")
        self._write_lock = Lock()

    @classmethod
    def from_path(cls, path: str) -> "RuleCatalog":
        """Load eagerly from a JSON file; a bad file at startup yields an empty catalog."""
        catalog = cls(path)
        try:
            catalog.reload()
        except ConfigMalformedError:
            logger.exception("Rule catalog could not be loaded at startup; no category will auto-transition")
        return catalog

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], source: str = "inline") -> "RuleCatalog":
        return cls(snapshot=build_snapshot(raw, source))

    # PUBLIC_INTERFACE
    def policy_for(self, category: Optional[str]) -> Optional[Policy]:
        """Return the policy for ``category``, or None when it has none."""
        if not category:
            return None
        return self._snapshot.policies.get(category)

    # PUBLIC_INTERFACE
    def snapshot(self) -> CatalogSnapshot:
        """Return the snapshot currently in effect."""
        return self._snapshot

    # PUBLIC_INTERFACE
    def reload(self) -> CatalogSnapshot:
        """Re-read the configured rules file and publish it atomically."""
        if self._path is None:
            raise ConfigMalformedError("inline", "catalog has no backing file to reload from")
        with self._write_lock:
            snapshot = build_snapshot(_read_rules_file(self._path), str(self._path))
            self._publish(snapshot)
        return snapshot

    # PUBLIC_INTERFACE
    def replace(self, raw: Mapping[str, Any], source: str = "inline") -> CatalogSnapshot:
        """Replace the whole catalog from an in-memory mapping."""
        with self._write_lock:
            snapshot = build_snapshot(raw, source)
            self._publish(snapshot)
        return snapshot

    def _publish(self, snapshot: CatalogSnapshot) -> None:
        previous = self._snapshot
        self._snapshot = snapshot
        logger.info(
            "Rule catalog published source=%s categories=%s skipped=%s (previous=%s)",
            snapshot.source,
            sorted(snapshot.policies),
            sorted(snapshot.skipped),
            len(previous.policies),
        )

