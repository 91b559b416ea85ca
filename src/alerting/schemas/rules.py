from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class PolicyConfig(BaseModel):
    """
    One category's raw policy entry as written in the rules file.

    Every field is optional. The snake_case keys used by older rule files are accepted
    as aliases. Values are validated strictly: ``true`` or ``"10"`` for a minute count
    fails the entry instead of being coerced.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    window_minutes: Optional[int] = Field(
        default=None,
        ge=0,
        strict=True,
        description="Trailing window (minutes) used to count same-category alerts.",
        validation_alias=AliasChoices("windowMinutes", "window_mins"),
        serialization_alias="windowMinutes",
    )
    escalate_if_count: Optional[int] = Field(
        default=None,
        ge=1,
        strict=True,
        description="Escalate when at least this many alerts fall in the window.",
        validation_alias=AliasChoices("escalateIfCount", "escalate_if_count"),
        serialization_alias="escalateIfCount",
    )
    auto_close_after_minutes: Optional[int] = Field(
        default=None,
        ge=0,
        strict=True,
        description="Auto-close live alerts older than this many minutes.",
        validation_alias=AliasChoices("autoCloseAfterMinutes", "auto_close_mins"),
        serialization_alias="autoCloseAfterMinutes",
    )
    auto_close_if_metadata_key: Optional[str] = Field(
        default=None,
        min_length=1,
        strict=True,
        description="Auto-close live alerts whose metadata has this key set to true.",
        validation_alias=AliasChoices("autoCloseIfMetadataKey", "auto_close_if"),
        serialization_alias="autoCloseIfMetadataKey",
    )


class RulesConfigResponse(BaseModel):
    """The rule catalog snapshot currently in effect."""

    source: str = Field(..., description="Where the snapshot was loaded from.")
    loaded_at: datetime = Field(..., description="UTC time the snapshot was published.", alias="loadedAt")
    rules: Dict[str, PolicyConfig] = Field(..., description="Valid policies keyed by category.")
    skipped: Dict[str, str] = Field(
        default_factory=dict,
        description="Categories dropped from the snapshot because their entry failed validation.",
    )
