"""
Typed configuration for the governance engine.

The policy block mirrors the tunables exposed on the guardrails admin surface;
the rollout and storage blocks only matter to the services wired up by
``kctgov.pipeline.bootstrap``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from kctgov.models.rules import ValidationRule

# camelCase keys used by the admin surface
POLICY_KEY_ALIASES = {
    "hoursTolerance": "hours_tolerance",
    "requireRubricForAssessedUnits": "require_rubric_for_assessed_units",
    "requireResourcesForAllUnits": "require_resources_for_all_units",
    "strictLevelMatching": "strict_level_matching",
    "requireAccessibilityCompliance": "require_accessibility_compliance",
    "maxDraftAge": "max_draft_age_days",
    "requireQrForPublishedExports": "require_qr_for_published_exports",
    "allowOverrideWithJustification": "allow_override_with_justification",
}


def normalize_policy_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    payload = dict(data)
    for legacy, canonical in POLICY_KEY_ALIASES.items():
        if legacy in payload:
            value = payload.pop(legacy)
            payload.setdefault(canonical, value)
    return payload


class PolicyConfig(BaseModel):
    """Tunable thresholds consumed by the rule engine."""

    model_config = ConfigDict(extra="forbid")

    hours_tolerance: float = Field(default=5.0, ge=0.0, le=100.0, description="Allowed ± deviation in percent.")
    require_rubric_for_assessed_units: bool = True
    require_resources_for_all_units: bool = True
    strict_level_matching: bool = False
    require_accessibility_compliance: bool = True
    max_draft_age_days: int = Field(default=30, ge=1)
    require_qr_for_published_exports: bool = Field(
        default=True,
        description="Read by the export collaborator; the engine only stores it.",
    )
    allow_override_with_justification: bool = True

    @model_validator(mode="before")
    @classmethod
    def coerce_legacy_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return normalize_policy_keys(data)

    @property
    def tolerance_fraction(self) -> float:
        return self.hours_tolerance / 100.0


class RolloutConfig(BaseModel):
    """Worker pool and locking knobs for rollout and lifecycle services."""

    max_workers: int = Field(default=4, ge=1, le=64)
    lock_timeout_seconds: float = Field(default=0.5, ge=0.0)


class StorageConfig(BaseModel):
    """Where versions, classes and plans live."""

    model_config = ConfigDict()

    backend: Literal["memory", "sqlite"] = "memory"
    sqlite_path: Path = Field(default=Path("outputs/kct_governance.sqlite"))
    audit_log_path: Optional[Path] = None

    @field_validator("sqlite_path", "audit_log_path", mode="before")
    @classmethod
    def coerce_path(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return Path(value).expanduser()


class GovernanceConfig(BaseModel):
    """Top-level configuration for the governance services."""

    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    rules: Optional[List[ValidationRule]] = Field(
        default=None,
        description="Full rule list; None keeps the built-in defaults.",
    )
    rollout: RolloutConfig = Field(default_factory=RolloutConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @model_validator(mode="after")
    def unique_rule_ids(self) -> "GovernanceConfig":
        seen: set[str] = set()
        duplicates: set[str] = set()
        for rule in self.rules or []:
            if rule.id in seen:
                duplicates.add(rule.id)
            seen.add(rule.id)
        if duplicates:
            raise ValueError(f"Duplicate rule ids: {', '.join(sorted(duplicates))}")
        return self


def read_yaml_file(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return a dictionary."""
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected mapping at root of {path}, received {type(data)}")
    return data


def _resolve_config_path(value: Any, base_dir: Path) -> str:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    else:
        path = path.resolve()
    return str(path)


def _absolutize_storage_paths(data: Dict[str, Any], base_dir: Path) -> None:
    storage = data.get("storage")
    if isinstance(storage, dict):
        for key in ("sqlite_path", "audit_log_path"):
            if storage.get(key):
                storage[key] = _resolve_config_path(storage[key], base_dir)


def load_policy_config(path: Path) -> PolicyConfig:
    """Parse a standalone policy YAML (either bare or under a ``policy`` key)."""
    data = read_yaml_file(path)
    payload = data["policy"] if isinstance(data.get("policy"), dict) else data
    try:
        return PolicyConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid policy config in {path}") from exc


def load_governance_config(path: Path, *, base_dir: Path | None = None) -> GovernanceConfig:
    """Load the full governance config used by the CLI and API."""
    path = path.expanduser().resolve()
    data = read_yaml_file(path)
    _absolutize_storage_paths(data, base_dir=(base_dir or path.parent).resolve())
    try:
        return GovernanceConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid governance config in {path}") from exc


def merge_policy(base: PolicyConfig, overrides: Dict[str, Any]) -> PolicyConfig:
    """
    Return a new PolicyConfig by applying overrides on top of the base config.

    Unknown keys are rejected so a typo in an admin update never silently
    becomes a no-op.
    """
    payload = base.model_dump()
    payload.update(normalize_policy_keys(overrides))
    try:
        return PolicyConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid policy overrides: {exc.errors()}") from exc
