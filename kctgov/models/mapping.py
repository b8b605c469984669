"""Class facts, mapping reports and applied-version records."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, FrozenSet, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kctgov.utils.levels import parse_age_group, parse_level_range

from .content import Modality
from .rules import Conflict, ConflictSeverity


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


MappingStatus = Literal["none", "passed", "warnings", "blocked"]


class AppliedVersionRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    kct_version_id: str
    version_label: str


class ClassFacts(BaseModel):
    """What the persistence collaborator knows about a running class."""

    model_config = ConfigDict(frozen=True)

    class_id: str
    name: Optional[str] = None
    program: Optional[str] = None
    campus_id: Optional[str] = None
    level: str
    modality: Modality
    age_group: str = "adults"
    scheduled_hours: Optional[float] = Field(default=None, ge=0.0)
    available_resource_kinds: Optional[FrozenSet[str]] = Field(
        default=None,
        description="Resource kinds the class can deliver; None means unknown and skips the check.",
    )
    applied_version: Optional[AppliedVersionRef] = None

    @field_validator("level", mode="after")
    @classmethod
    def check_level(cls, value: str) -> str:
        parse_level_range(value)
        return value

    @field_validator("age_group", mode="after")
    @classmethod
    def check_age_group(cls, value: str) -> str:
        parse_age_group(value)
        return value

    @field_validator("available_resource_kinds", mode="before")
    @classmethod
    def coerce_kinds(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set)):
            return frozenset(str(kind).strip().lower() for kind in value)
        return value


class MappingValidationReport(BaseModel):
    """Derived verdict for applying one version to one or more classes."""

    model_config = ConfigDict(frozen=True)

    class_id: str
    class_ids: Tuple[str, ...]
    kct_version_id: str
    conflicts: Tuple[Conflict, ...] = ()
    can_proceed: bool
    risk_level: RiskLevel

    def conflicts_for(self, class_id: str) -> List[Conflict]:
        return [conflict for conflict in self.conflicts if conflict.class_id == class_id]

    @property
    def high_severity_count(self) -> int:
        return sum(1 for conflict in self.conflicts if conflict.severity == ConflictSeverity.HIGH)


class ClassAppliedVersion(BaseModel):
    """Applied-version field written onto the class record."""

    model_config = ConfigDict(frozen=True)

    kct_version_id: str
    version_label: str
    applied_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    applied_by: str
    last_validation: Optional[MappingValidationReport] = None
    plan_id: Optional[str] = None
    override_id: Optional[str] = None
    note: Optional[str] = None


class OverrideRecord(BaseModel):
    """Audited decision to apply a version despite a blocking report."""

    model_config = ConfigDict(frozen=True)

    id: str
    class_id: str
    kct_version_id: str
    justification: str
    actor: str
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    risk_level: Optional[RiskLevel] = None


__all__ = [
    "AppliedVersionRef",
    "ClassAppliedVersion",
    "ClassFacts",
    "MappingStatus",
    "MappingValidationReport",
    "OverrideRecord",
    "RiskLevel",
]
