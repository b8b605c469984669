"""Rollout plans and per-target tracking records."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from .mapping import MappingValidationReport


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RolloutScope(str, Enum):
    CAMPUS = "campus"
    PROGRAM = "program"
    GLOBAL = "global"


class PlanStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TargetState(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


SETTLED_STATES = frozenset({TargetState.APPLIED, TargetState.FAILED, TargetState.SKIPPED})


class TargetRecord(BaseModel):
    class_id: str
    state: TargetState = TargetState.PENDING
    report: Optional[MappingValidationReport] = None
    note: Optional[str] = None
    updated_at: Optional[datetime] = None


class RolloutPlan(BaseModel):
    id: str
    kct_version_id: str
    version_label: str
    scope: RolloutScope
    target_class_ids: Tuple[str, ...]
    scheduled_at: datetime
    status: PlanStatus = PlanStatus.DRAFT
    targets: Dict[str, TargetRecord] = Field(default_factory=dict)
    prerequisites: Tuple[str, ...] = ()
    prerequisite_status: Dict[str, bool] = Field(default_factory=dict)
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    cancelled: bool = False
    created_by: str
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    rolled_back_at: Optional[datetime] = None
    revision: int = 0

    def count(self, state: TargetState) -> int:
        return sum(1 for record in self.targets.values() if record.state == state)

    @property
    def total_count(self) -> int:
        return len(self.target_class_ids)

    @property
    def applied_count(self) -> int:
        return self.count(TargetState.APPLIED)

    @property
    def failed_count(self) -> int:
        return self.count(TargetState.FAILED)

    @property
    def skipped_count(self) -> int:
        return self.count(TargetState.SKIPPED)

    @property
    def settled_count(self) -> int:
        return sum(1 for record in self.targets.values() if record.state in SETTLED_STATES)

    def unsatisfied_prerequisites(self) -> List[str]:
        return [name for name in self.prerequisites if not self.prerequisite_status.get(name, False)]

    def summary(self) -> Dict[str, int]:
        return {
            "total": self.total_count,
            "applied": self.applied_count,
            "failed": self.failed_count,
            "skipped": self.skipped_count,
            "pending": self.count(TargetState.PENDING) + self.count(TargetState.VALIDATED),
        }


class RolloutStats(BaseModel):
    """Aggregate counts over rollout plans and their per-target reports."""

    total_plans: int = 0
    total_targets: int = 0
    applied_targets: int = 0
    planned_targets: int = 0
    failed_targets: int = 0
    rolled_back_plans: int = 0
    by_risk_level: Dict[str, int] = Field(default_factory=lambda: {"low": 0, "medium": 0, "high": 0})
    by_scope: Dict[str, int] = Field(default_factory=lambda: {scope.value: 0 for scope in RolloutScope})
    success_rate: float = Field(default=0.0, description="applied / (applied + failed); 0 when nothing settled.")


__all__ = [
    "PlanStatus",
    "RolloutPlan",
    "RolloutScope",
    "RolloutStats",
    "SETTLED_STATES",
    "TargetRecord",
    "TargetState",
]
