"""Persistence contract shared by the in-memory and SQLite repositories."""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from kctgov.models.mapping import ClassAppliedVersion, ClassFacts
from kctgov.models.rollout import RolloutPlan
from kctgov.models.versions import CurriculumVersion


class CurriculumRepository(Protocol):
    """Key-value boundary the engine reads from and writes to.

    Saves are revision-checked: the record passed in carries the revision the
    caller read, a mismatch raises ``ConcurrentModification`` and nothing is
    written. ``save_versions`` writes all of its records or none.
    """

    # versions
    def add_version(self, version: CurriculumVersion) -> CurriculumVersion:
        ...

    def get_version(self, version_id: str) -> CurriculumVersion:
        ...

    def list_versions(self, framework_id: str | None = None) -> List[CurriculumVersion]:
        ...

    def save_versions(self, versions: Sequence[CurriculumVersion]) -> List[CurriculumVersion]:
        ...

    # classes
    def put_class(self, facts: ClassFacts) -> None:
        ...

    def get_class(self, class_id: str) -> ClassFacts:
        ...

    def list_classes(self) -> List[ClassFacts]:
        ...

    def record_applied(self, class_id: str, applied: ClassAppliedVersion) -> ClassFacts:
        ...

    def current_applied(self, class_id: str) -> Optional[ClassAppliedVersion]:
        ...

    def applied_history(self, class_id: str) -> List[ClassAppliedVersion]:
        ...

    def clear_applied(self, class_id: str) -> ClassFacts:
        ...

    # rollout plans
    def add_plan(self, plan: RolloutPlan) -> RolloutPlan:
        ...

    def get_plan(self, plan_id: str) -> RolloutPlan:
        ...

    def list_plans(self, kct_version_id: str | None = None) -> List[RolloutPlan]:
        ...

    def save_plan(self, plan: RolloutPlan) -> RolloutPlan:
        ...


def sort_versions(versions: Sequence[CurriculumVersion]) -> List[CurriculumVersion]:
    """Oldest label first."""
    return sorted(versions, key=lambda version: (version.framework_id, version.label_key))


__all__ = ["CurriculumRepository", "sort_versions"]
