"""Lock-protected in-memory repository, used by tests and the default config."""

from __future__ import annotations

import threading
from typing import Dict, List, Optional, Sequence

from kctgov.core.errors import ClassNotFound, ConcurrentModification, PlanNotFound, VersionNotFound
from kctgov.models.mapping import AppliedVersionRef, ClassAppliedVersion, ClassFacts
from kctgov.models.rollout import RolloutPlan
from kctgov.models.versions import CurriculumVersion

from .base import sort_versions


class MemoryRepository:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._versions: Dict[str, CurriculumVersion] = {}
        self._classes: Dict[str, ClassFacts] = {}
        self._history: Dict[str, List[ClassAppliedVersion]] = {}
        self._current: Dict[str, Optional[ClassAppliedVersion]] = {}
        self._plans: Dict[str, RolloutPlan] = {}

    # ---------------------------------------------------------------- versions

    def add_version(self, version: CurriculumVersion) -> CurriculumVersion:
        with self._lock:
            if version.id in self._versions:
                raise ValueError(f"Version {version.id} already exists")
            self._versions[version.id] = version
            return version

    def get_version(self, version_id: str) -> CurriculumVersion:
        with self._lock:
            try:
                return self._versions[version_id]
            except KeyError:
                raise VersionNotFound(version_id) from None

    def list_versions(self, framework_id: str | None = None) -> List[CurriculumVersion]:
        with self._lock:
            versions = [v for v in self._versions.values() if framework_id is None or v.framework_id == framework_id]
        return sort_versions(versions)

    def save_versions(self, versions: Sequence[CurriculumVersion]) -> List[CurriculumVersion]:
        with self._lock:
            for version in versions:
                stored = self.get_version(version.id)
                if stored.revision != version.revision:
                    raise ConcurrentModification(
                        f"Version {version.id}",
                        expected_revision=version.revision,
                        actual_revision=stored.revision,
                    )
            saved = [version.model_copy(update={"revision": version.revision + 1}) for version in versions]
            for version in saved:
                self._versions[version.id] = version
            return saved

    # ----------------------------------------------------------------- classes

    def put_class(self, facts: ClassFacts) -> None:
        with self._lock:
            self._classes[facts.class_id] = facts

    def get_class(self, class_id: str) -> ClassFacts:
        with self._lock:
            try:
                return self._classes[class_id]
            except KeyError:
                raise ClassNotFound(class_id) from None

    def list_classes(self) -> List[ClassFacts]:
        with self._lock:
            return sorted(self._classes.values(), key=lambda facts: facts.class_id)

    def record_applied(self, class_id: str, applied: ClassAppliedVersion) -> ClassFacts:
        with self._lock:
            facts = self.get_class(class_id)
            updated = facts.model_copy(
                update={
                    "applied_version": AppliedVersionRef(
                        kct_version_id=applied.kct_version_id,
                        version_label=applied.version_label,
                    )
                }
            )
            self._classes[class_id] = updated
            self._history.setdefault(class_id, []).append(applied)
            self._current[class_id] = applied
            return updated

    def current_applied(self, class_id: str) -> Optional[ClassAppliedVersion]:
        with self._lock:
            self.get_class(class_id)
            return self._current.get(class_id)

    def applied_history(self, class_id: str) -> List[ClassAppliedVersion]:
        with self._lock:
            self.get_class(class_id)
            return list(self._history.get(class_id, []))

    def clear_applied(self, class_id: str) -> ClassFacts:
        with self._lock:
            updated = self.get_class(class_id).model_copy(update={"applied_version": None})
            self._classes[class_id] = updated
            self._current[class_id] = None
            return updated

    # ------------------------------------------------------------------- plans

    def add_plan(self, plan: RolloutPlan) -> RolloutPlan:
        with self._lock:
            if plan.id in self._plans:
                raise ValueError(f"Rollout plan {plan.id} already exists")
            self._plans[plan.id] = plan.model_copy(deep=True)
            return plan.model_copy(deep=True)

    def get_plan(self, plan_id: str) -> RolloutPlan:
        with self._lock:
            try:
                return self._plans[plan_id].model_copy(deep=True)
            except KeyError:
                raise PlanNotFound(plan_id) from None

    def list_plans(self, kct_version_id: str | None = None) -> List[RolloutPlan]:
        with self._lock:
            plans = [
                plan.model_copy(deep=True)
                for plan in self._plans.values()
                if kct_version_id is None or plan.kct_version_id == kct_version_id
            ]
        return sorted(plans, key=lambda plan: plan.created_at)

    def save_plan(self, plan: RolloutPlan) -> RolloutPlan:
        with self._lock:
            stored = self._plans.get(plan.id)
            if stored is None:
                raise PlanNotFound(plan.id)
            if stored.revision != plan.revision:
                raise ConcurrentModification(
                    f"Rollout plan {plan.id}",
                    expected_revision=plan.revision,
                    actual_revision=stored.revision,
                )
            saved = plan.model_copy(update={"revision": plan.revision + 1}, deep=True)
            self._plans[plan.id] = saved
            return saved.model_copy(deep=True)


__all__ = ["MemoryRepository"]
