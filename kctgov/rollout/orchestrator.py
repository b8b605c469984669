"""Scheduled, trackable application of a published version across classes."""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from kctgov.core.audit import AuditLogger
from kctgov.core.errors import (
    ConcurrentModification,
    GovernanceError,
    InvalidTransition,
    MappingBlocked,
    PrerequisiteUnsatisfied,
)
from kctgov.models.mapping import ClassAppliedVersion, MappingValidationReport
from kctgov.models.rollout import PlanStatus, RolloutPlan, RolloutScope, RolloutStats, TargetRecord, TargetState
from kctgov.models.rules import ConflictSeverity
from kctgov.models.versions import CurriculumVersion, VersionState
from kctgov.store.base import CurriculumRepository

from .apply import ClassVersionApplier

LOGGER = logging.getLogger(__name__)

PLAN_TRANSITIONS: Dict[Tuple[PlanStatus, PlanStatus], str] = {
    (PlanStatus.DRAFT, PlanStatus.SCHEDULED): "schedule",
    (PlanStatus.SCHEDULED, PlanStatus.IN_PROGRESS): "execute",
    (PlanStatus.SCHEDULED, PlanStatus.FAILED): "cancel",
    (PlanStatus.IN_PROGRESS, PlanStatus.COMPLETED): "complete",
    (PlanStatus.IN_PROGRESS, PlanStatus.FAILED): "complete",
}

SKIPPABLE_STATUSES = frozenset({PlanStatus.SCHEDULED, PlanStatus.IN_PROGRESS})
ROLLBACK_STATUSES = frozenset({PlanStatus.COMPLETED, PlanStatus.FAILED})
OPEN_STATUSES = frozenset({PlanStatus.DRAFT, PlanStatus.SCHEDULED, PlanStatus.IN_PROGRESS})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require(plan: RolloutPlan, requested: PlanStatus, action: str) -> None:
    if PLAN_TRANSITIONS.get((plan.status, requested)) != action:
        raise InvalidTransition(plan.status.value, requested.value, subject=f"plan {plan.id}", reason=action)


def _closed(plan: RolloutPlan, reason: str) -> InvalidTransition:
    return InvalidTransition(plan.status.value, plan.status.value, subject=f"plan {plan.id}", reason=reason)


class RolloutOrchestrator:
    """Creates, schedules, executes and rolls back rollout plans.

    Every plan mutation loads the plan, changes it and saves it under a
    per-plan lock, so workers, skips and status changes never interleave.
    Targets run on a bounded thread pool and never share validation results.
    """

    def __init__(
        self,
        repository: CurriculumRepository,
        applier: ClassVersionApplier,
        *,
        audit: AuditLogger | None = None,
        max_workers: int = 4,
        lock_timeout: float = 0.5,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.applier = applier
        self.audit = audit
        self.max_workers = max_workers
        self.lock_timeout = lock_timeout
        self._clock = clock or _utcnow
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._in_flight: Set[Tuple[str, str]] = set()

    # ----------------------------------------------------------------- plumbing

    @contextmanager
    def _plan_lock(self, plan_id: str, *, wait: bool = False) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(plan_id, threading.Lock())
        acquired = lock.acquire() if wait else lock.acquire(timeout=self.lock_timeout)
        if not acquired:
            raise ConcurrentModification(f"Rollout plan {plan_id}")
        try:
            yield
        finally:
            lock.release()

    def _mutate(self, plan_id: str, change: Callable[[RolloutPlan], None], *, wait: bool = False) -> RolloutPlan:
        with self._plan_lock(plan_id, wait=wait):
            plan = self.repository.get_plan(plan_id)
            change(plan)
            return self.repository.save_plan(plan)

    def _emit(self, event: str, message: str, actor: str, **payload) -> None:
        if self.audit is not None:
            self.audit.emit(event, message, actor=actor, **payload)

    def _set_target(
        self,
        plan: RolloutPlan,
        class_id: str,
        state: TargetState,
        *,
        report: MappingValidationReport | None = None,
        note: str | None = None,
    ) -> None:
        current = plan.targets[class_id]
        plan.targets[class_id] = TargetRecord(
            class_id=class_id,
            state=state,
            report=report if report is not None else current.report,
            note=note,
            updated_at=self._clock(),
        )
        # settled targets never revert while executing, so this only grows
        if plan.total_count:
            plan.progress = max(plan.progress, plan.settled_count / plan.total_count)

    # -------------------------------------------------------------------- reads

    def get_plan(self, plan_id: str) -> RolloutPlan:
        return self.repository.get_plan(plan_id)

    def list_plans(self, kct_version_id: str | None = None) -> List[RolloutPlan]:
        return self.repository.list_plans(kct_version_id)

    def due_plans(self, now: datetime | None = None) -> List[RolloutPlan]:
        """Scheduled plans whose ``scheduled_at`` has passed."""
        moment = now or self._clock()
        return [
            plan
            for plan in self.repository.list_plans()
            if plan.status == PlanStatus.SCHEDULED and plan.scheduled_at <= moment
        ]

    def stats(self, kct_version_id: str | None = None) -> RolloutStats:
        """Counts by risk level, scope and outcome across plans, optionally for one version."""
        stats = RolloutStats()
        applied = failed = 0
        for plan in self.repository.list_plans(kct_version_id):
            stats.total_plans += 1
            stats.total_targets += plan.total_count
            stats.by_scope[plan.scope.value] += 1
            if plan.rolled_back_at is not None:
                stats.rolled_back_plans += 1
            open_plan = plan.status in OPEN_STATUSES
            for record in plan.targets.values():
                if record.report is not None:
                    stats.by_risk_level[record.report.risk_level.value] += 1
                if record.state == TargetState.APPLIED:
                    applied += 1
                elif record.state == TargetState.FAILED:
                    failed += 1
                elif open_plan and record.state in (TargetState.PENDING, TargetState.VALIDATED):
                    stats.planned_targets += 1
        stats.applied_targets = applied
        stats.failed_targets = failed
        stats.success_rate = applied / (applied + failed) if applied + failed else 0.0
        return stats

    # ------------------------------------------------------------ plan editing

    def create_plan(
        self,
        version_id: str,
        scope: RolloutScope | str,
        target_class_ids: Iterable[str],
        scheduled_at: datetime,
        prerequisites: Iterable[str] = (),
        created_by: str = "system",
        *,
        plan_id: str | None = None,
    ) -> RolloutPlan:
        version = self.repository.get_version(version_id)
        if version.state != VersionState.PUBLISHED:
            raise InvalidTransition(
                version.state.value,
                "rollout",
                subject=f"version {version.id}",
                reason="only published versions can be rolled out",
            )
        targets = tuple(dict.fromkeys(target_class_ids))
        if not targets:
            raise ValueError("A rollout plan needs at least one target class")
        for class_id in targets:
            self.repository.get_class(class_id)
        names = tuple(dict.fromkeys(name.strip() for name in prerequisites if name and name.strip()))
        plan = RolloutPlan(
            id=plan_id or f"plan-{uuid.uuid4().hex[:12]}",
            kct_version_id=version.id,
            version_label=version.version_label,
            scope=RolloutScope(scope),
            target_class_ids=targets,
            scheduled_at=scheduled_at,
            targets={class_id: TargetRecord(class_id=class_id) for class_id in targets},
            prerequisites=names,
            prerequisite_status={name: False for name in names},
            created_by=created_by,
            created_at=self._clock(),
        )
        plan = self.repository.add_plan(plan)
        LOGGER.info("Created rollout plan %s for %s (%d targets)", plan.id, version.version_label, len(targets))
        self._emit(
            "RolloutPlanChanged",
            f"Rollout plan created for {version.version_label} ({len(targets)} classes)",
            created_by,
            plan_id=plan.id,
            status=plan.status.value,
        )
        return plan

    def mark_prerequisite(self, plan_id: str, name: str, satisfied: bool = True, actor: str = "system") -> RolloutPlan:
        def change(plan: RolloutPlan) -> None:
            if plan.status not in (PlanStatus.DRAFT, PlanStatus.SCHEDULED):
                raise _closed(plan, "prerequisites are closed")
            if name not in plan.prerequisites:
                raise ValueError(f"Plan {plan.id} has no prerequisite {name!r}")
            plan.prerequisite_status[name] = satisfied

        plan = self._mutate(plan_id, change)
        self._emit(
            "RolloutPlanChanged",
            f"Prerequisite '{name}' marked {'satisfied' if satisfied else 'open'}",
            actor,
            plan_id=plan_id,
            prerequisite=name,
            satisfied=satisfied,
        )
        return plan

    def remove_prerequisite(self, plan_id: str, name: str, actor: str = "system") -> RolloutPlan:
        def change(plan: RolloutPlan) -> None:
            if plan.status != PlanStatus.DRAFT:
                raise _closed(plan, "prerequisites are closed")
            if name not in plan.prerequisites:
                raise ValueError(f"Plan {plan.id} has no prerequisite {name!r}")
            plan.prerequisites = tuple(item for item in plan.prerequisites if item != name)
            plan.prerequisite_status.pop(name, None)

        plan = self._mutate(plan_id, change)
        self._emit("RolloutPlanChanged", f"Prerequisite '{name}' removed", actor, plan_id=plan_id, prerequisite=name)
        return plan

    def schedule(self, plan_id: str, actor: str = "system") -> RolloutPlan:
        def change(plan: RolloutPlan) -> None:
            _require(plan, PlanStatus.SCHEDULED, "schedule")
            unsatisfied = plan.unsatisfied_prerequisites()
            if unsatisfied:
                raise PrerequisiteUnsatisfied(plan.id, unsatisfied)
            plan.status = PlanStatus.SCHEDULED

        plan = self._mutate(plan_id, change)
        self._emit(
            "RolloutPlanChanged",
            f"Rollout plan {plan_id} scheduled",
            actor,
            plan_id=plan_id,
            status=plan.status.value,
        )
        return plan

    def cancel(self, plan_id: str, actor: str = "system") -> RolloutPlan:
        """Cancel a scheduled plan before any target is attempted."""

        def change(plan: RolloutPlan) -> None:
            _require(plan, PlanStatus.FAILED, "cancel")
            plan.status = PlanStatus.FAILED
            plan.cancelled = True
            plan.finished_at = self._clock()

        plan = self._mutate(plan_id, change)
        LOGGER.info("Rollout plan %s cancelled by %s", plan_id, actor)
        self._emit(
            "RolloutPlanChanged",
            f"Rollout plan {plan_id} cancelled",
            actor,
            plan_id=plan_id,
            status=plan.status.value,
            cancelled=True,
        )
        return plan

    def skip_target(self, plan_id: str, class_id: str, actor: str = "system", reason: str | None = None) -> RolloutPlan:
        """Remove a not-yet-started target from the remaining queue."""

        def change(plan: RolloutPlan) -> None:
            if plan.status not in SKIPPABLE_STATUSES:
                raise _closed(plan, "targets can no longer be skipped")
            record = plan.targets.get(class_id)
            if record is None:
                raise ValueError(f"Class {class_id} is not a target of plan {plan.id}")
            if record.state != TargetState.PENDING or (plan.id, class_id) in self._in_flight:
                raise InvalidTransition(record.state.value, TargetState.SKIPPED.value, subject=f"target {class_id}")
            self._set_target(plan, class_id, TargetState.SKIPPED, note=reason or f"Skipped by {actor}")

        plan = self._mutate(plan_id, change)
        self._emit("RolloutPlanChanged", f"Target {class_id} skipped", actor, plan_id=plan_id, class_id=class_id)
        return plan

    # --------------------------------------------------------------- execution

    def _claim(self, plan_id: str, class_id: str) -> bool:
        with self._plan_lock(plan_id, wait=True):
            plan = self.repository.get_plan(plan_id)
            if plan.targets[class_id].state != TargetState.PENDING:
                return False
            self._in_flight.add((plan_id, class_id))
            return True

    def _run_target(self, plan_id: str, version: CurriculumVersion, class_id: str, executed_by: str) -> TargetState:
        if not self._claim(plan_id, class_id):
            return TargetState.SKIPPED
        try:
            try:
                report = self.applier.validate(class_id, version)
                if not report.can_proceed:
                    raise MappingBlocked(class_id, version.id, report)
            except MappingBlocked as exc:
                report = exc.report
                note = "; ".join(c.message for c in report.conflicts if c.severity == ConflictSeverity.HIGH) or exc.message
                self._mutate(
                    plan_id,
                    lambda plan: self._set_target(plan, class_id, TargetState.FAILED, report=report, note=note),
                    wait=True,
                )
                LOGGER.warning("Target %s blocked in plan %s: %s", class_id, plan_id, note)
                self._emit(
                    "RolloutTargetFailed",
                    f"{version.version_label} blocked for class {class_id}",
                    executed_by,
                    plan_id=plan_id,
                    class_id=class_id,
                    risk_level=exc.report.risk_level.value,
                )
                return TargetState.FAILED

            self._mutate(
                plan_id,
                lambda plan: self._set_target(plan, class_id, TargetState.VALIDATED, report=report),
                wait=True,
            )
            self.applier.commit(class_id, version, report, executed_by, plan_id=plan_id)
            self._mutate(
                plan_id,
                lambda plan: self._set_target(plan, class_id, TargetState.APPLIED, report=report),
                wait=True,
            )
            self._emit(
                "RolloutTargetApplied",
                f"{version.version_label} applied to class {class_id}",
                executed_by,
                plan_id=plan_id,
                class_id=class_id,
                risk_level=report.risk_level.value,
            )
            return TargetState.APPLIED
        except GovernanceError as exc:
            LOGGER.error("Target %s failed in plan %s: %s", class_id, plan_id, exc.message)
            self._fail_target(plan_id, version, class_id, executed_by, exc.message)
            return TargetState.FAILED
        finally:
            with self._plan_lock(plan_id, wait=True):
                self._in_flight.discard((plan_id, class_id))

    def _fail_target(self, plan_id: str, version: CurriculumVersion, class_id: str, executed_by: str, note: str) -> None:
        self._mutate(plan_id, lambda plan: self._set_target(plan, class_id, TargetState.FAILED, note=note), wait=True)
        self._emit(
            "RolloutTargetFailed",
            f"{version.version_label} failed for class {class_id}",
            executed_by,
            plan_id=plan_id,
            class_id=class_id,
            error=note,
        )

    def execute(self, plan_id: str, executed_by: str = "system") -> RolloutPlan:
        """Run every pending target; a blocked or failing target never aborts the plan."""

        loaded: List[CurriculumVersion] = []

        def start(plan: RolloutPlan) -> None:
            _require(plan, PlanStatus.IN_PROGRESS, "execute")
            # a newer publish may have archived the version since scheduling
            current = self.repository.get_version(plan.kct_version_id)
            if current.state != VersionState.PUBLISHED:
                raise InvalidTransition(
                    current.state.value,
                    "rollout",
                    subject=f"version {current.id}",
                    reason="only published versions can be rolled out",
                )
            loaded.append(current)
            plan.status = PlanStatus.IN_PROGRESS
            plan.started_at = self._clock()

        plan = self._mutate(plan_id, start)
        version = loaded[0]
        pending = [class_id for class_id in plan.target_class_ids if plan.targets[class_id].state == TargetState.PENDING]
        LOGGER.info("Executing plan %s: %d pending target(s)", plan_id, len(pending))

        if pending:
            with ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(pending)))) as executor:
                future_to_class = {
                    executor.submit(self._run_target, plan_id, version, class_id, executed_by): class_id
                    for class_id in pending
                }
                for future in as_completed(future_to_class):
                    class_id = future_to_class[future]
                    try:
                        future.result()
                    except Exception as exc:
                        LOGGER.exception("Unexpected error on target %s of plan %s", class_id, plan_id)
                        self._fail_target(plan_id, version, class_id, executed_by, str(exc))

        def finish(plan: RolloutPlan) -> None:
            for class_id, record in plan.targets.items():
                if record.state in (TargetState.PENDING, TargetState.VALIDATED):
                    self._set_target(plan, class_id, TargetState.FAILED, note="Target did not complete")
            final = PlanStatus.FAILED if plan.applied_count == 0 and plan.failed_count > 0 else PlanStatus.COMPLETED
            _require(plan, final, "complete")
            plan.status = final
            plan.finished_at = self._clock()
            plan.progress = 1.0 if plan.total_count else plan.progress

        plan = self._mutate(plan_id, finish, wait=True)
        LOGGER.info("Plan %s finished %s: %s", plan_id, plan.status.value, plan.summary())
        self._emit(
            "RolloutCompleted",
            f"Rollout of {plan.version_label} finished {plan.status.value}",
            executed_by,
            plan_id=plan_id,
            status=plan.status.value,
            **plan.summary(),
        )
        return plan

    # ---------------------------------------------------------------- rollback

    def _previous_application(self, plan: RolloutPlan, class_id: str) -> Tuple[Optional[ClassAppliedVersion], bool]:
        history = self.repository.applied_history(class_id)
        index = next((i for i in range(len(history) - 1, -1, -1) if history[i].plan_id == plan.id), None)
        if index is None:
            return None, False
        superseded = index != len(history) - 1
        return (history[index - 1] if index > 0 else None), superseded

    def rollback(self, plan_id: str, actor: str = "system") -> RolloutPlan:
        """Restore every applied target's previous version and mark it skipped.

        Failed and skipped targets are left untouched. Each restored target is
        saved before the next class is touched, so a rollback interrupted by a
        collaborator error can be retried and only restores what is left.
        """
        with self._plan_lock(plan_id):
            plan = self.repository.get_plan(plan_id)
            if plan.status not in ROLLBACK_STATUSES or plan.rolled_back_at is not None:
                raise InvalidTransition(plan.status.value, "rolled_back", subject=f"plan {plan.id}")
            restored: List[str] = []
            for class_id in plan.target_class_ids:
                if plan.targets[class_id].state != TargetState.APPLIED:
                    continue
                previous, superseded = self._previous_application(plan, class_id)
                if superseded:
                    note = "Rolled back; class already carries a newer application, left unchanged"
                elif previous is not None:
                    self.applier.reapply(class_id, previous, actor, note=f"Restored by rollback of plan {plan.id}")
                    note = f"Rolled back to {previous.version_label}"
                else:
                    self.applier.clear(class_id)
                    note = "Rolled back; no previous version recorded"
                self._set_target(plan, class_id, TargetState.SKIPPED, note=note)
                plan = self.repository.save_plan(plan)
                restored.append(class_id)
            plan.rolled_back_at = self._clock()
            plan = self.repository.save_plan(plan)
        LOGGER.info("Plan %s rolled back for %d class(es)", plan_id, len(restored))
        self._emit(
            "RolloutRolledBack",
            f"Rollout of {plan.version_label} rolled back for {len(restored)} class(es)",
            actor,
            plan_id=plan_id,
            class_ids=restored,
        )
        return plan


__all__ = ["PLAN_TRANSITIONS", "RolloutOrchestrator"]
