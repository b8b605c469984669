"""Single-class application of a published version."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from kctgov.core.errors import InvalidTransition, MappingBlocked
from kctgov.guardrails.mapping import MappingValidator
from kctgov.guardrails.policy import PolicyStore
from kctgov.models.mapping import ClassAppliedVersion, ClassFacts, MappingValidationReport, OverrideRecord
from kctgov.models.rules import RuleCategory
from kctgov.models.versions import CurriculumVersion, VersionState
from kctgov.store.base import CurriculumRepository

LOGGER = logging.getLogger(__name__)


class ClassVersionApplier:
    """Validate a class against a version and write its applied-version record.

    Used by the rollout orchestrator per target and by direct mapping. Class
    facts are read fresh on every call.
    """

    def __init__(
        self,
        repository: CurriculumRepository,
        policy: PolicyStore,
        *,
        validator: MappingValidator | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.policy = policy
        self.validator = validator or MappingValidator()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def validate(self, class_id: str, version: CurriculumVersion) -> MappingValidationReport:
        facts: ClassFacts = self.repository.get_class(class_id)
        return self.validator.validate_class(version, facts, self.policy.effective_rules(RuleCategory.MAPPING))

    def commit(
        self,
        class_id: str,
        version: CurriculumVersion,
        report: MappingValidationReport,
        applied_by: str,
        *,
        plan_id: str | None = None,
        override: OverrideRecord | None = None,
    ) -> ClassAppliedVersion:
        applied = ClassAppliedVersion(
            kct_version_id=version.id,
            version_label=version.version_label,
            applied_at=self._clock(),
            applied_by=applied_by,
            last_validation=report,
            plan_id=plan_id,
            override_id=override.id if override is not None else None,
        )
        self.repository.record_applied(class_id, applied)
        LOGGER.info("Applied %s to class %s (plan=%s)", version.version_label, class_id, plan_id)
        return applied

    def apply(
        self,
        class_id: str,
        version: CurriculumVersion,
        applied_by: str,
        *,
        override: OverrideRecord | None = None,
        plan_id: str | None = None,
    ) -> ClassAppliedVersion:
        """Apply ``version`` to one class.

        Raises:
            InvalidTransition: the version is not published.
            MappingBlocked: validation forbids proceeding and no matching
                override record was supplied.
        """
        if version.state != VersionState.PUBLISHED:
            raise InvalidTransition(
                version.state.value,
                "applied",
                subject=f"version {version.id}",
                reason="only published versions can be applied to classes",
            )
        report = self.validate(class_id, version)
        if not report.can_proceed:
            if override is None or override.class_id != class_id or override.kct_version_id != version.id:
                raise MappingBlocked(class_id, version.id, report)
            LOGGER.warning("Applying %s to %s under override %s", version.id, class_id, override.id)
        return self.commit(class_id, version, report, applied_by, plan_id=plan_id, override=override)

    def reapply(
        self,
        class_id: str,
        previous: ClassAppliedVersion,
        applied_by: str,
        *,
        note: str | None = None,
        plan_id: str | None = None,
    ) -> ClassAppliedVersion:
        """Restore a previously recorded application without re-validating it."""
        restored = previous.model_copy(
            update={
                "applied_at": self._clock(),
                "applied_by": applied_by,
                "plan_id": plan_id,
                "note": note,
            }
        )
        self.repository.record_applied(class_id, restored)
        return restored

    def clear(self, class_id: str) -> None:
        self.repository.clear_applied(class_id)

    def current(self, class_id: str) -> Optional[ClassAppliedVersion]:
        return self.repository.current_applied(class_id)


__all__ = ["ClassVersionApplier"]
