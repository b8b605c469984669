"""Apply-readiness verdicts for mapping a version onto running classes."""

from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

from kctgov.core.audit import AuditLogger
from kctgov.models.mapping import ClassFacts, MappingStatus, MappingValidationReport, RiskLevel
from kctgov.models.rules import Conflict, ConflictSeverity, RuleCategory, ValidationRule
from kctgov.models.versions import CurriculumVersion

from .rules import DEFAULT_ENGINE, RuleEngine

LOGGER = logging.getLogger(__name__)


def score_risk(conflicts: Sequence[Conflict]) -> Tuple[RiskLevel, bool]:
    """Return ``(risk_level, can_proceed)``.

    Any high-severity conflict blocks outright. Without one, more than two
    conflicts raise the risk to medium.
    """
    high_count = sum(1 for conflict in conflicts if conflict.severity == ConflictSeverity.HIGH)
    if high_count > 0:
        return RiskLevel.HIGH, False
    if len(conflicts) > 2:
        return RiskLevel.MEDIUM, True
    return RiskLevel.LOW, True


def mapping_status(report: MappingValidationReport | None) -> MappingStatus:
    if report is None:
        return "none"
    if not report.can_proceed:
        return "blocked"
    return "warnings" if report.conflicts else "passed"


class MappingValidator:
    """Runs mapping rules per class. Holds no cached results."""

    def __init__(self, *, engine: RuleEngine | None = None, audit: AuditLogger | None = None) -> None:
        self.engine = engine or DEFAULT_ENGINE
        self.audit = audit

    def validate_mapping(
        self,
        version: CurriculumVersion,
        class_facts: ClassFacts | Sequence[ClassFacts],
        rules: Sequence[ValidationRule],
    ) -> MappingValidationReport:
        facts_list: List[ClassFacts] = [class_facts] if isinstance(class_facts, ClassFacts) else list(class_facts)
        if not facts_list:
            raise ValueError("validate_mapping needs at least one class")
        mapping_rules = [rule for rule in rules if rule.category == RuleCategory.MAPPING]

        conflicts: List[Conflict] = []
        for facts in facts_list:
            conflicts.extend(self.engine.evaluate((version.content, facts), mapping_rules))
        risk_level, can_proceed = score_risk(conflicts)
        report = MappingValidationReport(
            class_id=facts_list[0].class_id,
            class_ids=tuple(facts.class_id for facts in facts_list),
            kct_version_id=version.id,
            conflicts=tuple(conflicts),
            can_proceed=can_proceed,
            risk_level=risk_level,
        )
        LOGGER.debug(
            "Mapping %s -> %s: %d conflict(s), risk=%s",
            version.id,
            ",".join(report.class_ids),
            len(conflicts),
            risk_level.value,
        )
        if self.audit is not None:
            self.audit.emit(
                "MappingValidated",
                f"Validated {version.version_label} against {len(facts_list)} class(es): risk {risk_level.value}",
                kct_version_id=version.id,
                class_ids=list(report.class_ids),
                conflicts=len(conflicts),
                can_proceed=can_proceed,
                risk_level=risk_level.value,
            )
        return report

    def validate_class(
        self,
        version: CurriculumVersion,
        facts: ClassFacts,
        rules: Sequence[ValidationRule],
    ) -> MappingValidationReport:
        return self.validate_mapping(version, [facts], rules)


def validate_mapping(
    version: CurriculumVersion,
    class_facts: ClassFacts | Sequence[ClassFacts],
    rules: Sequence[ValidationRule],
) -> MappingValidationReport:
    return MappingValidator().validate_mapping(version, class_facts, rules)


__all__ = ["MappingValidator", "mapping_status", "score_risk", "validate_mapping"]
