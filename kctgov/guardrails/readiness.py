"""Publish-readiness verdict for a curriculum version."""

from __future__ import annotations

from typing import Dict, List, Sequence

from pydantic import BaseModel, ConfigDict, Field

from kctgov.models.rules import Conflict, RuleCategory, ValidationRule
from kctgov.models.versions import CurriculumVersion

from .rules import DEFAULT_ENGINE, RuleEngine

READINESS_CHECKS = (
    "hoursValidation",
    "cefrCompleteness",
    "rubricRequirements",
    "resourceMinimums",
    "brokenLinks",
    "accessibility",
)
READINESS_CATEGORIES = frozenset({RuleCategory.CONTENT, RuleCategory.PUBLISH})


class ReadinessReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    ready: bool
    blocking_issues: List[str] = Field(default_factory=list)
    checks: Dict[str, bool]
    warnings: List[str] = Field(default_factory=list)
    conflicts: List[Conflict] = Field(default_factory=list)


def assess_readiness(
    version: CurriculumVersion,
    rules: Sequence[ValidationRule],
    *,
    engine: RuleEngine | None = None,
) -> ReadinessReport:
    """Run content/publish rules over ``version.content`` and fold them into named checks.

    A check fails only on an error-severity conflict; warnings are surfaced but
    never block. ``ready`` is true iff every named check passes, so an error
    from a rule that feeds no named check is reported as a warning.
    """
    engine = engine or DEFAULT_ENGINE
    applicable = [rule for rule in rules if rule.category in READINESS_CATEGORIES]
    check_for_rule = {rule.id: engine.registry.readiness_check_for(rule) for rule in applicable}
    conflicts = engine.evaluate(version.content, applicable)

    checks = {name: True for name in READINESS_CHECKS}
    blocking: List[str] = []
    warnings: List[str] = []
    for conflict in conflicts:
        check = check_for_rule.get(conflict.rule_id)
        if not conflict.is_error or check not in checks:
            warnings.append(conflict.message)
            continue
        blocking.append(conflict.message)
        checks[check] = False

    return ReadinessReport(
        ready=all(checks.values()),
        blocking_issues=blocking,
        checks=checks,
        warnings=warnings,
        conflicts=conflicts,
    )


__all__ = ["READINESS_CHECKS", "ReadinessReport", "assess_readiness"]
