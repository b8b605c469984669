"""Registry-backed rule engine evaluating content and class mappings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from kctgov.models.content import ContentSnapshot, HealthStatus
from kctgov.models.mapping import ClassFacts
from kctgov.models.rules import (
    Conflict,
    ConflictSeverity,
    ConflictType,
    RuleCategory,
    RuleSeverity,
    ValidationRule,
)
from kctgov.utils.levels import age_group_contains, level_contains, level_overlaps, levels_in_range

Subject = Union[ContentSnapshot, Tuple[ContentSnapshot, ClassFacts]]
CheckHandler = Callable[[ValidationRule, ContentSnapshot, Optional[ClassFacts]], List[Conflict]]

CORE_SKILLS: Tuple[str, ...] = ("listening", "speaking", "reading", "writing")

SEVERITY_FOR_RULE = {
    RuleSeverity.ERROR: ConflictSeverity.HIGH,
    RuleSeverity.WARNING: ConflictSeverity.MEDIUM,
    RuleSeverity.INFO: ConflictSeverity.LOW,
}


@dataclass(frozen=True)
class CheckBinding:
    """Pair a check implementation with the metadata the engine needs."""

    key: str
    handler: CheckHandler
    description: str
    readiness_check: Optional[str] = None
    needs_class: bool = False


class RuleRegistry:
    """Explicit registry mapping rule ``check`` keys to implementations."""

    def __init__(self) -> None:
        self._checks: Dict[str, CheckBinding] = {}

    def register(self, binding: CheckBinding) -> None:
        if binding.key in self._checks:
            raise ValueError(f"Check {binding.key} already registered")
        self._checks[binding.key] = binding

    def get(self, key: str) -> CheckBinding:
        try:
            return self._checks[key]
        except KeyError:
            raise KeyError(f"No check registered for {key!r}") from None

    def __contains__(self, key: object) -> bool:
        return key in self._checks

    def keys(self) -> List[str]:
        return list(self._checks)

    def describe(self) -> Mapping[str, str]:
        return {key: binding.description for key, binding in self._checks.items()}

    def readiness_check_for(self, rule: ValidationRule) -> Optional[str]:
        return self.get(rule.check_key).readiness_check


# ---------------------------------------------------------------------------
# helpers


def _hours(value: float) -> str:
    return f"{value:g}"


def _conflict(
    rule: ValidationRule,
    facts: Optional[ClassFacts],
    *,
    type: ConflictType,
    message: str,
    severity: Optional[ConflictSeverity] = None,
    rule_severity: Optional[RuleSeverity] = None,
    **fields,
) -> Conflict:
    resolved_rule_severity = rule_severity or rule.severity
    return Conflict(
        type=type,
        severity=severity or SEVERITY_FOR_RULE[resolved_rule_severity],
        message=message,
        rule_id=rule.id,
        rule_severity=resolved_rule_severity,
        class_id=facts.class_id if facts is not None else None,
        **fields,
    )


def _tolerance_fraction(rule: ValidationRule) -> float:
    return float(rule.option("tolerance", 5.0)) / 100.0


def _deviation_severity(deviation: float, tolerance: float) -> ConflictSeverity:
    return ConflictSeverity.MEDIUM if deviation <= 2 * tolerance else ConflictSeverity.HIGH


# ---------------------------------------------------------------------------
# content checks


def check_hours_consistency(rule: ValidationRule, content: ContentSnapshot, facts: Optional[ClassFacts]) -> List[Conflict]:
    declared = content.total_hours
    actual = content.unit_hours
    if declared <= 0:
        return [
            _conflict(
                rule,
                facts,
                type=ConflictType.HOURS,
                severity=ConflictSeverity.HIGH,
                message=f"Declared total hours must be positive, got {_hours(declared)}h",
                current_value=declared,
                suggested_fix=f"Set total hours to the unit sum ({_hours(actual)}h)",
            )
        ]
    tolerance = _tolerance_fraction(rule)
    deviation = abs(actual - declared) / declared
    if deviation <= tolerance:
        return []
    return [
        _conflict(
            rule,
            facts,
            type=ConflictType.HOURS,
            severity=_deviation_severity(deviation, tolerance),
            message=(
                f"Unit hours total {_hours(actual)}h but the version declares {_hours(declared)}h "
                f"({deviation * 100:.1f}% off, tolerance {tolerance * 100:g}%)"
            ),
            current_value=actual,
            required_value=declared,
            suggested_fix="Adjust unit durations or update the declared total hours",
            auto_fixable=True,
        )
    ]


def check_cefr_minimums(rule: ValidationRule, content: ContentSnapshot, facts: Optional[ClassFacts]) -> List[Conflict]:
    minimum = float(rule.option("min_coverage", 80))
    skills = [skill.lower() for skill in rule.option("core_skills", CORE_SKILLS)]
    units = list(content.iter_units())
    conflicts: List[Conflict] = []
    for level in levels_in_range(content.level):
        # units without an explicit level count towards every declared level
        at_level = [unit for unit in units if unit.level is None or level in levels_in_range(unit.level)]
        for skill in skills:
            covered = sum(1 for unit in at_level if skill in unit.skills)
            coverage = (covered / len(at_level) * 100.0) if at_level else 0.0
            if coverage >= minimum:
                continue
            conflicts.append(
                _conflict(
                    rule,
                    facts,
                    type=ConflictType.SKILLS,
                    message=f"{level}: skill '{skill}' covered by {coverage:.0f}% of units (minimum {minimum:g}%)",
                    current_value=round(coverage, 1),
                    required_value=minimum,
                    suggested_fix=f"Tag more {level} units with '{skill}' activities",
                )
            )
    return conflicts


def check_rubric_requirements(rule: ValidationRule, content: ContentSnapshot, facts: Optional[ClassFacts]) -> List[Conflict]:
    conflicts: List[Conflict] = []
    for unit in content.iter_units():
        if unit.assessment is None:
            continue
        rubric = unit.assessment.rubric
        if rubric is not None and rubric.criteria:
            continue
        conflicts.append(
            _conflict(
                rule,
                facts,
                type=ConflictType.RUBRIC,
                message=f"Unit '{unit.title}' has a {unit.assessment.kind} assessment without a rubric",
                current_value=rubric.id if rubric is not None else None,
                suggested_fix="Attach a rubric with at least one criterion",
            )
        )
    return conflicts


def check_resource_minimums(rule: ValidationRule, content: ContentSnapshot, facts: Optional[ClassFacts]) -> List[Conflict]:
    minimum = int(rule.option("min_resources_per_skill", 1))
    require_all = bool(rule.option("require_resources_for_all_units", True))
    conflicts: List[Conflict] = []
    for unit in content.iter_units():
        if not unit.resources and require_all:
            conflicts.append(
                _conflict(
                    rule,
                    facts,
                    type=ConflictType.RESOURCES,
                    message=f"Unit '{unit.title}' has no resources",
                    current_value=0,
                    required_value=minimum,
                    suggested_fix="Link at least one resource to the unit",
                )
            )
            continue
        for skill in unit.skills:
            tagged = sum(1 for resource in unit.resources if skill in resource.skills)
            if tagged >= minimum:
                continue
            conflicts.append(
                _conflict(
                    rule,
                    facts,
                    type=ConflictType.RESOURCES,
                    message=f"Unit '{unit.title}' has {tagged} resource(s) for '{skill}' (minimum {minimum})",
                    current_value=tagged,
                    required_value=minimum,
                    suggested_fix=f"Tag a resource with '{skill}'",
                )
            )
    return conflicts


_HEALTH_SEVERITY = {
    HealthStatus.BROKEN: RuleSeverity.ERROR,
    HealthStatus.RESTRICTED: RuleSeverity.ERROR,
    HealthStatus.EXPIRED: RuleSeverity.WARNING,
}


def check_broken_links(rule: ValidationRule, content: ContentSnapshot, facts: Optional[ClassFacts]) -> List[Conflict]:
    conflicts: List[Conflict] = []
    for unit, resource in content.iter_resources():
        rule_severity = _HEALTH_SEVERITY.get(resource.health_status)
        if rule_severity is None:
            continue
        conflicts.append(
            _conflict(
                rule,
                facts,
                type=ConflictType.LINKS,
                rule_severity=rule_severity,
                message=f"Resource '{resource.title}' in unit '{unit.title}' is {resource.health_status.value}",
                current_value=resource.health_status.value,
                required_value=HealthStatus.HEALTHY.value,
                suggested_fix="Replace or renew the resource link",
            )
        )
    return conflicts


def check_accessibility(rule: ValidationRule, content: ContentSnapshot, facts: Optional[ClassFacts]) -> List[Conflict]:
    return [
        _conflict(
            rule,
            facts,
            type=ConflictType.ACCESSIBILITY,
            message=f"Resource '{resource.title}' in unit '{unit.title}' is not accessibility compliant",
            current_value=resource.id,
            suggested_fix="Provide captions, transcripts or an accessible alternative",
        )
        for unit, resource in content.iter_resources()
        if not resource.accessible
    ]


# ---------------------------------------------------------------------------
# mapping checks


def check_hours_fit(rule: ValidationRule, content: ContentSnapshot, facts: Optional[ClassFacts]) -> List[Conflict]:
    if facts is None or facts.scheduled_hours is None or content.total_hours <= 0:
        return []
    required = content.total_hours
    scheduled = facts.scheduled_hours
    tolerance = _tolerance_fraction(rule)
    deviation = abs(scheduled - required) / required
    if deviation <= tolerance:
        return []
    if scheduled < required:
        fix = f"Add {_hours(required - scheduled)}h of sessions or adjust unit pacing"
    else:
        fix = f"Trim {_hours(scheduled - required)}h from the class calendar"
    return [
        _conflict(
            rule,
            facts,
            type=ConflictType.HOURS,
            severity=_deviation_severity(deviation, tolerance),
            message=f"KCT requires {_hours(required)} hours but class schedule has {_hours(scheduled)} hours",
            current_value=scheduled,
            required_value=required,
            suggested_fix=fix,
            auto_fixable=True,
        )
    ]


def check_level_match(rule: ValidationRule, content: ContentSnapshot, facts: Optional[ClassFacts]) -> List[Conflict]:
    if facts is None:
        return []
    strict = bool(rule.option("strict", False))
    matches = level_contains(content.level, facts.level) if strict else level_overlaps(content.level, facts.level)
    if matches:
        return []
    return [
        _conflict(
            rule,
            facts,
            type=ConflictType.LEVEL,
            severity=ConflictSeverity.HIGH,
            message=f"KCT level {content.level} doesn't match class level {facts.level}",
            current_value=facts.level,
            required_value=content.level,
            suggested_fix="Consider bridging content or a level-appropriate KCT",
        )
    ]


def check_age_fit(rule: ValidationRule, content: ContentSnapshot, facts: Optional[ClassFacts]) -> List[Conflict]:
    if facts is None or age_group_contains(content.age_group, facts.age_group):
        return []
    return [
        _conflict(
            rule,
            facts,
            type=ConflictType.AGE,
            severity=ConflictSeverity.MEDIUM,
            message=f"KCT targets {content.age_group} learners but class enrolls {facts.age_group}",
            current_value=facts.age_group,
            required_value=content.age_group,
            suggested_fix="Adapt activities for the enrolled age group",
        )
    ]


def check_modality_fit(rule: ValidationRule, content: ContentSnapshot, facts: Optional[ClassFacts]) -> List[Conflict]:
    if facts is None or facts.modality == content.modality:
        return []
    return [
        _conflict(
            rule,
            facts,
            type=ConflictType.MODALITY,
            severity=ConflictSeverity.LOW,
            message=f"KCT designed for {content.modality.value} delivery but class is {facts.modality.value}",
            current_value=facts.modality.value,
            required_value=content.modality.value,
            suggested_fix=(
                f"Adapt {content.modality.value} components for {facts.modality.value} delivery "
                "or override with justification"
            ),
            auto_fixable=False,
        )
    ]


def check_resource_completeness(rule: ValidationRule, content: ContentSnapshot, facts: Optional[ClassFacts]) -> List[Conflict]:
    if facts is None or facts.available_resource_kinds is None:
        return []
    missing = [kind for kind in content.resource_kinds() if kind.lower() not in facts.available_resource_kinds]
    if not missing:
        return []
    return [
        _conflict(
            rule,
            facts,
            type=ConflictType.RESOURCES,
            severity=ConflictSeverity.LOW,
            message=f"Class campus lacks resource types used by the KCT: {', '.join(missing)}",
            current_value=", ".join(sorted(facts.available_resource_kinds)),
            required_value=", ".join(missing),
            suggested_fix="Provision the missing resource types or swap in available alternatives",
            auto_fixable=True,
        )
    ]


def default_registry() -> RuleRegistry:
    registry = RuleRegistry()
    for binding in (
        CheckBinding("hours-consistency", check_hours_consistency, "Unit hours match the declared total", "hoursValidation"),
        CheckBinding("cefr-minimums", check_cefr_minimums, "Core skill coverage per CEFR level", "cefrCompleteness"),
        CheckBinding("rubric-requirements", check_rubric_requirements, "Assessed units carry a rubric", "rubricRequirements"),
        CheckBinding("resource-minimums", check_resource_minimums, "Resources tagged per unit skill", "resourceMinimums"),
        CheckBinding("broken-link-detection", check_broken_links, "Resource link health", "brokenLinks"),
        CheckBinding("accessibility-compliance", check_accessibility, "Resources meet accessibility", "accessibility"),
        CheckBinding("mapping-hours-fit", check_hours_fit, "Class calendar fits KCT hours", needs_class=True),
        CheckBinding("mapping-level-match", check_level_match, "Class CEFR level within KCT range", needs_class=True),
        CheckBinding("mapping-age-fit", check_age_fit, "Class age group within KCT target", needs_class=True),
        CheckBinding("mapping-modality-fit", check_modality_fit, "Class delivery modality", needs_class=True),
        CheckBinding(
            "mapping-resource-completeness",
            check_resource_completeness,
            "Campus provides the KCT resource types",
            needs_class=True,
        ),
    ):
        registry.register(binding)
    return registry


class RuleEngine:
    """Evaluate rules against a snapshot or a (snapshot, class facts) pairing.

    The engine holds no state besides its registry. Conflicts come back in
    rule-declaration order, then in the order each check found them.
    """

    def __init__(self, registry: RuleRegistry | None = None) -> None:
        self.registry = registry or default_registry()

    def evaluate(self, subject: Subject, rules: Sequence[ValidationRule]) -> List[Conflict]:
        content, facts = _unpack(subject)
        conflicts: List[Conflict] = []
        for rule in rules:
            if not rule.enabled:
                continue
            binding = self.registry.get(rule.check_key)
            if (binding.needs_class or rule.category == RuleCategory.MAPPING) and facts is None:
                continue
            conflicts.extend(binding.handler(rule, content, facts))
        return conflicts

    def validate_rules(self, rules: Iterable[ValidationRule]) -> None:
        """Raise KeyError when any rule references an unregistered check."""
        for rule in rules:
            self.registry.get(rule.check_key)


def _unpack(subject: Subject) -> Tuple[ContentSnapshot, Optional[ClassFacts]]:
    if isinstance(subject, ContentSnapshot):
        return subject, None
    if isinstance(subject, tuple) and len(subject) == 2:
        content, facts = subject
        if isinstance(content, ContentSnapshot) and isinstance(facts, ClassFacts):
            return content, facts
    raise TypeError("subject must be a ContentSnapshot or a (ContentSnapshot, ClassFacts) pair")


DEFAULT_ENGINE = RuleEngine()


def evaluate(subject: Subject, rules: Sequence[ValidationRule]) -> List[Conflict]:
    return DEFAULT_ENGINE.evaluate(subject, rules)


__all__ = [
    "CORE_SKILLS",
    "CheckBinding",
    "DEFAULT_ENGINE",
    "RuleEngine",
    "RuleRegistry",
    "default_registry",
    "evaluate",
]
