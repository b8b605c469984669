from __future__ import annotations

import random

import pytest

from kctgov.core.audit import AuditLogger
from kctgov.guardrails.mapping import MappingValidator, mapping_status, score_risk
from kctgov.guardrails.policy import PolicyStore
from kctgov.models.content import Modality
from kctgov.models.mapping import RiskLevel
from kctgov.models.rules import Conflict, ConflictSeverity, ConflictType, RuleCategory
from tests.mocks.curriculum import make_class, make_content, make_resource, make_unit, make_version

MAPPING_RULES = PolicyStore().effective_rules(RuleCategory.MAPPING)
ALL_RULES = PolicyStore().effective_rules()


def _conflict(severity: ConflictSeverity) -> Conflict:
    return Conflict(type=ConflictType.HOURS, severity=severity, message="x", rule_id="r")


def test_level_mismatch_blocks_on_its_own() -> None:
    version = make_version(content=make_content(level="B2-C1"))
    report = MappingValidator().validate_mapping(version, make_class(level="B1"), MAPPING_RULES)

    assert [(c.type, c.severity) for c in report.conflicts] == [(ConflictType.LEVEL, ConflictSeverity.HIGH)]
    assert report.can_proceed is False
    assert report.risk_level == RiskLevel.HIGH
    assert mapping_status(report) == "blocked"


def test_soft_conflicts_raise_risk_past_two() -> None:
    content = make_content(units=[make_unit("u1", duration=40, resources=[make_resource("v", kind="video")])])
    version = make_version(content=content)
    two = make_class(age_group="teens", modality=Modality.OFFLINE)
    three = make_class(age_group="teens", modality=Modality.OFFLINE, kinds=["worksheet"])
    validator = MappingValidator()

    first = validator.validate_mapping(version, two, MAPPING_RULES)
    second = validator.validate_mapping(version, three, MAPPING_RULES)

    assert len(first.conflicts) == 2
    assert first.high_severity_count == 0
    assert (first.risk_level, first.can_proceed) == (RiskLevel.LOW, True)
    assert mapping_status(first) == "warnings"
    assert len(second.conflicts) == 3
    assert (second.risk_level, second.can_proceed) == (RiskLevel.MEDIUM, True)


def test_clean_mapping_passes() -> None:
    report = MappingValidator().validate_mapping(make_version(), make_class(scheduled_hours=40), MAPPING_RULES)
    assert report.conflicts == ()
    assert report.risk_level == RiskLevel.LOW
    assert mapping_status(report) == "passed"
    assert mapping_status(None) == "none"


def test_content_rules_do_not_leak_into_mapping() -> None:
    version = make_version(content=make_content(unit_hours=(59, 59), total_hours=100))
    report = MappingValidator().validate_mapping(version, make_class(), ALL_RULES)
    assert report.conflicts == ()


def test_multiple_classes_share_one_report() -> None:
    version = make_version(content=make_content(level="B1"))
    classes = [make_class("cls-a"), make_class("cls-b", level="C1")]
    report = MappingValidator().validate_mapping(version, classes, MAPPING_RULES)

    assert report.class_id == "cls-a"
    assert report.class_ids == ("cls-a", "cls-b")
    assert report.conflicts_for("cls-a") == []
    assert len(report.conflicts_for("cls-b")) == 1
    assert not report.can_proceed


def test_validation_is_idempotent() -> None:
    version = make_version(content=make_content(level="A2"))
    facts = make_class(level="B1", age_group="teens", scheduled_hours=33)
    validator = MappingValidator()
    assert validator.validate_mapping(version, facts, MAPPING_RULES) == validator.validate_mapping(
        version, facts, MAPPING_RULES
    )


def test_needs_at_least_one_class() -> None:
    with pytest.raises(ValueError):
        MappingValidator().validate_mapping(make_version(), [], MAPPING_RULES)


def test_validation_emits_audit_event() -> None:
    audit = AuditLogger()
    MappingValidator(audit=audit).validate_class(make_version(), make_class(), MAPPING_RULES)
    events = audit.events("MappingValidated")
    assert len(events) == 1
    assert events[0].payload["class_ids"] == ["cls-1"]
    assert events[0].payload["risk_level"] == "low"


def test_any_high_conflict_blocks() -> None:
    rng = random.Random(11)
    severities = list(ConflictSeverity)
    for _ in range(200):
        conflicts = [_conflict(rng.choice(severities)) for _ in range(rng.randint(0, 6))]
        risk, can_proceed = score_risk(conflicts)
        has_high = any(c.severity == ConflictSeverity.HIGH for c in conflicts)

        assert can_proceed == (not has_high)
        if has_high:
            assert risk == RiskLevel.HIGH
        elif len(conflicts) > 2:
            assert risk == RiskLevel.MEDIUM
        else:
            assert risk == RiskLevel.LOW
