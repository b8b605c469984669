from __future__ import annotations

import pytest

from kctgov.guardrails.policy import DEFAULT_RULES
from kctgov.guardrails.rules import CheckBinding, RuleEngine, RuleRegistry, check_hours_consistency, default_registry
from kctgov.models.content import HealthStatus, Modality
from kctgov.models.rules import ConflictSeverity, ConflictType, RuleCategory, RuleSeverity, ValidationRule
from tests.mocks.curriculum import make_class, make_content, make_resource, make_unit, rubric_assessment

RULES = {rule.id: rule for rule in DEFAULT_RULES}
engine = RuleEngine()


def _run(rule_id: str, subject, **config):
    rule = RULES[rule_id]
    if config:
        rule = rule.model_copy(update={"config": {**rule.config, **config}})
    return engine.evaluate(subject, [rule])


def test_hours_within_tolerance_passes() -> None:
    content = make_content(unit_hours=(52, 50), total_hours=100)
    assert _run("hours-consistency", content) == []


def test_hours_deviation_severity_scales_with_tolerance() -> None:
    medium = _run("hours-consistency", make_content(unit_hours=(57, 50), total_hours=100))
    high = _run("hours-consistency", make_content(unit_hours=(59, 59), total_hours=100))

    assert [c.severity for c in medium] == [ConflictSeverity.MEDIUM]
    assert [c.severity for c in high] == [ConflictSeverity.HIGH]
    assert high[0].type == ConflictType.HOURS
    assert high[0].current_value == 118
    assert high[0].required_value == 100
    assert high[0].is_error
    assert "118h" in high[0].message and "100h" in high[0].message


def test_hours_tolerance_comes_from_rule_config() -> None:
    content = make_content(unit_hours=(59, 59), total_hours=100)
    assert _run("hours-consistency", content, tolerance=20) == []


def test_non_positive_declared_hours_is_high() -> None:
    conflicts = _run("hours-consistency", make_content(unit_hours=(10,), total_hours=0))
    assert len(conflicts) == 1
    assert conflicts[0].severity == ConflictSeverity.HIGH
    assert "positive" in conflicts[0].message


def test_cefr_coverage_flags_missing_skill() -> None:
    units = [
        make_unit("u1", skills=("listening", "speaking", "reading", "writing")),
        make_unit("u2", skills=("listening", "speaking", "reading")),
    ]
    conflicts = _run("cefr-minimums", make_content(units=units))

    assert len(conflicts) == 1
    assert "writing" in conflicts[0].message
    assert conflicts[0].current_value == 50.0
    assert conflicts[0].rule_severity == RuleSeverity.WARNING
    assert conflicts[0].severity == ConflictSeverity.MEDIUM


def test_cefr_coverage_checks_every_level_in_range() -> None:
    units = [make_unit("u1", level="B1"), make_unit("u2", level="B1")]
    conflicts = _run("cefr-minimums", make_content(units=units, level="B1-B2"))

    assert len(conflicts) == 4
    assert all(conflict.message.startswith("B2:") for conflict in conflicts)


def test_rubric_required_for_assessed_units() -> None:
    units = [
        make_unit("u1", assessment=rubric_assessment()),
        make_unit("u2", assessment={"kind": "oral"}),
        make_unit("u3"),
    ]
    conflicts = _run("rubric-requirements", make_content(units=units))

    assert len(conflicts) == 1
    assert conflicts[0].type == ConflictType.RUBRIC
    assert "Unit u2" in conflicts[0].message


def test_resource_minimums_require_resources_and_tags() -> None:
    units = [
        make_unit("bare", resources=[]),
        make_unit("thin", resources=[make_resource("r1", skills=("listening", "speaking", "reading"))]),
    ]
    conflicts = _run("resource-minimums", make_content(units=units))

    messages = [conflict.message for conflict in conflicts]
    assert messages[0] == "Unit 'Unit bare' has no resources"
    assert any("'writing'" in message for message in messages[1:])
    assert len(conflicts) == 2


def test_resource_minimums_without_all_units_requirement() -> None:
    units = [make_unit("bare", skills=(), resources=[])]
    assert _run("resource-minimums", make_content(units=units), require_resources_for_all_units=False) == []


def test_broken_links_rule_severity_by_health() -> None:
    resources = [
        make_resource("ok"),
        make_resource("dead", health_status=HealthStatus.BROKEN),
        make_resource("old", health_status=HealthStatus.EXPIRED),
    ]
    conflicts = _run("broken-link-detection", make_content(units=[make_unit("u1", resources=resources)]))

    assert [c.rule_severity for c in conflicts] == [RuleSeverity.ERROR, RuleSeverity.WARNING]
    assert [c.current_value for c in conflicts] == ["broken", "expired"]


def test_accessibility_flags_inaccessible_resources() -> None:
    resources = [make_resource("a"), make_resource("b", accessible=False)]
    conflicts = _run("accessibility-compliance", make_content(units=[make_unit("u1", resources=resources)]))
    assert [c.current_value for c in conflicts] == ["b"]


def test_hours_fit_message_and_fix() -> None:
    content = make_content(unit_hours=(20, 20))
    conflicts = _run("mapping-hours-fit", (content, make_class(scheduled_hours=30)))

    assert len(conflicts) == 1
    conflict = conflicts[0]
    assert conflict.message == "KCT requires 40 hours but class schedule has 30 hours"
    assert conflict.severity == ConflictSeverity.HIGH
    assert conflict.auto_fixable
    assert conflict.class_id == "cls-1"
    assert "Add 10h" in conflict.suggested_fix


def test_hours_fit_skips_unknown_schedule() -> None:
    assert _run("mapping-hours-fit", (make_content(), make_class(scheduled_hours=None))) == []


def test_level_match_overlap_and_strict() -> None:
    content = make_content(level="B2-C1")
    assert _run("mapping-level-match", (content, make_class(level="B1-B2"))) == []
    strict = _run("mapping-level-match", (content, make_class(level="B1-B2")), strict=True)
    assert [c.severity for c in strict] == [ConflictSeverity.HIGH]


def test_level_mismatch_is_high() -> None:
    conflicts = _run("mapping-level-match", (make_content(level="B2-C1"), make_class(level="B1")))
    assert len(conflicts) == 1
    assert conflicts[0].type == ConflictType.LEVEL
    assert conflicts[0].severity == ConflictSeverity.HIGH
    assert conflicts[0].message == "KCT level B2-C1 doesn't match class level B1"


def test_age_modality_and_resource_fit() -> None:
    content = make_content(units=[make_unit("u1", resources=[make_resource("v", kind="video")])])
    facts = make_class(age_group="teens", modality=Modality.OFFLINE, kinds=["worksheet"])

    age = _run("mapping-age-fit", (content, facts))
    modality = _run("mapping-modality-fit", (content, facts))
    kinds = _run("mapping-resource-completeness", (content, facts))

    assert [c.severity for c in age] == [ConflictSeverity.MEDIUM]
    assert [c.severity for c in modality] == [ConflictSeverity.LOW]
    assert not modality[0].auto_fixable
    assert modality[0].suggested_fix
    assert [c.severity for c in kinds] == [ConflictSeverity.LOW]
    assert kinds[0].auto_fixable
    assert "video" in kinds[0].message


def test_resource_completeness_skips_unknown_inventory() -> None:
    assert _run("mapping-resource-completeness", (make_content(), make_class(kinds=None))) == []


def test_engine_skips_disabled_rules_and_keeps_rule_order() -> None:
    content = make_content(
        units=[make_unit("u1", duration=59, resources=[]), make_unit("u2", duration=59, resources=[])],
        total_hours=100,
    )
    rules = [RULES["resource-minimums"], RULES["hours-consistency"]]

    conflicts = engine.evaluate(content, rules)
    assert [c.rule_id for c in conflicts] == ["resource-minimums", "resource-minimums", "hours-consistency"]

    disabled = [rules[0].model_copy(update={"enabled": False}), rules[1]]
    assert [c.rule_id for c in engine.evaluate(content, disabled)] == ["hours-consistency"]


def test_engine_skips_mapping_rules_without_class() -> None:
    content = make_content(level="C1")
    assert engine.evaluate(content, [RULES["mapping-level-match"]]) == []


def test_engine_does_not_mutate_rules() -> None:
    rules = list(DEFAULT_RULES)
    before = [rule.model_dump() for rule in rules]
    engine.evaluate((make_content(), make_class(level="C2")), rules)
    assert [rule.model_dump() for rule in rules] == before


def test_unknown_check_raises_key_error() -> None:
    rule = ValidationRule(id="custom", category=RuleCategory.CONTENT, check="nope")
    with pytest.raises(KeyError):
        engine.evaluate(make_content(), [rule])
    with pytest.raises(KeyError):
        engine.validate_rules([rule])


def test_rule_can_point_at_registered_check() -> None:
    rule = ValidationRule(
        id="strict-hours",
        category=RuleCategory.CONTENT,
        check="hours-consistency",
        config={"tolerance": 1},
    )
    conflicts = engine.evaluate(make_content(unit_hours=(51, 51), total_hours=100), [rule])
    assert [c.rule_id for c in conflicts] == ["strict-hours"]


def test_bad_subject_raises_type_error() -> None:
    with pytest.raises(TypeError):
        engine.evaluate({"level": "B1"}, list(DEFAULT_RULES))


def test_registry_rejects_duplicates() -> None:
    registry = RuleRegistry()
    binding = CheckBinding("hours-consistency", check_hours_consistency, "hours")
    registry.register(binding)
    with pytest.raises(ValueError):
        registry.register(binding)
    assert "hours-consistency" in registry
    assert registry.keys() == ["hours-consistency"]


def test_default_registry_covers_default_rules() -> None:
    registry = default_registry()
    assert set(registry.keys()) == set(RULES)
    assert registry.readiness_check_for(RULES["broken-link-detection"]) == "brokenLinks"
    assert registry.readiness_check_for(RULES["mapping-age-fit"]) is None
