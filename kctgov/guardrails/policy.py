"""Policy store: tunable thresholds plus the rule list the engine consumes."""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence

from kctgov.core.audit import AuditLogger
from kctgov.core.config import PolicyConfig, merge_policy
from kctgov.core.errors import OverrideNotAllowed
from kctgov.models.mapping import MappingValidationReport, OverrideRecord
from kctgov.models.rules import RuleCategory, RuleSeverity, ValidationRule

from .rules import RuleRegistry, default_registry

LOGGER = logging.getLogger(__name__)

DEFAULT_RULES: tuple[ValidationRule, ...] = (
    ValidationRule(
        id="hours-consistency",
        name="Hours Consistency",
        description="Total unit hours must match course hours within tolerance",
        category=RuleCategory.CONTENT,
        severity=RuleSeverity.ERROR,
        config={"tolerance": 5},
    ),
    ValidationRule(
        id="cefr-minimums",
        name="CEFR Level Minimums",
        description="Each CEFR level must meet minimum skill coverage requirements",
        category=RuleCategory.CONTENT,
        severity=RuleSeverity.WARNING,
        config={"min_coverage": 80},
    ),
    ValidationRule(
        id="rubric-requirements",
        name="Rubric Requirements",
        description="All assessed units must have associated rubrics",
        category=RuleCategory.PUBLISH,
        severity=RuleSeverity.ERROR,
    ),
    ValidationRule(
        id="resource-minimums",
        name="Resource Minimums",
        description="Each unit must have at least one resource per skill",
        category=RuleCategory.CONTENT,
        severity=RuleSeverity.WARNING,
        config={"min_resources_per_skill": 1},
    ),
    ValidationRule(
        id="broken-link-detection",
        name="Broken Link Detection",
        description="Detect and flag broken or restricted resource links",
        category=RuleCategory.CONTENT,
        severity=RuleSeverity.ERROR,
    ),
    ValidationRule(
        id="accessibility-compliance",
        name="Accessibility Compliance",
        description="Resources must meet accessibility requirements",
        category=RuleCategory.PUBLISH,
        severity=RuleSeverity.ERROR,
    ),
    ValidationRule(
        id="mapping-hours-fit",
        name="Class Hours Fit",
        description="Class calendar hours must match the KCT hours within tolerance",
        category=RuleCategory.MAPPING,
        severity=RuleSeverity.WARNING,
        config={"tolerance": 5},
    ),
    ValidationRule(
        id="mapping-level-match",
        name="CEFR Level Match",
        description="Class level must fall inside the KCT level range",
        category=RuleCategory.MAPPING,
        severity=RuleSeverity.ERROR,
    ),
    ValidationRule(
        id="mapping-age-fit",
        name="Age Group Fit",
        description="Class age group must fall inside the KCT target group",
        category=RuleCategory.MAPPING,
        severity=RuleSeverity.WARNING,
    ),
    ValidationRule(
        id="mapping-modality-fit",
        name="Delivery Modality Fit",
        description="Class modality should match the KCT delivery design",
        category=RuleCategory.MAPPING,
        severity=RuleSeverity.INFO,
    ),
    ValidationRule(
        id="mapping-resource-completeness",
        name="Resource Completeness",
        description="Class campus must provide the resource types the KCT uses",
        category=RuleCategory.MAPPING,
        severity=RuleSeverity.INFO,
    ),
)

_HOURS_CHECKS = {"hours-consistency", "mapping-hours-fit"}


def _categories(category: RuleCategory | str | Iterable[RuleCategory | str] | None) -> Optional[set[RuleCategory]]:
    if category is None:
        return None
    if isinstance(category, (RuleCategory, str)):
        return {RuleCategory(category)}
    return {RuleCategory(item) for item in category}


def apply_policy(rule: ValidationRule, policy: PolicyConfig) -> ValidationRule:
    """Project the policy tunables onto a single rule."""
    key = rule.check_key
    config = copy.deepcopy(rule.config)
    enabled = rule.enabled
    if key in _HOURS_CHECKS:
        config["tolerance"] = policy.hours_tolerance
    elif key == "rubric-requirements":
        enabled = enabled and policy.require_rubric_for_assessed_units
    elif key == "resource-minimums":
        config["require_resources_for_all_units"] = policy.require_resources_for_all_units
    elif key == "accessibility-compliance":
        enabled = enabled and policy.require_accessibility_compliance
    elif key == "mapping-level-match":
        config["strict"] = policy.strict_level_matching
    if config == rule.config and enabled == rule.enabled:
        return rule.model_copy(deep=True)
    return rule.model_copy(update={"config": config, "enabled": enabled})


class PolicyStore:
    """Owns the policy tunables and validation rules.

    The rule engine only ever receives copies through :meth:`effective_rules`;
    the store is changed exclusively through the explicit update methods, each
    of which emits a ``PolicyUpdated`` audit event.
    """

    def __init__(
        self,
        policy: PolicyConfig | None = None,
        rules: Sequence[ValidationRule] | None = None,
        *,
        audit: AuditLogger | None = None,
        registry: RuleRegistry | None = None,
    ) -> None:
        self.registry = registry or default_registry()
        self.audit = audit
        self._lock = threading.RLock()
        self._policy = policy or PolicyConfig()
        self._rules: List[ValidationRule] = self._checked(rules if rules is not None else DEFAULT_RULES)
        self._overrides: List[OverrideRecord] = []

    def _checked(self, rules: Iterable[ValidationRule]) -> List[ValidationRule]:
        checked: List[ValidationRule] = []
        seen: set[str] = set()
        for rule in rules:
            if rule.id in seen:
                raise ValueError(f"Duplicate rule id {rule.id}")
            self.registry.get(rule.check_key)
            seen.add(rule.id)
            checked.append(rule.model_copy(deep=True))
        return checked

    def _emit(self, message: str, updated_by: str, **payload: Any) -> None:
        LOGGER.info("%s (by %s)", message, updated_by)
        if self.audit is not None:
            self.audit.emit("PolicyUpdated", message, actor=updated_by, **payload)

    # ------------------------------------------------------------------ reads

    @property
    def policy(self) -> PolicyConfig:
        with self._lock:
            return self._policy.model_copy()

    def rules(self, category: RuleCategory | str | Iterable[RuleCategory | str] | None = None) -> List[ValidationRule]:
        wanted = _categories(category)
        with self._lock:
            return [rule.model_copy(deep=True) for rule in self._rules if wanted is None or rule.category in wanted]

    def rule(self, rule_id: str) -> ValidationRule:
        with self._lock:
            for rule in self._rules:
                if rule.id == rule_id:
                    return rule.model_copy(deep=True)
        raise KeyError(f"Unknown rule {rule_id!r}")

    def effective_rules(
        self, category: RuleCategory | str | Iterable[RuleCategory | str] | None = None
    ) -> List[ValidationRule]:
        """Rules with the current policy tunables applied, in declaration order."""
        with self._lock:
            policy = self._policy
            rules = list(self._rules)
        wanted = _categories(category)
        return [apply_policy(rule, policy) for rule in rules if wanted is None or rule.category in wanted]

    def overrides(self, class_id: str | None = None) -> List[OverrideRecord]:
        with self._lock:
            return [item for item in self._overrides if class_id is None or item.class_id == class_id]

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "policy": self._policy.model_dump(mode="json"),
                "rules": [rule.model_dump(mode="json") for rule in self._rules],
            }

    # ----------------------------------------------------------------- writes

    def update_policy(self, updated_by: str, **changes: Any) -> PolicyConfig:
        """Apply tunable changes; unknown keys raise ``ValueError``."""
        with self._lock:
            updated = merge_policy(self._policy, changes)
            self._policy = updated
        self._emit(f"Policy updated: {', '.join(sorted(changes))}", updated_by, changes=changes)
        return updated.model_copy()

    def update_rule(
        self,
        rule_id: str,
        updated_by: str,
        *,
        enabled: bool | None = None,
        severity: RuleSeverity | str | None = None,
        config: Dict[str, Any] | None = None,
    ) -> ValidationRule:
        changes: Dict[str, Any] = {}
        if enabled is not None:
            changes["enabled"] = enabled
        if severity is not None:
            changes["severity"] = RuleSeverity(severity)
        with self._lock:
            index = next((i for i, rule in enumerate(self._rules) if rule.id == rule_id), None)
            if index is None:
                raise KeyError(f"Unknown rule {rule_id!r}")
            current = self._rules[index]
            if config is not None:
                changes["config"] = {**current.config, **config}
            updated = current.model_copy(update=changes)
            self._rules[index] = updated
        self._emit(
            f"Rule {rule_id} updated",
            updated_by,
            rule_id=rule_id,
            changes={key: value.value if isinstance(value, RuleSeverity) else value for key, value in changes.items()},
        )
        return updated

    def replace_rules(self, rules: Sequence[ValidationRule], updated_by: str) -> List[ValidationRule]:
        checked = self._checked(rules)
        with self._lock:
            self._rules = checked
        self._emit(f"Rule set replaced ({len(checked)} rules)", updated_by, rule_ids=[rule.id for rule in checked])
        return list(checked)

    def record_override(
        self,
        class_id: str,
        kct_version_id: str,
        justification: str,
        actor: str,
        report: MappingValidationReport | None = None,
    ) -> OverrideRecord:
        """Record an explicit apply-despite-conflicts decision.

        The engine never reads overrides; callers hand the returned record to
        ``ClassVersionApplier.apply`` to bypass a blocking report.
        """
        if not self.policy.allow_override_with_justification:
            raise OverrideNotAllowed("Overrides are disabled by policy", class_id=class_id)
        if not justification or not justification.strip():
            raise OverrideNotAllowed("An override requires a justification", class_id=class_id)
        record = OverrideRecord(
            id=f"ovr-{uuid.uuid4().hex[:12]}",
            class_id=class_id,
            kct_version_id=kct_version_id,
            justification=justification.strip(),
            actor=actor,
            risk_level=report.risk_level if report is not None else None,
        )
        with self._lock:
            self._overrides.append(record)
        LOGGER.warning("Override %s recorded for class %s by %s", record.id, class_id, actor)
        if self.audit is not None:
            self.audit.emit(
                "OverrideRecorded",
                f"Override recorded for class {class_id} on version {kct_version_id}",
                actor=actor,
                override_id=record.id,
                class_id=class_id,
                kct_version_id=kct_version_id,
                justification=record.justification,
                risk_level=record.risk_level.value if record.risk_level else None,
            )
        return record


__all__ = ["DEFAULT_RULES", "PolicyStore", "apply_policy"]
