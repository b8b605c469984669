"""Rule engine, readiness and mapping guardrails."""

from .mapping import MappingValidator, mapping_status, score_risk, validate_mapping
from .policy import DEFAULT_RULES, PolicyStore, apply_policy
from .readiness import READINESS_CHECKS, ReadinessReport, assess_readiness
from .rules import CheckBinding, RuleEngine, RuleRegistry, default_registry, evaluate

__all__ = [
    "CheckBinding",
    "DEFAULT_RULES",
    "MappingValidator",
    "PolicyStore",
    "READINESS_CHECKS",
    "ReadinessReport",
    "RuleEngine",
    "RuleRegistry",
    "apply_policy",
    "assess_readiness",
    "default_registry",
    "evaluate",
    "mapping_status",
    "score_risk",
    "validate_mapping",
]
