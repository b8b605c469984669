"""Typed records shared by the governance services."""

from .content import Assessment, ContentSnapshot, Course, HealthStatus, Modality, Resource, Rubric, Unit
from .mapping import (
    AppliedVersionRef,
    ClassAppliedVersion,
    ClassFacts,
    MappingValidationReport,
    OverrideRecord,
    RiskLevel,
)
from .rollout import PlanStatus, RolloutPlan, RolloutScope, TargetRecord, TargetState
from .rules import Conflict, ConflictSeverity, ConflictType, RuleCategory, RuleSeverity, ValidationRule
from .versions import Comment, CurriculumVersion, ReviewDecision, VersionDiff, VersionState, VersionStats

__all__ = [
    "AppliedVersionRef",
    "Assessment",
    "ClassAppliedVersion",
    "ClassFacts",
    "Comment",
    "Conflict",
    "ConflictSeverity",
    "ConflictType",
    "ContentSnapshot",
    "Course",
    "CurriculumVersion",
    "HealthStatus",
    "MappingValidationReport",
    "Modality",
    "OverrideRecord",
    "PlanStatus",
    "Resource",
    "ReviewDecision",
    "RiskLevel",
    "RolloutPlan",
    "RolloutScope",
    "Rubric",
    "RuleCategory",
    "RuleSeverity",
    "TargetRecord",
    "TargetState",
    "Unit",
    "ValidationRule",
    "VersionDiff",
    "VersionState",
    "VersionStats",
]
