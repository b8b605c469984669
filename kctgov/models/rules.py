"""Validation rule definitions and the conflicts they produce."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RuleCategory(str, Enum):
    CONTENT = "content"
    PUBLISH = "publish"
    MAPPING = "mapping"
    EXPORT = "export"


class RuleSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ConflictSeverity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ConflictType(str, Enum):
    HOURS = "hours"
    LEVEL = "level"
    AGE = "age"
    MODALITY = "modality"
    RESOURCES = "resources"
    SKILLS = "skills"
    RUBRIC = "rubric"
    LINKS = "links"
    ACCESSIBILITY = "accessibility"


class ValidationRule(BaseModel):
    """Policy-owned rule. The engine reads rules, it never mutates them."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    category: RuleCategory
    severity: RuleSeverity = RuleSeverity.ERROR
    enabled: bool = True
    check: str = Field(default="", description="Registered check implementation; defaults to the rule id.")
    config: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("check", mode="after")
    @classmethod
    def strip_check(cls, value: str) -> str:
        return value.strip()

    @property
    def check_key(self) -> str:
        return self.check or self.id

    def option(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)


Value = Union[str, int, float, None]


class Conflict(BaseModel):
    """A single rule-violation finding. Recomputed on demand, never authoritative."""

    model_config = ConfigDict(frozen=True)

    type: ConflictType
    severity: ConflictSeverity
    message: str
    current_value: Value = None
    required_value: Value = None
    suggested_fix: Optional[str] = None
    auto_fixable: bool = False
    rule_id: str
    rule_severity: RuleSeverity = RuleSeverity.ERROR
    class_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.rule_severity == RuleSeverity.ERROR


__all__ = [
    "Conflict",
    "ConflictSeverity",
    "ConflictType",
    "RuleCategory",
    "RuleSeverity",
    "ValidationRule",
]
