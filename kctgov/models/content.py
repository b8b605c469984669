"""Immutable, explicitly versioned curriculum content snapshots."""

from __future__ import annotations

from enum import Enum
from typing import Iterator, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kctgov.utils.levels import parse_age_group, parse_level_range


def _normalize_skills(value: Tuple[str, ...]) -> Tuple[str, ...]:
    return tuple(skill.strip().lower() for skill in value if skill and skill.strip())


class Modality(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    HYBRID = "hybrid"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    BROKEN = "broken"
    RESTRICTED = "restricted"
    EXPIRED = "expired"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class Rubric(_Frozen):
    id: str
    criteria: Tuple[str, ...] = ()


class Assessment(_Frozen):
    kind: str = Field(default="quiz", description="Assessment format, e.g. quiz, project, oral.")
    rubric: Optional[Rubric] = None


class Resource(_Frozen):
    id: str
    title: str
    url: Optional[str] = None
    kind: str = Field(default="document", description="Resource type such as video, audio, worksheet.")
    skills: Tuple[str, ...] = Field(default=(), description="Skills this resource is tagged with.")
    health_status: HealthStatus = HealthStatus.HEALTHY
    accessible: bool = True

    @field_validator("skills", mode="after")
    @classmethod
    def normalize_skills(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        return _normalize_skills(value)


class Unit(_Frozen):
    id: str
    title: str
    duration: float = Field(default=0.0, ge=0.0, description="Contact hours for the unit.")
    level: Optional[str] = Field(default=None, description="CEFR level this unit targets, if any.")
    objectives: Tuple[str, ...] = ()
    skills: Tuple[str, ...] = ()
    activities: Tuple[str, ...] = ()
    resources: Tuple[Resource, ...] = ()
    assessment: Optional[Assessment] = None

    @field_validator("skills", mode="after")
    @classmethod
    def normalize_skills(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        return _normalize_skills(value)

    @field_validator("level", mode="after")
    @classmethod
    def check_level(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            parse_level_range(value)
        return value


class Course(_Frozen):
    id: str
    title: str
    units: Tuple[Unit, ...] = ()


class ContentSnapshot(_Frozen):
    """Course/unit tree of a curriculum version.

    ``schema_version`` tags the layout so stored snapshots can be migrated
    explicitly instead of being read as free-form mappings.
    """

    schema_version: Literal[1] = 1
    level: str = Field(..., description="CEFR level or range, e.g. 'B1' or 'B2-C1'.")
    modality: Modality = Modality.HYBRID
    age_group: str = Field(default="adults", description="Label (adults, teens, kids, all) or range like '12-15'.")
    total_hours: float = Field(..., description="Declared total contact hours.")
    courses: Tuple[Course, ...] = ()

    @field_validator("level", mode="after")
    @classmethod
    def check_level(cls, value: str) -> str:
        parse_level_range(value)
        return value

    @field_validator("age_group", mode="after")
    @classmethod
    def check_age_group(cls, value: str) -> str:
        parse_age_group(value)
        return value

    def iter_units(self) -> Iterator[Unit]:
        for course in self.courses:
            yield from course.units

    def iter_resources(self) -> Iterator[Tuple[Unit, Resource]]:
        for unit in self.iter_units():
            for resource in unit.resources:
                yield unit, resource

    @property
    def unit_hours(self) -> float:
        return sum(unit.duration for unit in self.iter_units())

    @property
    def unit_count(self) -> int:
        return sum(len(course.units) for course in self.courses)

    def resource_kinds(self) -> List[str]:
        kinds: List[str] = []
        for _, resource in self.iter_resources():
            if resource.kind not in kinds:
                kinds.append(resource.kind)
        return kinds


__all__ = [
    "Assessment",
    "ContentSnapshot",
    "Course",
    "HealthStatus",
    "Modality",
    "Resource",
    "Rubric",
    "Unit",
]
