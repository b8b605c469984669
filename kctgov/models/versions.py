"""Curriculum version records and review bookkeeping."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, FrozenSet, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .content import ContentSnapshot

VERSION_LABEL_PATTERN = re.compile(r"^v(?P<major>\d+)\.(?P<minor>\d+)$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VersionState(str, Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class Comment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    author: str
    text: str
    created_at: datetime = Field(default_factory=_utcnow)
    resolved: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None


class ReviewDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    reviewer: str
    decision: Literal["approve", "reject"]
    comment: Optional[str] = None
    decided_at: datetime = Field(default_factory=_utcnow)


class CurriculumVersion(BaseModel):
    """One reviewed snapshot of a KCT.

    Records are replaced, never edited in place: the lifecycle service builds
    an updated copy with ``model_copy`` and persists it with the revision it
    read, so a concurrent writer is detected instead of overwritten.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    framework_id: str
    version_label: str
    state: VersionState = VersionState.DRAFT
    created_by: str
    created_at: datetime = Field(default_factory=_utcnow)
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    changelog: str = ""
    reviewers: FrozenSet[str] = frozenset()
    comments: Tuple[Comment, ...] = ()
    decisions: Tuple[ReviewDecision, ...] = ()
    content: ContentSnapshot
    revision: int = 0

    @field_validator("version_label", mode="after")
    @classmethod
    def check_label(cls, value: str) -> str:
        if not VERSION_LABEL_PATTERN.match(value):
            raise ValueError(f"version_label must look like 'v1.2', got {value!r}")
        return value

    @property
    def label_key(self) -> Tuple[int, int]:
        return parse_version_label(self.version_label)

    def comment(self, comment_id: str) -> Optional[Comment]:
        return next((item for item in self.comments if item.id == comment_id), None)

    def open_comments(self) -> List[Comment]:
        return [item for item in self.comments if not item.resolved]


class VersionDiff(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["added", "removed", "modified"]
    field: str
    old_value: Any = None
    new_value: Any = None
    description: str


class VersionStats(BaseModel):
    total_versions: int = 0
    published_versions: int = 0
    draft_versions: int = 0
    last_published_at: Optional[datetime] = None


def parse_version_label(label: str) -> Tuple[int, int]:
    match = VERSION_LABEL_PATTERN.match(label or "")
    if not match:
        raise ValueError(f"Invalid version label {label!r}; expected format 'v<major>.<minor>'")
    return int(match.group("major")), int(match.group("minor"))


__all__ = [
    "Comment",
    "CurriculumVersion",
    "ReviewDecision",
    "VERSION_LABEL_PATTERN",
    "VersionDiff",
    "VersionState",
    "VersionStats",
    "parse_version_label",
]
