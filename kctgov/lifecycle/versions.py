"""Curriculum version state machine with guarded, serialized transitions."""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, Iterator, List, Literal, Optional, Tuple

from kctgov.core.audit import AuditLogger
from kctgov.core.errors import (
    CommentsClosed,
    ConcurrentModification,
    DuplicateVersion,
    ImmutableContent,
    InvalidTransition,
    NotFound,
    PublishBlocked,
)
from kctgov.guardrails.policy import PolicyStore
from kctgov.guardrails.readiness import READINESS_CATEGORIES, ReadinessReport, assess_readiness
from kctgov.guardrails.rules import RuleEngine
from kctgov.models.content import ContentSnapshot
from kctgov.models.versions import (
    Comment,
    CurriculumVersion,
    ReviewDecision,
    VersionDiff,
    VersionState,
    VersionStats,
    parse_version_label,
)
from kctgov.store.base import CurriculumRepository

from .diff import diff_versions

LOGGER = logging.getLogger(__name__)

TRANSITIONS: Dict[Tuple[VersionState, VersionState], str] = {
    (VersionState.DRAFT, VersionState.PENDING_REVIEW): "submit",
    (VersionState.PENDING_REVIEW, VersionState.APPROVED): "approve",
    (VersionState.PENDING_REVIEW, VersionState.DRAFT): "reject",
    (VersionState.APPROVED, VersionState.PUBLISHED): "publish",
    (VersionState.PUBLISHED, VersionState.ARCHIVED): "archive",
    (VersionState.ARCHIVED, VersionState.PUBLISHED): "rollback",
}

COMMENTABLE_STATES = frozenset({VersionState.PENDING_REVIEW, VersionState.APPROVED})


def check_transition(version: CurriculumVersion, requested: VersionState, *, action: str | None = None) -> str:
    """Return the action name for ``version.state -> requested`` or raise ``InvalidTransition``."""
    name = TRANSITIONS.get((version.state, requested))
    if name is None or (action is not None and name != action):
        raise InvalidTransition(
            version.state.value,
            requested.value,
            subject=f"version {version.id}",
        )
    return name


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VersionLifecycle:
    """Drives versions through draft, review, publish, archive and rollback.

    Transitions for one framework are serialized by a lock acquired with a
    timeout; repository writes additionally carry the revision that was read,
    so a writer bypassing this service is still detected.
    """

    def __init__(
        self,
        repository: CurriculumRepository,
        policy: PolicyStore,
        *,
        audit: AuditLogger | None = None,
        engine: RuleEngine | None = None,
        lock_timeout: float = 0.5,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.policy = policy
        self.audit = audit
        self.engine = engine
        self.lock_timeout = lock_timeout
        self._clock = clock or _utcnow
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ----------------------------------------------------------------- plumbing

    @contextmanager
    def _framework_lock(self, framework_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(framework_id, threading.Lock())
        if not lock.acquire(timeout=self.lock_timeout):
            raise ConcurrentModification(f"Framework {framework_id}")
        try:
            yield
        finally:
            lock.release()

    def _save(self, *versions: CurriculumVersion) -> List[CurriculumVersion]:
        return self.repository.save_versions(list(versions))

    def _emit(self, event: str, message: str, actor: str, **payload) -> None:
        if self.audit is not None:
            self.audit.emit(event, message, actor=actor, **payload)

    def _transitioned(self, before: CurriculumVersion, after: CurriculumVersion, actor: str) -> None:
        LOGGER.info(
            "Version %s (%s) %s -> %s by %s",
            after.id,
            after.version_label,
            before.state.value,
            after.state.value,
            actor,
        )
        self._emit(
            "VersionTransitioned",
            f"{after.version_label} moved from {before.state.value} to {after.state.value}",
            actor,
            version_id=after.id,
            framework_id=after.framework_id,
            from_state=before.state.value,
            to_state=after.state.value,
        )

    # -------------------------------------------------------------------- reads

    def get(self, version_id: str) -> CurriculumVersion:
        return self.repository.get_version(version_id)

    def history(self, framework_id: str) -> List[CurriculumVersion]:
        """All versions of a framework, newest label first."""
        return list(reversed(self.repository.list_versions(framework_id)))

    def published(self, framework_id: str) -> Optional[CurriculumVersion]:
        return next(
            (v for v in self.repository.list_versions(framework_id) if v.state == VersionState.PUBLISHED),
            None,
        )

    def stats(self, framework_id: str) -> VersionStats:
        versions = self.repository.list_versions(framework_id)
        published_at = [v.published_at for v in versions if v.published_at is not None]
        return VersionStats(
            total_versions=len(versions),
            published_versions=sum(1 for v in versions if v.state == VersionState.PUBLISHED),
            draft_versions=sum(1 for v in versions if v.state == VersionState.DRAFT),
            last_published_at=max(published_at) if published_at else None,
        )

    def stale_drafts(self, now: datetime | None = None, *, framework_id: str | None = None) -> List[CurriculumVersion]:
        """Drafts older than the policy's ``max_draft_age_days``."""
        cutoff = (now or self._clock()) - timedelta(days=self.policy.policy.max_draft_age_days)
        return [
            version
            for version in self.repository.list_versions(framework_id)
            if version.state == VersionState.DRAFT and version.created_at < cutoff
        ]

    def readiness(self, version: CurriculumVersion | str) -> ReadinessReport:
        if isinstance(version, str):
            version = self.get(version)
        rules = self.policy.effective_rules(READINESS_CATEGORIES)
        return assess_readiness(version, rules, engine=self.engine)

    def diff(self, current: CurriculumVersion, previous: CurriculumVersion | None) -> List[VersionDiff]:
        return diff_versions(current, previous)

    def previous_version(self, version: CurriculumVersion) -> Optional[CurriculumVersion]:
        earlier = [v for v in self.repository.list_versions(version.framework_id) if v.label_key < version.label_key]
        return earlier[-1] if earlier else None

    def diff_with_previous(self, version_id: str) -> List[VersionDiff]:
        version = self.get(version_id)
        return diff_versions(version, self.previous_version(version))

    # ----------------------------------------------------------------- creation

    def create_version(
        self,
        framework_id: str,
        version_label: str,
        content: ContentSnapshot,
        created_by: str,
        changelog: str = "",
        *,
        version_id: str | None = None,
    ) -> CurriculumVersion:
        key = parse_version_label(version_label)
        with self._framework_lock(framework_id):
            existing = self.repository.list_versions(framework_id)
            if any(v.version_label == version_label or v.label_key == key for v in existing):
                raise DuplicateVersion(framework_id, version_label)
            if existing and existing[-1].label_key > key:
                raise ValueError(
                    f"Version label {version_label} must be greater than {existing[-1].version_label}"
                )
            version = CurriculumVersion(
                id=version_id or f"ver-{uuid.uuid4().hex[:12]}",
                framework_id=framework_id,
                version_label=version_label,
                created_by=created_by,
                created_at=self._clock(),
                changelog=changelog,
                content=content,
            )
            version = self.repository.add_version(version)
        LOGGER.info("Created %s %s for framework %s", version.id, version_label, framework_id)
        self._emit(
            "VersionCreated",
            f"{version_label} created for {framework_id}",
            created_by,
            version_id=version.id,
            framework_id=framework_id,
        )
        return version

    def revise_content(self, version_id: str, content: ContentSnapshot, actor: str) -> CurriculumVersion:
        version = self.get(version_id)
        with self._framework_lock(version.framework_id):
            version = self.get(version_id)
            if version.state != VersionState.DRAFT:
                raise ImmutableContent(version_id, version.state.value)
            (saved,) = self._save(version.model_copy(update={"content": content}))
        LOGGER.info("Content of %s revised by %s", version_id, actor)
        return saved

    # ------------------------------------------------------------------ review

    def submit_for_review(
        self,
        version_id: str,
        submitted_by: str,
        reviewers: Iterable[str] = (),
    ) -> CurriculumVersion:
        version = self.get(version_id)
        with self._framework_lock(version.framework_id):
            version = self.get(version_id)
            check_transition(version, VersionState.PENDING_REVIEW)
            if not version.content.courses:
                raise InvalidTransition(
                    version.state.value,
                    VersionState.PENDING_REVIEW.value,
                    subject=f"version {version.id}",
                    reason="content has no courses",
                )
            updated = version.model_copy(
                update={
                    "state": VersionState.PENDING_REVIEW,
                    "reviewers": version.reviewers | frozenset(reviewers),
                }
            )
            (saved,) = self._save(updated)
        self._transitioned(version, saved, submitted_by)
        return saved

    def record_decision(
        self,
        version_id: str,
        reviewer: str,
        decision: Literal["approve", "reject"],
        comment: str | None = None,
    ) -> CurriculumVersion:
        """Approve (pending_review -> approved) or reject (pending_review -> draft).

        A rejection always appends a comment so the author sees why.
        """
        if decision not in ("approve", "reject"):
            raise ValueError(f"Unknown review decision {decision!r}")
        version = self.get(version_id)
        with self._framework_lock(version.framework_id):
            version = self.get(version_id)
            now = self._clock()
            record = ReviewDecision(reviewer=reviewer, decision=decision, comment=comment, decided_at=now)
            if decision == "approve":
                check_transition(version, VersionState.APPROVED)
                update = {
                    "state": VersionState.APPROVED,
                    "approved_by": reviewer,
                    "approved_at": now,
                    "decisions": version.decisions + (record,),
                }
            else:
                check_transition(version, VersionState.DRAFT)
                rejection = Comment(
                    id=f"c-{uuid.uuid4().hex[:8]}",
                    author=reviewer,
                    text=comment or "Changes requested",
                    created_at=now,
                )
                update = {
                    "state": VersionState.DRAFT,
                    "decisions": version.decisions + (record,),
                    "comments": version.comments + (rejection,),
                }
            (saved,) = self._save(version.model_copy(update=update))
        self._transitioned(version, saved, reviewer)
        return saved

    def approve(self, version_id: str, reviewer: str, comment: str | None = None) -> CurriculumVersion:
        return self.record_decision(version_id, reviewer, "approve", comment)

    def reject(self, version_id: str, reviewer: str, comment: str | None = None) -> CurriculumVersion:
        return self.record_decision(version_id, reviewer, "reject", comment)

    def add_comment(self, version_id: str, author: str, text: str) -> Comment:
        if not text or not text.strip():
            raise ValueError("Comment text must not be empty")
        version = self.get(version_id)
        with self._framework_lock(version.framework_id):
            version = self.get(version_id)
            if version.state not in COMMENTABLE_STATES:
                raise CommentsClosed(version_id, version.state.value)
            comment = Comment(id=f"c-{uuid.uuid4().hex[:8]}", author=author, text=text.strip(), created_at=self._clock())
            self._save(version.model_copy(update={"comments": version.comments + (comment,)}))
        self._emit(
            "CommentAdded",
            f"{author} commented on {version.version_label}",
            author,
            version_id=version_id,
            comment_id=comment.id,
        )
        return comment

    def set_comment_resolved(self, version_id: str, comment_id: str, resolved: bool, actor: str) -> Comment:
        version = self.get(version_id)
        with self._framework_lock(version.framework_id):
            version = self.get(version_id)
            current = version.comment(comment_id)
            if current is None:
                raise NotFound("Comment", comment_id)
            if resolved:
                updated = current.model_copy(update={"resolved": True, "resolved_by": actor, "resolved_at": self._clock()})
            else:
                updated = current.model_copy(update={"resolved": False, "resolved_by": None, "resolved_at": None})
            comments = tuple(updated if item.id == comment_id else item for item in version.comments)
            self._save(version.model_copy(update={"comments": comments}))
        self._emit(
            "CommentResolved",
            f"Comment {comment_id} {'resolved' if resolved else 'reopened'}",
            actor,
            version_id=version_id,
            comment_id=comment_id,
            resolved=resolved,
        )
        return updated

    # ------------------------------------------------------------- publication

    def _guard_readiness(self, version: CurriculumVersion) -> None:
        report = self.readiness(version)
        if not report.ready:
            LOGGER.warning("Publish of %s blocked: %s", version.id, "; ".join(report.blocking_issues))
            raise PublishBlocked(version.id, report.blocking_issues)

    def _promote(self, version: CurriculumVersion, actor: str) -> CurriculumVersion:
        """Publish ``version`` and archive the framework's current published version in one write."""
        now = self._clock()
        current = self.published(version.framework_id)
        writes: List[CurriculumVersion] = []
        if current is not None and current.id != version.id:
            writes.append(current.model_copy(update={"state": VersionState.ARCHIVED, "archived_at": now}))
        writes.append(version.model_copy(update={"state": VersionState.PUBLISHED, "published_at": now}))
        saved = self._save(*writes)
        if current is not None and current.id != version.id:
            self._transitioned(current, saved[0], actor)
        self._transitioned(version, saved[-1], actor)
        return saved[-1]

    def publish(self, version_id: str, published_by: str) -> CurriculumVersion:
        version = self.get(version_id)
        with self._framework_lock(version.framework_id):
            version = self.get(version_id)
            check_transition(version, VersionState.PUBLISHED, action="publish")
            self._guard_readiness(version)
            return self._promote(version, published_by)

    def rollback(self, framework_id: str, target_version_id: str, actor: str) -> CurriculumVersion:
        """Re-publish an archived version, re-validating it like a fresh publish."""
        with self._framework_lock(framework_id):
            target = self.get(target_version_id)
            if target.framework_id != framework_id:
                raise ValueError(f"Version {target_version_id} does not belong to framework {framework_id}")
            check_transition(target, VersionState.PUBLISHED, action="rollback")
            self._guard_readiness(target)
            return self._promote(target, actor)

    def archive(self, version_id: str, actor: str) -> CurriculumVersion:
        version = self.get(version_id)
        with self._framework_lock(version.framework_id):
            version = self.get(version_id)
            check_transition(version, VersionState.ARCHIVED)
            (saved,) = self._save(version.model_copy(update={"state": VersionState.ARCHIVED, "archived_at": self._clock()}))
        self._transitioned(version, saved, actor)
        return saved


__all__ = ["COMMENTABLE_STATES", "TRANSITIONS", "VersionLifecycle", "check_transition"]
