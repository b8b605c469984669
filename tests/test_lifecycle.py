from __future__ import annotations

import random
from datetime import timedelta
from typing import List

import pytest

from kctgov.core.audit import AuditLogger
from kctgov.core.errors import (
    CommentsClosed,
    ConcurrentModification,
    DuplicateVersion,
    ImmutableContent,
    InvalidTransition,
    PublishBlocked,
)
from kctgov.guardrails.policy import PolicyStore
from kctgov.lifecycle.versions import TRANSITIONS, VersionLifecycle
from kctgov.models.content import ContentSnapshot
from kctgov.models.versions import CurriculumVersion, VersionState
from kctgov.store.memory import MemoryRepository
from tests.mocks.curriculum import SteppingClock, make_content, make_unit

FRAMEWORK = "kct-general-english"


@pytest.fixture()
def audit() -> AuditLogger:
    return AuditLogger()


@pytest.fixture()
def repo() -> MemoryRepository:
    return MemoryRepository()


@pytest.fixture()
def lifecycle(repo: MemoryRepository, audit: AuditLogger) -> VersionLifecycle:
    return VersionLifecycle(repo, PolicyStore(audit=audit), audit=audit, lock_timeout=0.05, clock=SteppingClock())


def _approved(lifecycle: VersionLifecycle, label: str, content: ContentSnapshot | None = None) -> CurriculumVersion:
    version = lifecycle.create_version(FRAMEWORK, label, content or make_content(), "author")
    lifecycle.submit_for_review(version.id, "author", ["reviewer"])
    return lifecycle.approve(version.id, "reviewer")


def _published(lifecycle: VersionLifecycle, label: str, content: ContentSnapshot | None = None) -> CurriculumVersion:
    return lifecycle.publish(_approved(lifecycle, label, content).id, "publisher")


def _published_count(lifecycle: VersionLifecycle) -> int:
    return sum(1 for version in lifecycle.history(FRAMEWORK) if version.state == VersionState.PUBLISHED)


def test_review_flow_records_approval(lifecycle: VersionLifecycle, audit: AuditLogger) -> None:
    version = lifecycle.create_version(FRAMEWORK, "v1.0", make_content(), "author", "Initial release")
    assert version.state == VersionState.DRAFT
    assert version.id.startswith("ver-")

    pending = lifecycle.submit_for_review(version.id, "author", ["rev-a", "rev-b"])
    assert pending.state == VersionState.PENDING_REVIEW
    assert pending.reviewers == frozenset({"rev-a", "rev-b"})

    approved = lifecycle.approve(pending.id, "rev-a", "Looks good")
    assert approved.state == VersionState.APPROVED
    assert approved.approved_by == "rev-a"
    assert approved.approved_at is not None
    assert [d.decision for d in approved.decisions] == ["approve"]

    moves = [(e.payload["from_state"], e.payload["to_state"]) for e in audit.events("VersionTransitioned")]
    assert moves == [("draft", "pending_review"), ("pending_review", "approved")]
    assert len(audit.events("VersionCreated")) == 1


def test_reject_returns_to_draft_with_comment(lifecycle: VersionLifecycle) -> None:
    version = lifecycle.create_version(FRAMEWORK, "v1.0", make_content(), "author")
    lifecycle.submit_for_review(version.id, "author")

    rejected = lifecycle.reject(version.id, "reviewer")

    assert rejected.state == VersionState.DRAFT
    assert rejected.comments[-1].text == "Changes requested"
    assert rejected.comments[-1].author == "reviewer"
    assert rejected.decisions[-1].decision == "reject"
    # content can be revised again once back in draft
    revised = lifecycle.revise_content(version.id, make_content(unit_hours=(10, 10, 10)), "author")
    assert revised.content.unit_count == 3


def test_submit_requires_courses(lifecycle: VersionLifecycle) -> None:
    empty = make_content().model_copy(update={"courses": ()})
    version = lifecycle.create_version(FRAMEWORK, "v1.0", empty, "author")
    with pytest.raises(InvalidTransition) as excinfo:
        lifecycle.submit_for_review(version.id, "author")
    assert "no courses" in str(excinfo.value)


def test_content_is_frozen_after_submission(lifecycle: VersionLifecycle) -> None:
    version = lifecycle.create_version(FRAMEWORK, "v1.0", make_content(), "author")
    lifecycle.submit_for_review(version.id, "author")
    with pytest.raises(ImmutableContent):
        lifecycle.revise_content(version.id, make_content(unit_hours=(1,)), "author")


def test_draft_cannot_jump_to_published(lifecycle: VersionLifecycle) -> None:
    version = lifecycle.create_version(FRAMEWORK, "v1.0", make_content(), "author")
    with pytest.raises(InvalidTransition):
        lifecycle.publish(version.id, "publisher")
    assert lifecycle.get(version.id).state == VersionState.DRAFT


def test_transition_table_is_explicit() -> None:
    assert (VersionState.DRAFT, VersionState.PUBLISHED) not in TRANSITIONS
    assert TRANSITIONS[(VersionState.ARCHIVED, VersionState.PUBLISHED)] == "rollback"


def test_publish_archives_previous_in_one_write(lifecycle: VersionLifecycle, repo: MemoryRepository) -> None:
    v11 = _published(lifecycle, "v1.1")
    v20 = _approved(lifecycle, "v2.0")

    writes: List[List[CurriculumVersion]] = []
    original = repo.save_versions

    def recording(versions):
        writes.append(list(versions))
        return original(versions)

    repo.save_versions = recording
    published = lifecycle.publish(v20.id, "publisher")

    assert published.state == VersionState.PUBLISHED
    assert lifecycle.get(v11.id).state == VersionState.ARCHIVED
    assert lifecycle.get(v11.id).archived_at is not None
    assert len(writes) == 1
    assert {(v.id, v.state) for v in writes[0]} == {
        (v11.id, VersionState.ARCHIVED),
        (v20.id, VersionState.PUBLISHED),
    }
    assert lifecycle.published(FRAMEWORK).id == v20.id


def test_publish_blocked_by_readiness(lifecycle: VersionLifecycle) -> None:
    version = _approved(lifecycle, "v1.2", make_content(unit_hours=(59, 59), total_hours=100))

    with pytest.raises(PublishBlocked) as excinfo:
        lifecycle.publish(version.id, "publisher")

    assert any("hours" in issue.lower() for issue in excinfo.value.blocking_issues)
    assert lifecycle.get(version.id).state == VersionState.APPROVED
    assert lifecycle.readiness(version.id).checks["hoursValidation"] is False


def test_failed_publish_keeps_current_published(lifecycle: VersionLifecycle) -> None:
    current = _published(lifecycle, "v1.0")
    broken = _approved(lifecycle, "v1.1", make_content(unit_hours=(10,), total_hours=40))
    with pytest.raises(PublishBlocked):
        lifecycle.publish(broken.id, "publisher")
    assert lifecycle.published(FRAMEWORK).id == current.id


def test_publish_gate_matches_readiness(lifecycle: VersionLifecycle) -> None:
    rng = random.Random(3)
    for minor in range(15):
        hours = [rng.choice((10, 20)) for _ in range(rng.randint(1, 3))]
        declared = sum(hours) * rng.choice((1.0, 1.02, 1.3))
        version = _approved(lifecycle, f"v1.{minor}", make_content(unit_hours=hours, total_hours=declared))
        ready = lifecycle.readiness(version).ready
        if ready:
            assert lifecycle.publish(version.id, "publisher").state == VersionState.PUBLISHED
        else:
            with pytest.raises(PublishBlocked):
                lifecycle.publish(version.id, "publisher")
        assert _published_count(lifecycle) <= 1


def test_rollback_republishes_archived_version(lifecycle: VersionLifecycle) -> None:
    v10 = _published(lifecycle, "v1.0")
    v11 = _published(lifecycle, "v1.1")

    restored = lifecycle.rollback(FRAMEWORK, v10.id, "publisher")

    assert restored.state == VersionState.PUBLISHED
    assert lifecycle.get(v11.id).state == VersionState.ARCHIVED
    assert _published_count(lifecycle) == 1

    with pytest.raises(InvalidTransition):
        lifecycle.rollback(FRAMEWORK, v10.id, "publisher")
    with pytest.raises(ValueError):
        lifecycle.rollback("other-framework", v11.id, "publisher")


def test_archive_published_version(lifecycle: VersionLifecycle) -> None:
    version = _published(lifecycle, "v1.0")
    archived = lifecycle.archive(version.id, "publisher")
    assert archived.state == VersionState.ARCHIVED
    assert lifecycle.published(FRAMEWORK) is None
    with pytest.raises(InvalidTransition):
        lifecycle.archive(version.id, "publisher")


def test_version_labels_strictly_increase(lifecycle: VersionLifecycle) -> None:
    lifecycle.create_version(FRAMEWORK, "v1.1", make_content(), "author")
    with pytest.raises(DuplicateVersion):
        lifecycle.create_version(FRAMEWORK, "v1.1", make_content(), "author")
    with pytest.raises(ValueError):
        lifecycle.create_version(FRAMEWORK, "v1.0", make_content(), "author")
    with pytest.raises(ValueError):
        lifecycle.create_version(FRAMEWORK, "1.2", make_content(), "author")
    lifecycle.create_version("another-kct", "v1.0", make_content(), "author")


def test_comments_only_during_review(lifecycle: VersionLifecycle, audit: AuditLogger) -> None:
    version = lifecycle.create_version(FRAMEWORK, "v1.0", make_content(), "author")
    with pytest.raises(CommentsClosed):
        lifecycle.add_comment(version.id, "reviewer", "Too early")

    lifecycle.submit_for_review(version.id, "author")
    comment = lifecycle.add_comment(version.id, "reviewer", "  Check unit 2 pacing ")
    assert comment.text == "Check unit 2 pacing"
    with pytest.raises(ValueError):
        lifecycle.add_comment(version.id, "reviewer", " ")

    resolved = lifecycle.set_comment_resolved(version.id, comment.id, True, "author")
    assert resolved.resolved and resolved.resolved_by == "author"
    reopened = lifecycle.set_comment_resolved(version.id, comment.id, False, "reviewer")
    assert not reopened.resolved and reopened.resolved_by is None
    assert lifecycle.get(version.id).open_comments() == [reopened]
    assert len(audit.events("CommentResolved")) == 2


def test_diff_with_previous(lifecycle: VersionLifecycle) -> None:
    first = lifecycle.create_version(FRAMEWORK, "v1.0", make_content(unit_hours=(20, 20)), "author")
    units = [make_unit("u1", duration=20), make_unit("u2", duration=20), make_unit("u3", duration=10)]
    second = lifecycle.create_version(FRAMEWORK, "v1.1", make_content(units=units), "author")

    assert lifecycle.diff_with_previous(first.id) == []
    changes = lifecycle.diff_with_previous(second.id)
    assert [(c.type, c.field) for c in changes] == [("modified", "totalHours"), ("added", "units")]
    assert changes[0].description == "Total hours changed from 40h to 50h"
    assert changes[1].description == "1 unit(s) added"


def test_history_stats_and_stale_drafts(lifecycle: VersionLifecycle) -> None:
    _published(lifecycle, "v1.0")
    _published(lifecycle, "v1.1")
    draft = lifecycle.create_version(FRAMEWORK, "v2.0", make_content(), "author")

    assert [v.version_label for v in lifecycle.history(FRAMEWORK)] == ["v2.0", "v1.1", "v1.0"]
    stats = lifecycle.stats(FRAMEWORK)
    assert (stats.total_versions, stats.published_versions, stats.draft_versions) == (3, 1, 1)
    assert stats.last_published_at is not None

    assert lifecycle.stale_drafts(draft.created_at + timedelta(days=1)) == []
    assert [v.id for v in lifecycle.stale_drafts(draft.created_at + timedelta(days=31))] == [draft.id]


def test_stale_revision_is_rejected(lifecycle: VersionLifecycle, repo: MemoryRepository) -> None:
    version = lifecycle.create_version(FRAMEWORK, "v1.0", make_content(), "author")
    stale = repo.get_version(version.id)
    lifecycle.submit_for_review(version.id, "author")

    with pytest.raises(ConcurrentModification):
        repo.save_versions([stale.model_copy(update={"changelog": "sneaky"})])
    assert repo.get_version(version.id).state == VersionState.PENDING_REVIEW


def test_held_framework_lock_times_out(lifecycle: VersionLifecycle) -> None:
    version = lifecycle.create_version(FRAMEWORK, "v1.0", make_content(), "author")
    with lifecycle._framework_lock(FRAMEWORK):
        with pytest.raises(ConcurrentModification):
            lifecycle.submit_for_review(version.id, "author")
    assert lifecycle.get(version.id).state == VersionState.DRAFT
