"""Typed failures raised by the governance engine.

Validation findings (conflicts) are always returned as data. The exceptions
below are reserved for structural failures that abort a single operation
without changing any state.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence


class GovernanceError(Exception):
    """Base class for every engine failure."""

    code = "GOVERNANCE_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidTransition(GovernanceError):
    """Requested state change is not permitted from the current state."""

    code = "INVALID_TRANSITION"

    def __init__(self, current: str, requested: str, *, subject: str | None = None, reason: str | None = None) -> None:
        message = f"Cannot move {subject or 'entity'} from '{current}' to '{requested}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, current=current, requested=requested, subject=subject, reason=reason)
        self.current = current
        self.requested = requested
        self.reason = reason


class PublishBlocked(GovernanceError):
    """Publish attempted while the readiness verdict is not ready."""

    code = "PUBLISH_BLOCKED"

    def __init__(self, version_id: str, blocking_issues: Sequence[str]) -> None:
        issues = list(blocking_issues)
        super().__init__(
            f"Version {version_id} is not ready to publish ({len(issues)} blocking issue(s))",
            version_id=version_id,
            blocking_issues=issues,
        )
        self.version_id = version_id
        self.blocking_issues: List[str] = issues


class MappingBlocked(GovernanceError):
    """Apply attempted while mapping validation forbids proceeding."""

    code = "MAPPING_BLOCKED"

    def __init__(self, class_id: str, kct_version_id: str, report: Any = None) -> None:
        super().__init__(
            f"Version {kct_version_id} cannot be applied to class {class_id}",
            class_id=class_id,
            kct_version_id=kct_version_id,
        )
        self.class_id = class_id
        self.kct_version_id = kct_version_id
        self.report = report

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.report is not None and hasattr(self.report, "model_dump"):
            payload["details"]["report"] = self.report.model_dump(mode="json")
        return payload


class PrerequisiteUnsatisfied(GovernanceError):
    """Schedule requested while plan prerequisites are still open."""

    code = "PREREQUISITE_UNSATISFIED"

    def __init__(self, plan_id: str, unsatisfied: Sequence[str]) -> None:
        pending = list(unsatisfied)
        super().__init__(
            f"Plan {plan_id} has unsatisfied prerequisites: {', '.join(pending)}",
            plan_id=plan_id,
            unsatisfied=pending,
        )
        self.plan_id = plan_id
        self.unsatisfied = pending


class ConcurrentModification(GovernanceError):
    """Another caller changed (or is changing) the same record."""

    code = "CONCURRENT_MODIFICATION"

    def __init__(self, subject: str, *, expected_revision: int | None = None, actual_revision: int | None = None) -> None:
        super().__init__(
            f"{subject} was modified concurrently; reload and retry",
            subject=subject,
            expected_revision=expected_revision,
            actual_revision=actual_revision,
        )
        self.subject = subject


class DuplicateVersion(GovernanceError):
    code = "DUPLICATE_VERSION"

    def __init__(self, framework_id: str, version_label: str) -> None:
        super().__init__(
            f"Version {version_label} already exists for framework {framework_id}",
            framework_id=framework_id,
            version_label=version_label,
        )


class ImmutableContent(GovernanceError):
    """Content edits are only possible while a version is a draft."""

    code = "IMMUTABLE_CONTENT"

    def __init__(self, version_id: str, state: str) -> None:
        super().__init__(
            f"Version {version_id} is {state}; create a new version to change its content",
            version_id=version_id,
            state=state,
        )


class CommentsClosed(GovernanceError):
    code = "COMMENTS_CLOSED"

    def __init__(self, version_id: str, state: str) -> None:
        super().__init__(
            f"Version {version_id} does not accept review comments while {state}",
            version_id=version_id,
            state=state,
        )


class OverrideNotAllowed(GovernanceError):
    code = "OVERRIDE_NOT_ALLOWED"


class NotFound(GovernanceError):
    code = "NOT_FOUND"

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} {identifier} not found", kind=kind, id=identifier)
        self.identifier = identifier


class VersionNotFound(NotFound):
    def __init__(self, version_id: str) -> None:
        super().__init__("Version", version_id)


class PlanNotFound(NotFound):
    def __init__(self, plan_id: str) -> None:
        super().__init__("Rollout plan", plan_id)


class ClassNotFound(NotFound):
    def __init__(self, class_id: str) -> None:
        super().__init__("Class", class_id)


__all__ = [
    "ClassNotFound",
    "CommentsClosed",
    "ConcurrentModification",
    "DuplicateVersion",
    "GovernanceError",
    "ImmutableContent",
    "InvalidTransition",
    "MappingBlocked",
    "NotFound",
    "OverrideNotAllowed",
    "PlanNotFound",
    "PrerequisiteUnsatisfied",
    "PublishBlocked",
    "VersionNotFound",
]
