"""Append-only audit/notification channel for governance events."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, Field

LOGGER = logging.getLogger(__name__)

EventName = Literal[
    "VersionCreated",
    "VersionTransitioned",
    "CommentAdded",
    "CommentResolved",
    "MappingValidated",
    "RolloutPlanChanged",
    "RolloutTargetApplied",
    "RolloutTargetFailed",
    "RolloutCompleted",
    "RolloutRolledBack",
    "PolicyUpdated",
    "OverrideRecorded",
]


class AuditEvent(BaseModel):
    """Structured record consumed by the notification/observability layer."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event: EventName = Field(..., description="Event type, e.g. 'VersionTransitioned'.")
    message: str = Field(..., description="Human-readable description of the event.")
    actor: str = Field(default="system")
    payload: Dict[str, Any] = Field(default_factory=dict)


Subscriber = Callable[[AuditEvent], None]

SUBJECT_KEYS = (
    "plan_id",
    "class_id",
    "class_ids",
    "version_id",
    "kct_version_id",
    "framework_id",
    "rule_id",
    "override_id",
)


def _mentions(event: AuditEvent, subject: str) -> bool:
    for key in SUBJECT_KEYS:
        value = event.payload.get(key)
        if value == subject or (isinstance(value, (list, tuple)) and subject in value):
            return True
    return False


class AuditLogger:
    """Thread-safe event sink with optional JSONL persistence."""

    def __init__(self, output_path: Path | None = None):
        self.output_path = output_path
        if self.output_path is not None:
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self._events: List[AuditEvent] = []
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def log(self, event: AuditEvent | Dict[str, Any]) -> AuditEvent:
        """Record a single event and return the normalized object."""
        if not isinstance(event, AuditEvent):
            event = AuditEvent(**event)
        with self._lock:
            self._events.append(event)
            if self.output_path is not None:
                with self.output_path.open("a", encoding="utf-8") as handle:
                    handle.write(event.model_dump_json() + "\n")
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                LOGGER.exception("Audit subscriber failed for %s", event.event)
        return event

    def emit(self, event: str, message: str, *, actor: str = "system", **payload: Any) -> AuditEvent:
        return self.log({"event": event, "message": message, "actor": actor, "payload": payload})

    def extend(self, events: Iterable[AuditEvent | Dict[str, Any]]) -> None:
        """Batch-record multiple events."""
        for event in events:
            self.log(event)

    def events(self, name: Optional[str] = None, *, subject: Optional[str] = None) -> List[AuditEvent]:
        """Recorded events, optionally narrowed to one event name and/or one subject.

        ``subject`` matches any plan, class, version, framework, rule or override
        id carried in the payload, giving the audit trail of that record.
        """
        with self._lock:
            selected = list(self._events)
        if name is not None:
            selected = [event for event in selected if event.event == name]
        if subject is not None:
            selected = [event for event in selected if _mentions(event, subject)]
        return selected


__all__ = ["AuditEvent", "AuditLogger", "EventName", "SUBJECT_KEYS"]
