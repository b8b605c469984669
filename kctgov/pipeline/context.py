"""Shared context object wiring the governance services together."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from kctgov.core.audit import AuditLogger
from kctgov.core.config import GovernanceConfig
from kctgov.guardrails.mapping import MappingValidator
from kctgov.guardrails.policy import PolicyStore
from kctgov.guardrails.rules import RuleEngine
from kctgov.lifecycle.versions import VersionLifecycle
from kctgov.rollout.apply import ClassVersionApplier
from kctgov.rollout.orchestrator import RolloutOrchestrator
from kctgov.store import build_repository


class GovernanceContext(BaseModel):
    """Aggregated runtime services for the CLI and API."""

    config: GovernanceConfig
    repo_root: Path
    env: Dict[str, str] = Field(default_factory=dict)
    repository: Any
    audit: AuditLogger
    policy: PolicyStore
    engine: RuleEngine
    validator: MappingValidator
    lifecycle: VersionLifecycle
    applier: ClassVersionApplier
    rollout: RolloutOrchestrator

    model_config = ConfigDict(arbitrary_types_allowed=True)


def build_context(
    config: GovernanceConfig,
    *,
    repo_root: Path | None = None,
    env: Optional[Dict[str, str]] = None,
    repository: Any = None,
    audit: AuditLogger | None = None,
) -> GovernanceContext:
    """Construct every service from a loaded config."""
    audit = audit or AuditLogger(config.storage.audit_log_path)
    repository = repository if repository is not None else build_repository(config.storage)
    engine = RuleEngine()
    policy = PolicyStore(config.policy, config.rules, audit=audit, registry=engine.registry)
    validator = MappingValidator(engine=engine, audit=audit)
    lifecycle = VersionLifecycle(
        repository,
        policy,
        audit=audit,
        engine=engine,
        lock_timeout=config.rollout.lock_timeout_seconds,
    )
    applier = ClassVersionApplier(repository, policy, validator=validator)
    rollout = RolloutOrchestrator(
        repository,
        applier,
        audit=audit,
        max_workers=config.rollout.max_workers,
        lock_timeout=config.rollout.lock_timeout_seconds,
    )
    return GovernanceContext(
        config=config,
        repo_root=(repo_root or Path.cwd()).resolve(),
        env=env or {},
        repository=repository,
        audit=audit,
        policy=policy,
        engine=engine,
        validator=validator,
        lifecycle=lifecycle,
        applier=applier,
        rollout=rollout,
    )


__all__ = ["GovernanceContext", "build_context"]
