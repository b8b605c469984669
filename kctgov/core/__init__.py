"""
Foundational configuration, error, audit and validation utilities.

Everything above this package (guardrails, lifecycle, rollout, surfaces)
depends on these modules; they depend only on ``kctgov.models``.
"""

from .audit import AuditEvent, AuditLogger
from .config import GovernanceConfig, PolicyConfig, RolloutConfig, StorageConfig, load_governance_config
from .errors import GovernanceError

__all__ = [
    "AuditEvent",
    "AuditLogger",
    "GovernanceConfig",
    "GovernanceError",
    "PolicyConfig",
    "RolloutConfig",
    "StorageConfig",
    "load_governance_config",
]
