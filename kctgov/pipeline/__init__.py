"""Service wiring for the governance CLI and API."""

from .bootstrap import bootstrap_governance, configure_logging
from .context import GovernanceContext, build_context

__all__ = ["GovernanceContext", "bootstrap_governance", "build_context", "configure_logging"]
