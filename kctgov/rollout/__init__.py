"""Rollout planning, execution and single-class application."""

from .apply import ClassVersionApplier
from .orchestrator import PLAN_TRANSITIONS, RolloutOrchestrator

__all__ = ["ClassVersionApplier", "PLAN_TRANSITIONS", "RolloutOrchestrator"]
