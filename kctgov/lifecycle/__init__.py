"""Version lifecycle state machine and diffing."""

from .diff import diff_versions
from .versions import TRANSITIONS, VersionLifecycle, check_transition

__all__ = ["TRANSITIONS", "VersionLifecycle", "check_transition", "diff_versions"]
