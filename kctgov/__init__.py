"""
Core package for the KCT governance engine.

The engine is a library: the rule engine, readiness and mapping validators are
pure functions over typed inputs, while the lifecycle and rollout services talk
to a persistence collaborator through ``kctgov.store``.
"""

from importlib import metadata


def get_version() -> str:
    """Return the installed project version."""
    try:
        return metadata.version("kct-governance")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__all__ = ["get_version"]
