"""Bootstrap helpers for the governance services."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict

from dotenv import load_dotenv

from kctgov.core.config import GovernanceConfig, load_governance_config

from .context import GovernanceContext, build_context

DEFAULT_CONFIG_PATH = Path("config/governance.yaml")
ENV_KEYS = ("KCTGOV_CONFIG", "KCTGOV_SQLITE_PATH", "KCTGOV_AUDIT_LOG")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOGGER = logging.getLogger(__name__)


def configure_logging(level: str | int = "INFO") -> None:
    """Configure root logging for CLI/API entry points."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _capture_env(keys: tuple[str, ...]) -> Dict[str, str]:
    """Return a filtered snapshot of the governance environment variables."""
    snapshot: Dict[str, str] = {}
    for key in keys:
        value = os.getenv(key)
        if value is not None:
            snapshot[key] = value
    return snapshot


def bootstrap_governance(
    config_path: Path | None = None,
    *,
    repo_root: Path | None = None,
    sqlite_path_override: Path | None = None,
    audit_log_override: Path | None = None,
) -> GovernanceContext:
    """
    Load ``.env``, configuration and environment overrides, then build the context.

    Parameters
    ----------
    config_path:
        Governance YAML. Falls back to ``$KCTGOV_CONFIG`` and then
        ``config/governance.yaml``; built-in defaults apply when none exists.
    repo_root:
        Root used to resolve relative paths. Defaults to ``Path.cwd()``.
    sqlite_path_override:
        Switch storage to SQLite at this path (also ``$KCTGOV_SQLITE_PATH``).
    audit_log_override:
        JSONL audit log destination (also ``$KCTGOV_AUDIT_LOG``).
    """

    repo_root = (repo_root or Path.cwd()).resolve()
    load_dotenv(repo_root / ".env")

    env_config = os.getenv("KCTGOV_CONFIG")
    if config_path is None and env_config:
        config_path = Path(env_config)
    if config_path is None:
        config_path = repo_root / DEFAULT_CONFIG_PATH
    elif not config_path.is_absolute():
        config_path = repo_root / config_path

    if config_path.exists():
        config = load_governance_config(config_path)
        LOGGER.info("Loaded governance config from %s", config_path)
    else:
        LOGGER.warning("Governance config %s not found; using built-in defaults", config_path)
        config = GovernanceConfig()

    sqlite_path = sqlite_path_override or (Path(os.environ["KCTGOV_SQLITE_PATH"]) if os.getenv("KCTGOV_SQLITE_PATH") else None)
    audit_path = audit_log_override or (Path(os.environ["KCTGOV_AUDIT_LOG"]) if os.getenv("KCTGOV_AUDIT_LOG") else None)
    storage_updates: Dict[str, object] = {}
    if sqlite_path is not None:
        storage_updates["backend"] = "sqlite"
        storage_updates["sqlite_path"] = sqlite_path if sqlite_path.is_absolute() else (repo_root / sqlite_path)
    if audit_path is not None:
        storage_updates["audit_log_path"] = audit_path if audit_path.is_absolute() else (repo_root / audit_path)
    if storage_updates:
        config = config.model_copy(update={"storage": config.storage.model_copy(update=storage_updates)})

    return build_context(config, repo_root=repo_root, env=_capture_env(ENV_KEYS))


__all__ = ["DEFAULT_CONFIG_PATH", "bootstrap_governance", "configure_logging"]
