"""Persistence collaborators for versions, classes and rollout plans."""

from __future__ import annotations

from kctgov.core.config import StorageConfig

from .base import CurriculumRepository, sort_versions
from .memory import MemoryRepository
from .sqlite import SQLiteRepository


def build_repository(config: StorageConfig) -> CurriculumRepository:
    if config.backend == "sqlite":
        return SQLiteRepository(config.sqlite_path)
    return MemoryRepository()


__all__ = [
    "CurriculumRepository",
    "MemoryRepository",
    "SQLiteRepository",
    "build_repository",
    "sort_versions",
]
