"""Ensure we only use Pydantic v2-style validators/config and keep domain models frozen."""

from __future__ import annotations

import importlib
import re
from pathlib import Path
from typing import Iterable

import pytest
from pydantic import ValidationError

from tests.mocks.curriculum import make_version

TARGET_DIRS: tuple[str, ...] = ("apps", "kctgov", "tests")
LEGACY_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("legacy decorator", re.compile(r"@(?:root_)?validator\b")),
    ("legacy import", re.compile(r"\bfrom\s+pydantic\s+import\b[^\n]*\bvalidator\b")),
    ("legacy direct reference", re.compile(r"\bpydantic\.(?:root_)?validator\b")),
)


def _python_files(base_dirs: Iterable[Path]) -> Iterable[Path]:
    for directory in base_dirs:
        if not directory.exists():
            continue
        yield from directory.rglob("*.py")


def test_no_v1_pydantic_validators() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    target_roots = [repo_root / directory for directory in TARGET_DIRS]
    this_file = Path(__file__).resolve()
    offenders: list[str] = []

    for path in _python_files(target_roots):
        if path == this_file:
            continue
        text = path.read_text(encoding="utf-8")
        for label, pattern in LEGACY_PATTERNS:
            if pattern.search(text):
                relative_path = path.relative_to(repo_root)
                offenders.append(f"{relative_path} -> {label}")
                break

    if offenders:
        formatted = "\n".join(offenders)
        pytest.fail(f"Legacy Pydantic validator usage detected:\n{formatted}")


FROZEN_MODELS = (
    "kctgov.models.content:ContentSnapshot",
    "kctgov.models.content:Course",
    "kctgov.models.content:Unit",
    "kctgov.models.content:Resource",
    "kctgov.models.content:Assessment",
    "kctgov.models.content:Rubric",
    "kctgov.models.rules:ValidationRule",
    "kctgov.models.rules:Conflict",
    "kctgov.models.versions:CurriculumVersion",
    "kctgov.models.versions:Comment",
    "kctgov.models.versions:ReviewDecision",
    "kctgov.models.versions:VersionDiff",
    "kctgov.models.mapping:ClassFacts",
    "kctgov.models.mapping:AppliedVersionRef",
    "kctgov.models.mapping:MappingValidationReport",
    "kctgov.models.mapping:ClassAppliedVersion",
    "kctgov.models.mapping:OverrideRecord",
    "kctgov.guardrails.readiness:ReadinessReport",
)


@pytest.mark.parametrize("dotted", FROZEN_MODELS)
def test_domain_models_stay_frozen(dotted: str) -> None:
    """Snapshots, reports and records change only through ``model_copy``."""

    module_name, class_name = dotted.split(":")
    model = getattr(importlib.import_module(module_name), class_name)
    assert model.model_config.get("frozen") is True, f"{dotted} must stay frozen"


def test_frozen_version_rejects_assignment() -> None:
    version = make_version()
    with pytest.raises(ValidationError):
        version.state = "published"
    assert version.model_copy(update={"changelog": "edited"}).changelog == "edited"
