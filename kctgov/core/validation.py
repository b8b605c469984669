"""Validated loading of policy, content and class-fact files."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Type, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

M = TypeVar("M", bound=BaseModel)


class ValidationFailure(ValueError):
    """Raised by strict validators when a check fails."""

    def __init__(self, errors: List[str]):
        super().__init__(f"Validation failed: {'; '.join(errors)}")
        self.errors = list(errors)


@dataclass
class ValidationResult:
    """Result of a validation check."""

    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    data: Any = None

    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def raise_if_invalid(self) -> None:
        """Raise ValidationFailure if validation failed."""
        if not self.valid:
            raise ValidationFailure(self.errors)


class ValidationFramework:
    """File and payload validation shared by the CLI, API and bootstrap."""

    def __init__(self, *, strict: bool = True):
        """Initialize validation framework.

        Args:
            strict: If True, raise ValidationFailure on validation failure
        """
        self.strict = strict
        self.logger = logging.getLogger(__name__)

    def _finish(self, result: ValidationResult, label: str) -> ValidationResult:
        if not result.valid:
            self.logger.error("%s validation failed: %s", label, result.errors)
        elif result.has_warnings:
            self.logger.warning("%s validation warnings: %s", label, result.warnings)
        if self.strict and not result.valid:
            result.raise_if_invalid()
        return result

    # ============== File Operations ==============

    def validate_file_exists(self, path: Path | str) -> ValidationResult:
        """Validate that a file exists and is readable."""
        errors: List[str] = []
        warnings: List[str] = []
        path_obj = Path(path)

        if not path_obj.exists():
            errors.append(f"File does not exist: {path}")
        elif not path_obj.is_file():
            errors.append(f"Path is not a file: {path}")
        elif not path_obj.stat().st_size:
            warnings.append(f"File is empty: {path}")

        result = ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
            data=path_obj if not errors else None,
        )
        return self._finish(result, "File")

    def validate_json_file(self, path: Path | str) -> ValidationResult:
        """Validate and load a JSON file."""
        file_result = self.validate_file_exists(path)
        if not file_result.valid:
            return file_result

        errors: List[str] = []
        data = None
        content = Path(path).read_text(encoding="utf-8")
        if not content.strip():
            errors.append(f"JSON file is empty: {path}")
        else:
            try:
                data = json.loads(content)
            except json.JSONDecodeError as e:
                errors.append(f"Invalid JSON in {path}: {e}")

        result = ValidationResult(valid=len(errors) == 0, errors=errors, data=data)
        return self._finish(result, "JSON")

    def validate_yaml_file(self, path: Path | str) -> ValidationResult:
        """Validate and load a YAML file."""
        file_result = self.validate_file_exists(path)
        if not file_result.valid:
            return file_result

        errors: List[str] = []
        warnings: List[str] = []
        data = None
        content = Path(path).read_text(encoding="utf-8")
        if not content.strip():
            errors.append(f"YAML file is empty: {path}")
        else:
            try:
                data = yaml.safe_load(content)
            except yaml.YAMLError as e:
                errors.append(f"Invalid YAML in {path}: {e}")
            else:
                if data is None:
                    warnings.append(f"YAML file contains only null/empty data: {path}")
                    data = {}

        result = ValidationResult(valid=len(errors) == 0, errors=errors, warnings=warnings, data=data)
        return self._finish(result, "YAML")

    def load_structured_file(self, path: Path | str) -> ValidationResult:
        """Load YAML or JSON based on the file suffix."""
        if Path(path).suffix.lower() == ".json":
            return self.validate_json_file(path)
        return self.validate_yaml_file(path)

    # ============== Data Validation ==============

    def validate_pydantic_model(self, data: Any, model_class: Type[M]) -> ValidationResult:
        """Validate data against a Pydantic model."""
        errors: List[str] = []
        validated = None

        try:
            validated = model_class.model_validate(data)
        except ValidationError as e:
            for error in e.errors():
                location = ".".join(str(loc) for loc in error["loc"]) or "<root>"
                errors.append(f"{location}: {error['msg']}")

        result = ValidationResult(valid=len(errors) == 0, errors=errors, data=validated)
        return self._finish(result, model_class.__name__)

    def load_model(self, path: Path | str, model_class: Type[M]) -> M:
        """Load a YAML/JSON file straight into a model, always failing loudly."""
        loaded = self.load_structured_file(path)
        loaded.raise_if_invalid()
        result = self.validate_pydantic_model(loaded.data, model_class)
        result.raise_if_invalid()
        return result.data

    def load_model_list(self, path: Path | str, model_class: Type[M], *, key: str | None = None) -> List[M]:
        """Load a list of models from a file holding a list (or ``{key: [...]}``)."""
        loaded = self.load_structured_file(path)
        loaded.raise_if_invalid()
        payload: Any = loaded.data
        if key and isinstance(payload, dict):
            payload = payload.get(key, [])
        if isinstance(payload, dict):
            payload = [payload]
        if not isinstance(payload, list):
            raise ValidationFailure([f"Expected a list of {model_class.__name__} entries in {path}"])
        items: List[M] = []
        errors: List[str] = []
        for index, entry in enumerate(payload):
            try:
                items.append(model_class.model_validate(entry))
            except ValidationError as exc:
                for error in exc.errors():
                    location = ".".join(str(loc) for loc in error["loc"]) or "<root>"
                    errors.append(f"[{index}] {location}: {error['msg']}")
        if errors:
            self.logger.error("%s list validation failed: %s", model_class.__name__, errors)
            raise ValidationFailure(errors)
        return items


# ============== Global Instance ==============

validation = ValidationFramework(strict=False)
strict_validation = ValidationFramework(strict=True)


def describe_errors(result: ValidationResult) -> Dict[str, List[str]]:
    return {"errors": list(result.errors), "warnings": list(result.warnings)}


__all__ = [
    "ValidationFailure",
    "ValidationFramework",
    "ValidationResult",
    "describe_errors",
    "strict_validation",
    "validation",
]
