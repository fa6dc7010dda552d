"""
Shared validation helpers for Engram services.
"""

from __future__ import annotations

import re
from typing import Optional, Sequence

from core.errors import EmbeddingDimensionError, ValidationIssue

PROJECT_SCOPE_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


def validate_required_text(value: str, field: str, max_len: int) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(f"{field} must be a non-empty string", field=field, error_type="required")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_optional_text(value: Optional[str], field: str, max_len: int) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_limit(value: int, field: str, max_value: int) -> None:
    if value <= 0 or value > max_value:
        raise ValidationIssue(f"{field} must be between 1 and {max_value}", field=field, error_type="out_of_range")


def validate_memory_id(value, field: str = "id") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationIssue(f"{field} must be an integer", field=field, error_type="invalid_id")
    if value <= 0:
        raise ValidationIssue(f"{field} must be a positive integer", field=field, error_type="invalid_id")
    return value


def is_valid_project_scope(value: Optional[str]) -> bool:
    return bool(value) and PROJECT_SCOPE_PATTERN.match(value) is not None


def validate_project_scope(value: Optional[str], field: str = "project_scope") -> None:
    if not value:
        return
    if not is_valid_project_scope(value):
        raise ValidationIssue(
            f"{field} must have the form owner/name",
            field=field,
            error_type="invalid_format",
        )


def validate_embedding(vector: Sequence[float], dimensions: int) -> list[float]:
    if vector is None:
        raise EmbeddingDimensionError(dimensions, 0)
    values = [float(item) for item in vector]
    if len(values) != dimensions:
        raise EmbeddingDimensionError(dimensions, len(values))
    return values
