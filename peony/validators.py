"""
Shared validation helpers for Peony services.
"""

from __future__ import annotations

from typing import Optional

from peony.errors import ValidationIssue


def _validate_encoding(value: str, field: str, operation: Optional[str] = None) -> None:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        raise ValidationIssue(
            f"{field} is not valid UTF-8 text",
            field=field,
            error_type="invalid_encoding",
            operation=operation,
        ) from None


def validate_required_text(value: str, field: str, max_len: int, operation: Optional[str] = None) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(
            f"{field} must be a non-empty string",
            field=field,
            error_type="required",
            operation=operation,
        )
    if len(value) > max_len:
        raise ValidationIssue(
            f"{field} exceeds max length {max_len}",
            field=field,
            error_type="max_length",
            operation=operation,
        )
    _validate_encoding(value, field, operation)


def validate_optional_text(value: Optional[str], field: str, max_len: int, operation: Optional[str] = None) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type", operation=operation)
    if len(value) > max_len:
        raise ValidationIssue(
            f"{field} exceeds max length {max_len}",
            field=field,
            error_type="max_length",
            operation=operation,
        )
    _validate_encoding(value, field, operation)


def validate_thought_id(value: int, operation: Optional[str] = None) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationIssue(
            "thought id must be an integer",
            field="thought_id",
            error_type="invalid_type",
            operation=operation,
        )
    if value <= 0:
        raise ValidationIssue(
            f"invalid thought id {value}: must be positive",
            field="thought_id",
            error_type="invalid_id",
            operation=operation,
            thought_id=value,
        )


def validate_pagination(limit: int, offset: int, max_limit: int, operation: Optional[str] = None) -> None:
    for name, value in (("limit", limit), ("offset", offset)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationIssue(f"{name} must be an integer", field=name, error_type="invalid_type", operation=operation)
    if limit <= 0 or limit > max_limit:
        raise ValidationIssue(
            f"limit must be between 1 and {max_limit}",
            field="limit",
            error_type="out_of_range",
            operation=operation,
        )
    if offset < 0:
        raise ValidationIssue("offset must be >= 0", field="offset", error_type="out_of_range", operation=operation)


def validate_optional_int(value: Optional[int], field: str, operation: Optional[str] = None) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationIssue(f"{field} must be an integer", field=field, error_type="invalid_type", operation=operation)


def normalize_note(note: Optional[str]) -> Optional[str]:
    """Blank notes are stored as NULL."""
    if note is None or not note.strip():
        return None
    return note
