"""
Field validation for values-graph mutations.

Every check here runs before a revision is appended, so a failure never
leaves anything in the store.

Invariants:
    - Validation errors are deterministic
    - Error messages name the offending field
    - Strings are trimmed; blank optional text becomes None
"""

from __future__ import annotations

from typing import Any, Optional

from ..errors import ValidationError

MAX_TITLE_LENGTH = 200
MAX_NOTES_LENGTH = 1000
MAX_TRIGGER_LENGTH = 500
MAX_ESTIMATED_MINUTES = 1440


def clean_title(title: Any, max_length: int = MAX_TITLE_LENGTH) -> str:
    """Trim and bound-check a title.

    Raises:
        ValidationError: If empty after trimming or too long
    """
    if not isinstance(title, str):
        raise ValidationError(
            f"Field 'title' must be a string, got {type(title).__name__}", field_name="title"
        )
    title = title.strip()
    if not title:
        raise ValidationError("Title is required", field_name="title")
    if len(title) > max_length:
        raise ValidationError(
            f"Title must be {max_length} characters or less", field_name="title"
        )
    return title


def clean_optional_text(value: Any, field_name: str, max_length: int) -> Optional[str]:
    """Trim optional free text; blank becomes None."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(
            f"Field '{field_name}' must be a string, got {type(value).__name__}",
            field_name=field_name,
        )
    value = value.strip()
    if not value:
        return None
    if len(value) > max_length:
        raise ValidationError(
            f"Field '{field_name}' must be {max_length} characters or less",
            field_name=field_name,
        )
    return value


def clean_notes(notes: Any) -> Optional[str]:
    return clean_optional_text(notes, "notes", MAX_NOTES_LENGTH)


def clean_trigger(trigger: Any) -> Optional[str]:
    return clean_optional_text(trigger, "trigger", MAX_TRIGGER_LENGTH)


def clean_estimated_minutes(value: Any) -> Optional[int]:
    """Accept None or an integer in 1..1440."""
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(
            f"Field 'estimatedMinutes' must be an integer, got {type(value).__name__}",
            field_name="estimatedMinutes",
        )
    if not 0 < value <= MAX_ESTIMATED_MINUTES:
        raise ValidationError(
            f"Field 'estimatedMinutes' must be between 1 and {MAX_ESTIMATED_MINUTES}",
            field_name="estimatedMinutes",
        )
    return value


def require_id(value: Any, field_name: str) -> str:
    """Reject empty ids and ids that would break the key layout."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Field '{field_name}' is required", field_name=field_name)
    if "#" in value:
        raise ValidationError(
            f"Field '{field_name}' must not contain '#'", field_name=field_name
        )
    return value

