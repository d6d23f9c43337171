"""
Unit tests for field validation.
"""

import pytest

from planner.plangraph.errors import ValidationError
from planner.plangraph.values.validation import (
    clean_estimated_minutes,
    clean_notes,
    clean_title,
    clean_trigger,
    require_id,
)


class TestTitle:
    def test_trims(self):
        assert clean_title("  Health  ") == "Health"

    @pytest.mark.parametrize("title", ["", "   ", None, 42])
    def test_rejects_empty_or_non_string(self, title):
        with pytest.raises(ValidationError) as exc_info:
            clean_title(title)

        assert exc_info.value.field_name == "title"

    def test_length_bound(self):
        assert clean_title("x" * 200) == "x" * 200
        with pytest.raises(ValidationError, match="200 characters"):
            clean_title("x" * 201)

    def test_custom_bound(self):
        with pytest.raises(ValidationError):
            clean_title("abcdef", max_length=5)


class TestOptionalText:
    def test_blank_notes_become_none(self):
        assert clean_notes(None) is None
        assert clean_notes("   ") is None
        assert clean_notes(" keep ") == "keep"

    def test_notes_bound(self):
        clean_notes("x" * 1000)
        with pytest.raises(ValidationError):
            clean_notes("x" * 1001)

    def test_trigger_bound(self):
        clean_trigger("x" * 500)
        with pytest.raises(ValidationError) as exc_info:
            clean_trigger("x" * 501)

        assert exc_info.value.field_name == "trigger"


class TestEstimatedMinutes:
    @pytest.mark.parametrize("value", [1, 30, 1440, None])
    def test_accepts(self, value):
        assert clean_estimated_minutes(value) == value

    @pytest.mark.parametrize("value", [0, -5, 1441, 2.5, "30", True])
    def test_rejects(self, value):
        with pytest.raises(ValidationError):
            clean_estimated_minutes(value)


class TestRequireId:
    def test_accepts_plain_ids(self):
        assert require_id("abc-123", "driverId") == "abc-123"

    @pytest.mark.parametrize("value", ["", "  ", None, "a#b"])
    def test_rejects(self, value):
        with pytest.raises(ValidationError):
            require_id(value, "driverId")
