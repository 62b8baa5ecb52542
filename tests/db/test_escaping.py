from __future__ import annotations

import datetime
from decimal import Decimal

import pytest

from mysqldao.db.escaping import Raw, escape, escape_special, is_passthrough, is_raw
from mysqldao.errors import QueryValidationError


class TestEscape:
    """Tests for escape()."""

    def test_quotes_strings(self) -> None:
        assert escape("Doe") == "'Doe'"

    def test_escapes_quotes_inside_strings(self) -> None:
        assert escape("O'Brien") == "'O\\'Brien'"

    def test_numbers_are_unquoted(self) -> None:
        assert escape(1) == "1"
        assert escape(Decimal("2.50")) == "2.50"

    def test_none_is_null(self) -> None:
        assert escape(None) == "NULL"

    def test_booleans_render_as_keywords(self) -> None:
        assert escape(True) == "true"
        assert escape(False) == "false"

    def test_datetimes_are_quoted(self) -> None:
        assert escape(datetime.datetime(2020, 1, 2, 3, 4, 5)) == "'2020-01-02 03:04:05'"
        assert escape(datetime.date(2020, 1, 2)) == "'2020-01-02'"

    def test_sequences_are_joined(self) -> None:
        assert escape([1, "a", None]) == "1, 'a', NULL"

    def test_sequences_drop_non_primitive_elements(self) -> None:
        assert escape([1, {"a": 1}, object(), 2]) == "1, 2"

    def test_raw_values_are_not_escaped(self) -> None:
        assert escape(Raw("NOW()")) == "NOW()"
        assert escape({"raw": "col + 1"}) == "col + 1"

    def test_keywords_are_escaped_as_strings(self) -> None:
        assert escape("NOW()") == "'NOW()'"
        assert escape("CURRENT_TIMESTAMP") == "'CURRENT_TIMESTAMP'"

    def test_rejects_unsupported_types(self) -> None:
        with pytest.raises(TypeError):
            escape(object())

    @pytest.mark.parametrize(
        "value", [float("nan"), float("inf"), float("-inf"), Decimal("NaN"), Decimal("-Infinity")]
    )
    def test_rejects_non_finite_numbers(self, value: object) -> None:
        with pytest.raises(QueryValidationError):
            escape(value)
        with pytest.raises(QueryValidationError):
            escape([1, value])


class TestEscapeSpecial:
    """Tests for escape_special()."""

    @pytest.mark.parametrize("keyword", ["CURRENT_TIMESTAMP", "now()", "NOW()", "IS NULL", "is not null"])
    def test_passthrough_keywords_are_returned_unchanged(self, keyword: str) -> None:
        assert escape_special(keyword) == keyword

    def test_other_values_are_escaped(self) -> None:
        assert escape_special("now") == "'now'"
        assert escape_special(5) == "5"


def test_is_passthrough_is_case_insensitive() -> None:
    assert is_passthrough("Current_Timestamp")
    assert not is_passthrough("NOW")
    assert not is_passthrough(1)


def test_is_raw_only_matches_single_key_marker() -> None:
    assert is_raw(Raw("x"))
    assert is_raw({"raw": "x"})
    assert not is_raw({"raw": "x", "gt": 1})
    assert not is_raw("raw")
