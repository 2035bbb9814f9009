"""Tests for status and schema assertions."""

from __future__ import annotations

import pytest

from flowwatch.runner.assertions import assert_schema, assert_status, type_name
from flowwatch.runner.exceptions import StepAssertionError


class TestTypeName:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, "null"),
            (True, "boolean"),
            (3, "number"),
            (2.5, "number"),
            ("x", "string"),
            ([], "array"),
            ({}, "object"),
        ],
    )
    def test_names(self, value, expected) -> None:
        assert type_name(value) == expected


class TestAssertStatus:
    def test_match(self) -> None:
        assert_status(201, 201, "")

    def test_mismatch_message(self) -> None:
        with pytest.raises(StepAssertionError) as info:
            assert_status(503, 200, "x" * 500)
        assert str(info.value) == f"HTTP 503 (expected 200): {'x' * 300}"
        assert info.value.http_status == 503

    def test_body_limit(self) -> None:
        with pytest.raises(StepAssertionError, match=r"\): abc$"):
            assert_status(500, 200, "abcdef", body_limit=3)


class TestAssertSchema:
    def test_all_fields_match(self) -> None:
        assert_schema(
            {"id": 1, "name": "a", "tags": [], "meta": {}, "ok": True, "gone": None},
            {
                "id": "number",
                "name": "string",
                "tags": "array",
                "meta": "object",
                "ok": "boolean",
                "gone": "null",
            },
        )

    def test_type_mismatch(self) -> None:
        with pytest.raises(StepAssertionError) as info:
            assert_schema({"id": "1", "name": "x"}, {"id": "number"})
        assert str(info.value) == 'Schema: "id" expected number, got string (value: "1")'

    def test_missing_field_reports_null(self) -> None:
        with pytest.raises(StepAssertionError, match='"email" expected string, got null'):
            assert_schema({"id": 1}, {"email": "string"})

    def test_undefined_matches_missing(self) -> None:
        assert_schema({"id": 1}, {"deleted_at": "undefined"})

    def test_dotted_field(self) -> None:
        assert_schema({"user": {"id": 5}}, {"user.id": "number"})
        with pytest.raises(StepAssertionError):
            assert_schema({"user": {"id": 5}}, {"user.id": "string"})

    def test_first_failure_reported(self) -> None:
        with pytest.raises(StepAssertionError, match='"a"'):
            assert_schema({"a": 1, "b": 2}, {"a": "string", "b": "string"})

    def test_number_reported_against_string(self) -> None:
        assert_schema({"id": 7, "name": "x"}, {"id": "number", "name": "string"})
        with pytest.raises(StepAssertionError) as info:
            assert_schema({"id": 7, "name": "x"}, {"id": "string"})
        assert str(info.value) == 'Schema: "id" expected string, got number (value: 7)'
