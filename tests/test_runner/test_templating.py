"""Tests for {{var}} substitution and dotted-path lookup."""

from __future__ import annotations

from flowwatch.runner.templating import get_path, render_template, render_value, resolve_url


class TestRenderTemplate:
    def test_substitutes_captured_value(self) -> None:
        assert render_template("/posts?userId={{userId}}", {"userId": 42}) == "/posts?userId=42"

    def test_unknown_name_is_empty(self) -> None:
        assert render_template("/a/{{missing}}/b", {}) == "/a//b"

    def test_none_is_empty(self) -> None:
        assert render_template("x={{v}}", {"v": None}) == "x="

    def test_bool_and_json(self) -> None:
        ctx = {"flag": True, "obj": {"a": 1}, "items": [1, 2]}
        assert render_template("{{flag}}|{{obj}}|{{items}}", ctx) == 'true|{"a":1}|[1,2]'

    def test_non_word_placeholder_untouched(self) -> None:
        assert render_template("{{ spaced }}", {"spaced": 1}) == "{{ spaced }}"


class TestRenderValue:
    def test_nested(self) -> None:
        body = {"user": "{{id}}", "tags": ["{{tag}}", 3], "n": 5}
        assert render_value(body, {"id": 7, "tag": "x"}) == {
            "user": "7",
            "tags": ["x", 3],
            "n": 5,
        }


class TestResolveUrl:
    def test_relative_gets_base(self) -> None:
        assert resolve_url("/users/{{id}}", "https://api.test", {"id": 1}) == (
            "https://api.test/users/1"
        )

    def test_absolute_kept(self) -> None:
        assert resolve_url("https://other.test/x", "https://api.test", {}) == (
            "https://other.test/x"
        )

    def test_templated_absolute_kept(self) -> None:
        ctx = {"host": "https://h.test"}
        assert resolve_url("{{host}}/ping", "https://api.test", ctx) == "https://h.test/ping"


class TestGetPath:
    def test_nested_dict_and_list(self) -> None:
        data = {"user": {"orders": [{"id": 9}]}}
        assert get_path(data, "user.orders.0.id") == 9

    def test_missing(self) -> None:
        assert get_path({"a": 1}, "b") is None
        assert get_path({"a": [1]}, "a.5") is None
        assert get_path({"a": [1]}, "a.x") is None
        assert get_path({"a": 1}, "a.b") is None

    def test_falsy_values_returned(self) -> None:
        assert get_path({"a": 0}, "a") == 0
        assert get_path({"a": False}, "a") is False
