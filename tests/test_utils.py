"""Tests for dot-path helpers."""

import pytest

from arcanum.utils import resolve_path, set_path, split_path, to_display_string


class TestPaths:
    def test_split_path(self):
        assert split_path("tasks[0].status") == ["tasks", "0", "status"]
        assert split_path("a.b") == ["a", "b"]
        assert split_path("") == []

    def test_resolve_path(self):
        data = {"a": {"b": [{"c": 1}]}}
        assert resolve_path(data, "a.b[0].c") == 1
        assert resolve_path(data, "a.b.0.c") == 1
        assert resolve_path(data, "a.b[3].c") is None
        assert resolve_path(data, "a.x.y") is None
        assert resolve_path({"a": 5}, "a.b") is None

    def test_set_path_creates_intermediate(self):
        data = {}
        set_path(data, "review.status", "approved")
        assert data == {"review": {"status": "approved"}}

    def test_set_path_operations(self):
        data = {"items": ["a"], "x": 1}
        set_path(data, "items", "b", "append")
        set_path(data, "new", "c", "append")
        set_path(data, "x", None, "remove")
        assert data == {"items": ["a", "b"], "new": ["c"]}

    def test_set_path_list_index(self):
        data = {"tasks": [{"id": "1"}, {"id": "2"}]}
        set_path(data, "tasks[1].status", "done")
        set_path(data, "tasks[0]", None, "remove")
        assert data == {"tasks": [{"id": "2", "status": "done"}]}

    def test_set_path_errors(self):
        with pytest.raises(ValueError):
            set_path({}, "", 1)
        with pytest.raises(ValueError, match="Unknown operation"):
            set_path({}, "a", 1, "merge")


class TestDisplayString:
    @pytest.mark.parametrize(
        "value,expected",
        [(None, "null"), (True, "true"), (False, "false"), (3.0, "3"), (2.5, "2.5"), ("x", "x"), (7, "7")],
    )
    def test_values(self, value, expected):
        assert to_display_string(value) == expected
