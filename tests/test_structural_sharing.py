"""Tests for structural sharing."""

from dataclasses import dataclass

from pgquery.structural_sharing import deep_equal, replace_equal_deep


class TestReplaceEqualDeep:
    """Tests for replace_equal_deep."""

    def test_equal_returns_old_identity(self) -> None:
        """Test that equal data returns the old object."""
        old = {"users": [{"id": 1, "name": "a"}], "total": 1}
        new = {"users": [{"id": 1, "name": "a"}], "total": 1}
        assert replace_equal_deep(old, new) is old

    def test_unchanged_subtrees_are_reused(self) -> None:
        """Unchanged subtrees keep their identity."""
        old = {"a": {"x": 1}, "b": {"y": 2}}
        new = {"a": {"x": 1}, "b": {"y": 3}}
        result = replace_equal_deep(old, new)
        assert result == new
        assert result is not old
        assert result["a"] is old["a"]
        assert result["b"] is new["b"]

    def test_list_items_are_reused(self) -> None:
        """Test that unchanged list items are reused."""
        old = [{"id": 1}, {"id": 2}]
        new = [{"id": 1}, {"id": 2}, {"id": 3}]
        result = replace_equal_deep(old, new)
        assert result[0] is old[0]
        assert result[1] is old[1]
        assert len(result) == 3

    def test_removed_key_is_a_change(self) -> None:
        """Test that a removed key counts as a change."""
        old = {"a": 1, "b": 2}
        new = {"a": 1}
        assert replace_equal_deep(old, new) == {"a": 1}

    def test_tuples_rebuilt_as_tuples(self) -> None:
        """Test that changed tuples stay tuples."""
        old = ({"id": 1}, "x")
        new = ({"id": 1}, "y")
        result = replace_equal_deep(old, new)
        assert isinstance(result, tuple)
        assert result[0] is old[0]

    def test_bool_distinct_from_int(self) -> None:
        """True and 1 are not shared."""
        assert replace_equal_deep({"v": 1}, {"v": True})["v"] is True

    def test_value_objects_use_eq(self) -> None:
        """Test that other values, such as dataclasses, compare with ==."""

        @dataclass
        class Point:
            x: int

        old = {"p": Point(1)}
        assert replace_equal_deep(old, {"p": Point(1)}) is old

    def test_type_change(self) -> None:
        """Test that a type change replaces the value."""
        assert replace_equal_deep([1, 2], {"a": 1}) == {"a": 1}


class TestDeepEqual:
    """Tests for deep_equal."""

    def test_deep_equal(self) -> None:
        """Test deep_equal on nested data."""
        assert deep_equal({"a": [1, {"b": 2}]}, {"a": [1, {"b": 2}]})
        assert not deep_equal({"a": [1, {"b": 2}]}, {"a": [1, {"b": 3}]})
