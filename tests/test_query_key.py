"""Tests for query key hashing and matching."""

import re
from datetime import datetime
from functools import partial

import pytest

from pgquery.query_key import (
    hash_query_key,
    is_equal_key,
    matches_query_key,
    normalize_query_key,
)


class TestHashQueryKey:
    """Tests for hash_query_key."""

    def test_idempotent(self) -> None:
        """Hashing the same key twice gives the same string."""
        key = ["users", "list", {"active": True, "page": 2}]
        assert hash_query_key(key) == hash_query_key(key)

    def test_mapping_order_irrelevant(self) -> None:
        """Test that mapping insertion order does not change the hash."""
        assert hash_query_key(["users", {"a": 1, "b": 2}]) == hash_query_key(
            ["users", {"b": 2, "a": 1}]
        )

    def test_segment_order_significant(self) -> None:
        """Test that segment order changes the hash."""
        assert hash_query_key(["users", "list"]) != hash_query_key(["list", "users"])

    def test_list_and_tuple_hash_alike(self) -> None:
        """Lists and tuples hash the same."""
        assert hash_query_key(("users", 1)) == hash_query_key(["users", 1])

    def test_bool_and_int_differ(self) -> None:
        """Test that True and 1 hash differently."""
        assert hash_query_key(["flag", True]) != hash_query_key(["flag", 1])

    def test_non_json_segments(self) -> None:
        """Dates, patterns and sets hash deterministically."""
        key = ["events", datetime(2024, 1, 1), re.compile("^a"), {3, 1, 2}]
        assert hash_query_key(key) == hash_query_key(list(key))
        assert "2024-01-01T00:00:00" in hash_query_key(key)

    def test_unorderable_mapping_keys(self) -> None:
        """Mixed-type mapping keys hash the same in any insertion order."""
        assert hash_query_key(["weird", {1: "a", "b": 2}]) == hash_query_key(
            ["weird", {"b": 2, 1: "a"}]
        )

    def test_int_and_str_mapping_keys_differ(self) -> None:
        """A non-str mapping key never collides with its string form."""
        assert hash_query_key(["k", {1: "a"}]) != hash_query_key(["k", {"1": "a"}])
        assert is_equal_key(["k", {1: "a"}], ["k", {1: "a"}])
        assert not is_equal_key(["k", {1: "a"}], ["k", {"1": "a"}])

    def test_circular_segment(self) -> None:
        """A self-referencing segment hashes without recursing forever."""
        segment: list = ["loop"]
        segment.append(segment)
        assert hash_query_key(["cycle", segment]) == hash_query_key(["cycle", segment])

    def test_distinct_lambdas_differ(self) -> None:
        """Functions defined on different lines get different hashes."""
        first = lambda value: value + 1  # noqa: E731
        second = lambda value: value + 2  # noqa: E731
        assert hash_query_key(["f", first]) != hash_query_key(["f", second])
        assert hash_query_key(["f", first]) == hash_query_key(["f", first])

    def test_partial_hashes_by_function_and_arguments(self) -> None:
        """Equal partials hash alike; different bound arguments do not."""
        assert hash_query_key(["p", partial(max, 1)]) == hash_query_key(["p", partial(max, 1)])
        assert hash_query_key(["p", partial(max, 1)]) != hash_query_key(["p", partial(max, 2)])


class TestNormalizeQueryKey:
    """Tests for normalize_query_key."""

    def test_returns_tuple(self) -> None:
        """Test that keys are frozen into tuples."""
        assert normalize_query_key(["users", 1]) == ("users", 1)

    def test_rejects_string(self) -> None:
        """A bare string is not a key."""
        with pytest.raises(TypeError):
            normalize_query_key("users")

    def test_rejects_non_sequence(self) -> None:
        """Test that non-sequences are rejected."""
        with pytest.raises(TypeError):
            normalize_query_key(42)  # type: ignore[arg-type]


class TestMatchesQueryKey:
    """Tests for prefix matching."""

    def test_prefix_matches(self) -> None:
        """Test that a prefix matches longer keys."""
        assert matches_query_key(["users", "list", {"active": True}], ["users"])
        assert matches_query_key(["users", "list", {"active": True}], ["users", "list"])

    def test_sibling_does_not_match(self) -> None:
        """Test that sibling keys do not match."""
        assert not matches_query_key(["users", "list"], ["posts"])
        assert not matches_query_key(["users", "detail", 1], ["users", "list"])

    def test_longer_prefix_does_not_match(self) -> None:
        """Test that a prefix longer than the key never matches."""
        assert not matches_query_key(["users"], ["users", "list"])

    def test_nested_mapping_equality(self) -> None:
        """Nested segments compare by value."""
        assert matches_query_key(["users", {"a": [1, 2]}], ["users", {"a": (1, 2)}])
        assert not matches_query_key(["users", {"a": [1, 2]}], ["users", {"a": [2, 1]}])

    def test_bool_never_equals_int(self) -> None:
        """Test that True never matches 1."""
        assert not matches_query_key(["flag", True], ["flag", 1])

    def test_empty_prefix_matches_everything(self) -> None:
        """Test that an empty prefix matches any key."""
        assert matches_query_key(["anything"], [])


class TestIsEqualKey:
    """Tests for is_equal_key."""

    def test_equal(self) -> None:
        """Test that equal keys compare equal."""
        assert is_equal_key(["users", {"a": 1}], ("users", {"a": 1}))

    def test_prefix_is_not_equal(self) -> None:
        """Test that a prefix is not equal to the longer key."""
        assert not is_equal_key(["users", "list"], ["users"])
