"""Query key hashing and matching.

Keys are ordered sequences of JSON-like segments. The hash is the cache's
primary index; matching is what prefix invalidation is built on.

Values JSON cannot represent are canonicalized first. Functions hash by
where they are defined (module, qualified name, file and line), so two
lambdas written on the same line share a hash, and a closure hashes the
same whatever it closed over. ``functools.partial`` hashes by its function
and bound arguments.
"""

from __future__ import annotations

import datetime
import functools
import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

from pgquery.types import QueryKey

# Mappings with non-str keys become tagged pair lists sorted by key type and
# repr; ``{1: "a"}`` and ``{"1": "a"}`` hash apart.
_PAIRS_TAG = "__pgquery_mapping__"


def _describe_callable(value: Any) -> str:
    module = getattr(value, "__module__", None) or ""
    name = getattr(value, "__qualname__", None) or type(value).__qualname__
    ident = f"{module}.{name}" if module else name
    code = getattr(value, "__code__", None)
    if code is not None:
        ident = f"{ident}@{code.co_filename}:{code.co_firstlineno}"
    return ident


def _canonical(value: Any, path: frozenset[int]) -> Any:
    """Turn ``value`` into plain JSON data with a deterministic layout."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if id(value) in path:
        return "<circular>"
    inner = path | {id(value)}
    if isinstance(value, Mapping):
        if all(isinstance(k, str) for k in value):
            return {k: _canonical(v, inner) for k, v in value.items()}
        items = sorted(value.items(), key=lambda item: (type(item[0]).__name__, repr(item[0])))
        return {_PAIRS_TAG: [[_canonical(k, inner), _canonical(v, inner)] for k, v in items]}
    if isinstance(value, (list, tuple)):
        return [_canonical(item, inner) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_canonical(item, inner) for item in value), key=_dumps)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, re.Pattern):
        return value.pattern
    if isinstance(value, functools.partial):
        return {
            "partial": _canonical(value.func, inner),
            "args": _canonical(value.args, inner),
            "keywords": _canonical(value.keywords, inner),
        }
    if callable(value):
        return _describe_callable(value)
    return str(value)


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def hash_query_key(query_key: QueryKey) -> str:
    """Hash a query key into a stable string.

    Segment order is significant; nested mapping keys are sorted, so
    ``{"a": 1, "b": 2}`` and ``{"b": 2, "a": 1}`` hash the same.
    """
    return _dumps(_canonical(list(query_key), frozenset()))


def normalize_query_key(query_key: QueryKey) -> tuple[Any, ...]:
    """Freeze the top level of a key so it can be stored on a query."""
    if isinstance(query_key, (str, bytes)) or not isinstance(query_key, Sequence):
        raise TypeError(f"Query key must be a sequence, got {type(query_key)}")
    return tuple(query_key)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _part_equal(a: Any, b: Any) -> bool:
    """Deep equality for key segments."""
    if a is b:
        return True
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if _is_sequence(a) and _is_sequence(b):
        return len(a) == len(b) and all(_part_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if a.keys() != b.keys():
            return False
        return all(_part_equal(a[k], b[k]) for k in a)
    if isinstance(a, re.Pattern) and isinstance(b, re.Pattern):
        return a.pattern == b.pattern and a.flags == b.flags
    if _is_sequence(a) or _is_sequence(b):
        return False
    if isinstance(a, Mapping) or isinstance(b, Mapping):
        return False
    try:
        return bool(a == b)
    except (TypeError, ValueError):
        return False


def is_equal_key(a: QueryKey, b: QueryKey) -> bool:
    """Check if two query keys are deeply equal."""
    return len(a) == len(b) and matches_query_key(a, b)


def matches_query_key(query_key: QueryKey, prefix: QueryKey) -> bool:
    """Check if ``prefix`` is a component-wise prefix of ``query_key``.

    Invalidating ``("table", "users")`` therefore reaches
    ``("table", "users", "list", {...})`` but not ``("table", "posts")``.
    """
    if len(prefix) > len(query_key):
        return False
    return all(_part_equal(query_key[i], prefix[i]) for i in range(len(prefix)))


__all__ = [
    "hash_query_key",
    "is_equal_key",
    "matches_query_key",
    "normalize_query_key",
]
