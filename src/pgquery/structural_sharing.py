"""Structural sharing.

Keeps object identity for unchanged data so that observers can detect
"nothing changed" with an identity check instead of a deep walk.
"""

from __future__ import annotations

from typing import Any, TypeVar

T = TypeVar("T")

_SCALARS = (str, int, float, bytes, type(None))


def _scalar_equal(a: Any, b: Any) -> bool:
    if type(a) is not type(b):
        # 1 == 1.0 is fine, True == 1 is not
        if isinstance(a, bool) or isinstance(b, bool):
            return False
        if not (isinstance(a, (int, float)) and isinstance(b, (int, float))):
            return False
    return bool(a == b)


def replace_equal_deep(old: Any, new: T) -> T:
    """Return ``old`` if it deeply equals ``new``, else ``new`` reusing equal parts."""
    if old is new:
        return old

    if isinstance(old, dict) and isinstance(new, dict):
        result = {}
        changed = len(old) != len(new)
        for key, value in new.items():
            if key in old:
                shared = replace_equal_deep(old[key], value)
                if shared is not old[key]:
                    changed = True
            else:
                shared = value
                changed = True
            result[key] = shared
        return old if not changed else result  # type: ignore[return-value]

    if (isinstance(old, list) and isinstance(new, list)) or (
        type(old) is tuple and type(new) is tuple
    ):
        items = []
        changed = len(old) != len(new)
        for i, value in enumerate(new):
            if i < len(old):
                shared = replace_equal_deep(old[i], value)
                if shared is not old[i]:
                    changed = True
            else:
                shared = value
            items.append(shared)
        if not changed:
            return old
        return tuple(items) if type(new) is tuple else items  # type: ignore[return-value]

    if isinstance(old, _SCALARS) and isinstance(new, _SCALARS):
        return old if _scalar_equal(old, new) else new

    # Dataclasses, datetimes and other value objects with their own __eq__
    if type(old) is type(new):
        try:
            if old == new:
                return old
        except (TypeError, ValueError):
            pass
    return new


def deep_equal(a: Any, b: Any) -> bool:
    """Deep equality with the same rules structural sharing uses."""
    return replace_equal_deep(a, b) is a


__all__ = ["deep_equal", "replace_equal_deep"]
