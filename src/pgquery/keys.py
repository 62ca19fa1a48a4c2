"""Query key factories.

Keys are hierarchical tuples, so a shorter key built by the same factory is a
prefix of every longer one and can be used for invalidation.
"""

from collections.abc import Callable, Mapping
from typing import Any, Literal

Operation = Literal["insert", "update", "delete", "upsert"]


def define_keys(
    definitions: dict[str, Callable[..., tuple[Any, ...]]],
) -> dict[str, Callable[..., tuple[Any, ...]]]:
    """
    Define all query keys in a centralized location.

    Example:
        keys = define_keys({
            "users": lambda: ("users",),
            "user": lambda id: ("users", "item", id),
            "user_posts": lambda id: ("users", "item", id, "posts"),
        })

        keys["user"](1)        # ("users", "item", 1)
        keys["user_posts"](1)  # ("users", "item", 1, "posts")
    """
    result: dict[str, Callable[..., tuple[Any, ...]]] = {}
    for name, fn in definitions.items():

        def make_key(
            *args: Any, _fn: Callable[..., tuple[Any, ...]] = fn, **kwargs: Any
        ) -> tuple[Any, ...]:
            return tuple(_fn(*args, **kwargs))

        result[name] = make_key
    return result


class QueryKeyFactory:
    """Builds keys for table, row and RPC queries under one base segment.

    Usage:
        keys = QueryKeyFactory()
        keys.table_list("users", {"active": True})
        # ("pgrestify", "tables", "users", "list", {"active": True})
    """

    def __init__(self, base: str = "pgrestify") -> None:
        self._base = base

    @property
    def base(self) -> str:
        return self._base

    def all(self) -> tuple[Any, ...]:
        return (self._base,)

    def tables(self) -> tuple[Any, ...]:
        return (self._base, "tables")

    def table(self, name: str) -> tuple[Any, ...]:
        return (self._base, "tables", name)

    def table_list(self, name: str, filters: Any = None) -> tuple[Any, ...]:
        return (*self.table(name), "list", filters)

    def table_infinite(self, name: str, filters: Any = None) -> tuple[Any, ...]:
        return (*self.table(name), "infinite", filters)

    def table_item(self, name: str, id: Any) -> tuple[Any, ...]:
        return (*self.table(name), "item", id)

    def table_count(self, name: str, filters: Any = None) -> tuple[Any, ...]:
        return (*self.table(name), "count", filters)

    def rpc(self, name: str, args: Mapping[str, Any] | None = None) -> tuple[Any, ...]:
        if args is not None:
            args = {k: args[k] for k in sorted(args)}
        return (self._base, "rpc", name, args)

    def custom(self, *parts: Any) -> tuple[Any, ...]:
        return (self._base, *parts)

    def invalidation_keys(self, table: str, operation: Operation) -> list[tuple[Any, ...]]:
        """Keys to invalidate after a write to ``table``.

        Inserts only change collections; every other write may touch any row.
        """
        if operation == "insert":
            return [
                (*self.table(table), "list"),
                (*self.table(table), "count"),
                (*self.table(table), "infinite"),
            ]
        return [self.table(table)]

    def extract_table_name(self, query_key: tuple[Any, ...]) -> str | None:
        if len(query_key) >= 3 and tuple(query_key[:2]) == (self._base, "tables"):
            name = query_key[2]
            return name if isinstance(name, str) else None
        return None

    def extract_operation(self, query_key: tuple[Any, ...]) -> str | None:
        if len(query_key) >= 4 and tuple(query_key[:2]) == (self._base, "tables"):
            operation = query_key[3]
            return operation if isinstance(operation, str) else None
        return None


query_keys = QueryKeyFactory()

__all__ = ["Operation", "QueryKeyFactory", "define_keys", "query_keys"]
