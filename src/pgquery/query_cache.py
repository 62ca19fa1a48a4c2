"""QueryCache - the registry of queries, keyed by their hash."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Union

from pgquery.query import Query
from pgquery.query_key import hash_query_key, is_equal_key, matches_query_key, normalize_query_key
from pgquery.types import FetchStatus, QueryCacheEvent, QueryKey, QueryState, Unsubscribe

if TYPE_CHECKING:
    from pgquery.client import QueryClient
    from pgquery.options import QueryOptions

logger = logging.getLogger(__name__)

QueryType = Literal["active", "inactive", "all"]


@dataclass(frozen=True, slots=True)
class QueryFilters:
    """Selects queries by key prefix, activity, staleness and fetch status.

    Every set criterion must hold. ``query_key`` is a prefix unless
    ``exact`` is true.
    """

    query_key: QueryKey | None = None
    exact: bool = False
    type: QueryType = "all"
    stale: bool | None = None
    fetch_status: FetchStatus | None = None
    predicate: Callable[[Query[Any]], bool] | None = None

    @classmethod
    def coerce(cls, value: QueryFilters | QueryKey | None) -> QueryFilters:
        """Accept filters, a bare key, or ``None`` (everything)."""
        if value is None:
            return cls()
        if isinstance(value, QueryFilters):
            return value
        return cls(query_key=normalize_query_key(value))

    def matches(self, query: Query[Any]) -> bool:
        if self.query_key is not None:
            if self.exact:
                if not is_equal_key(query.query_key, self.query_key):
                    return False
            elif not matches_query_key(query.query_key, self.query_key):
                return False
        if self.type != "all":
            if query.is_active() != (self.type == "active"):
                return False
        if self.stale is not None and query.is_stale() != self.stale:
            return False
        if self.fetch_status is not None and query.state.fetch_status != self.fetch_status:
            return False
        if self.predicate is not None and not self.predicate(query):
            return False
        return True


Filters = Union[QueryFilters, Sequence[Any], None]


class QueryCache:
    """Holds every Query of a client and broadcasts their changes."""

    def __init__(self) -> None:
        self._queries: dict[str, Query[Any]] = {}
        self._listeners: list[Callable[[QueryCacheEvent], None]] = []

    def __len__(self) -> int:
        return len(self._queries)

    def __contains__(self, query_hash: object) -> bool:
        return query_hash in self._queries

    def build(
        self,
        client: QueryClient,
        options: QueryOptions[Any],
        state: QueryState[Any] | None = None,
    ) -> Query[Any]:
        """Return the query for ``options.query_key``, creating it if needed.

        An existing query is returned as is; its options are only replaced
        when it fetches or an observer sets them.
        """
        if options.query_key is None:
            raise ValueError("query_key is required")
        query_key = normalize_query_key(options.query_key)
        query_hash = hash_query_key(query_key)
        query = self._queries.get(query_hash)
        if query is not None:
            return query
        query = Query(
            cache=self,
            query_key=query_key,
            query_hash=query_hash,
            options=client.default_query_options(options),
            online_manager=client.online_manager,
            state=state,
        )
        self.add(query)
        return query

    def add(self, query: Query[Any]) -> None:
        if query.query_hash in self._queries:
            return
        self._queries[query.query_hash] = query
        self.notify(QueryCacheEvent("added", query))

    def get(self, query_hash: str) -> Query[Any] | None:
        return self._queries.get(query_hash)

    def get_all(self) -> list[Query[Any]]:
        return list(self._queries.values())

    def find(self, filters: Filters) -> Query[Any] | None:
        """First query matching ``filters``; a bare key matches exactly."""
        if filters is not None and not isinstance(filters, QueryFilters):
            return self.get(hash_query_key(filters))
        resolved = QueryFilters.coerce(filters)
        if resolved.query_key is not None and resolved.exact:
            query = self.get(hash_query_key(resolved.query_key))
            return query if query is not None and resolved.matches(query) else None
        return next((q for q in self._queries.values() if resolved.matches(q)), None)

    def find_all(self, filters: Filters = None) -> list[Query[Any]]:
        resolved = QueryFilters.coerce(filters)
        return [q for q in self._queries.values() if resolved.matches(q)]

    def remove(self, query: Query[Any]) -> None:
        current = self._queries.get(query.query_hash)
        if current is not query:
            return
        query.destroy()
        del self._queries[query.query_hash]
        self.notify(QueryCacheEvent("removed", query))

    def clear(self) -> None:
        for query in self.get_all():
            self.remove(query)

    def subscribe(self, listener: Callable[[QueryCacheEvent], None]) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, event: QueryCacheEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("QueryCache listener failed on %s event", event.type)

    def on_focus(self) -> None:
        for query in self.get_all():
            query.on_focus()

    def on_online(self) -> None:
        for query in self.get_all():
            query.on_online()


__all__ = ["Filters", "QueryCache", "QueryFilters", "QueryType"]
