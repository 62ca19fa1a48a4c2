"""QueryClient - the entry point tying caches, defaults and environment together."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Literal, TypeVar

from pgquery.errors import QueryCancelledError
from pgquery.managers import FocusManager, OnlineManager
from pgquery.managers import focus_manager as default_focus_manager
from pgquery.managers import online_manager as default_online_manager
from pgquery.mutation_cache import MutationCache, MutationFilters
from pgquery.options import (
    DEFAULT_MUTATION_OPTIONS,
    DEFAULT_QUERY_OPTIONS,
    DefaultOptions,
    MutationOptions,
    QueryOptions,
)
from pgquery.query import wait_for_fetch
from pgquery.query_cache import Filters, QueryCache, QueryFilters
from pgquery.query_key import hash_query_key, matches_query_key, normalize_query_key
from pgquery.types import (
    FetchStatus,
    MutationCacheEvent,
    MutationKey,
    MutationStatus,
    QueryCacheEvent,
    QueryKey,
    QueryState,
    Unsubscribe,
    Updater,
)
from pgquery.utils import consume_task_exception, running_loop

logger = logging.getLogger(__name__)

T = TypeVar("T")

RefetchType = Literal["active", "inactive", "all", "none"]


class QueryClient:
    """Async query client.

    Owns a ``QueryCache`` and a ``MutationCache``, resolves layered options
    and offers the imperative cache operations (fetch, read, write,
    invalidate, refetch, cancel).

    Args:
        query_cache: Cache to use (default: a new one).
        mutation_cache: Cache to use (default: a new one).
        default_options: Client-wide query and mutation defaults.
        request_deduplication: Join concurrent ``fetch_query`` calls for the
            same key before any staleness check.
        logger: If given, every cache event is logged on it at debug level.
        focus_manager: Defaults to the module-level singleton.
        online_manager: Defaults to the module-level singleton.
    """

    def __init__(
        self,
        *,
        query_cache: QueryCache | None = None,
        mutation_cache: MutationCache | None = None,
        default_options: DefaultOptions | None = None,
        request_deduplication: bool = True,
        logger: logging.Logger | None = None,
        focus_manager: FocusManager | None = None,
        online_manager: OnlineManager | None = None,
    ) -> None:
        self.query_cache = query_cache or QueryCache()
        self.mutation_cache = mutation_cache or MutationCache()
        self.focus_manager = focus_manager or default_focus_manager
        self.online_manager = online_manager or default_online_manager
        self._default_options = default_options or DefaultOptions()
        self._query_defaults: list[tuple[tuple[Any, ...], QueryOptions[Any]]] = []
        self._mutation_defaults: list[tuple[tuple[Any, ...], MutationOptions]] = []
        self._request_deduplication = request_deduplication
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._mount_count = 0
        self._unsubscribers: list[Unsubscribe] = []
        self._logger = logger
        self._log_unsubscribers: list[Unsubscribe] = []
        self._is_destroyed = False
        if logger is not None:
            self._log_unsubscribers = [
                self.query_cache.subscribe(self._log_query_event),
                self.mutation_cache.subscribe(self._log_mutation_event),
            ]

    def _log_query_event(self, event: QueryCacheEvent) -> None:
        if self._logger is None:
            return
        self._logger.debug(
            "query %s %s%s",
            event.type,
            event.query.query_hash,
            f" ({event.action})" if event.action else "",
        )

    def _log_mutation_event(self, event: MutationCacheEvent) -> None:
        if self._logger is None:
            return
        self._logger.debug(
            "mutation %s %d%s",
            event.type,
            event.mutation.mutation_id,
            f" ({event.action})" if event.action else "",
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def mount(self) -> None:
        """Start reacting to focus and connectivity changes."""
        self._mount_count += 1
        if self._mount_count != 1:
            return
        self._unsubscribers = [
            self.focus_manager.subscribe(self._on_focus_change),
            self.online_manager.subscribe(self._on_online_change),
        ]

    def unmount(self) -> None:
        self._mount_count -= 1
        if self._mount_count != 0:
            return
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _on_focus_change(self, focused: bool) -> None:
        if focused:
            self.query_cache.on_focus()

    def _on_online_change(self, online: bool) -> None:
        if not online:
            return
        self.query_cache.on_online()
        loop = running_loop()
        if loop is None:
            logger.debug("No running event loop, paused mutations stay paused")
            return
        task = loop.create_task(self.resume_paused_mutations())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        task.add_done_callback(consume_task_exception)

    def clear(self) -> None:
        """Drop every query and mutation."""
        self.query_cache.clear()
        self.mutation_cache.clear()

    def destroy(self) -> None:
        """Unmount, stop background work and drop every query and mutation.

        Calling it again is a no-op.
        """
        if self._is_destroyed:
            return
        self._is_destroyed = True
        self._mount_count = 0
        for unsubscribe in [*self._unsubscribers, *self._log_unsubscribers]:
            unsubscribe()
        self._unsubscribers = []
        self._log_unsubscribers = []
        for task in list(self._background_tasks):
            task.cancel()
        self._in_flight.clear()
        self.clear()

    def get_query_cache(self) -> QueryCache:
        return self.query_cache

    def get_mutation_cache(self) -> MutationCache:
        return self.mutation_cache

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    async def fetch_query(self, options: QueryOptions[T]) -> T:
        """Return cached data if it is fresh, otherwise fetch it.

        Raises the query function's final error.
        """
        defaulted = self.default_query_options(options)
        query_hash = self._hash(defaulted)

        if self._request_deduplication:
            existing = self._in_flight.get(query_hash)
            if existing is not None and not existing.done():
                return await wait_for_fetch(existing)

        query = self.query_cache.build(self, defaulted)
        if query.state.data is not None and not query.is_stale_by_time(defaulted.stale_time_ms):
            return query.state.data

        task = query.start_fetch(defaulted)
        if self._request_deduplication:
            self._in_flight[query_hash] = task
            task.add_done_callback(lambda done: self._forget_in_flight(query_hash, done))
        return await wait_for_fetch(task)

    def _forget_in_flight(self, query_hash: str, task: asyncio.Task[Any]) -> None:
        if self._in_flight.get(query_hash) is task:
            del self._in_flight[query_hash]

    async def prefetch_query(self, options: QueryOptions[Any]) -> None:
        """Like ``fetch_query`` but never raises; errors stay in query state."""
        try:
            await self.fetch_query(options)
        except Exception as error:
            logger.debug("Prefetch failed: %r", error)

    async def ensure_query_data(
        self, options: QueryOptions[T], *, revalidate_if_stale: bool = False
    ) -> T:
        """Return cached data when present, fetching only on a miss.

        With ``revalidate_if_stale`` stale data is still returned, and a
        background refetch is started.
        """
        defaulted = self.default_query_options(options)
        query = self.query_cache.get(self._hash(defaulted))
        if query is None or query.state.data is None:
            return await self.fetch_query(defaulted)
        if revalidate_if_stale and query.is_stale_by_time(defaulted.stale_time_ms):
            task = asyncio.get_running_loop().create_task(self.prefetch_query(defaulted))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)
        return query.state.data

    # -------------------------------------------------------------------------
    # Reading and writing
    # -------------------------------------------------------------------------

    def get_query_data(self, query_key: QueryKey) -> Any | None:
        query = self.query_cache.find(query_key)
        return query.state.data if query is not None else None

    def get_queries_data(self, filters: Filters) -> list[tuple[tuple[Any, ...], Any]]:
        return [(query.query_key, query.state.data) for query in self.query_cache.find_all(filters)]

    def set_query_data(
        self,
        query_key: QueryKey,
        updater: Updater[Any],
        *,
        updated_at: int | None = None,
    ) -> Any | None:
        """Write data for ``query_key``, creating the query if needed.

        ``updater`` is a value or a function of the previous data. When it
        resolves to ``None`` nothing is written.
        """
        previous = self.get_query_data(query_key)
        data = updater(previous) if callable(updater) else updater
        if data is None:
            return None
        defaulted = self.default_query_options(QueryOptions(query_key=query_key))
        query = self.query_cache.build(self, defaulted)
        return query.set_data(data, updated_at=updated_at, manual=True)

    def set_queries_data(
        self, filters: Filters, updater: Updater[Any]
    ) -> list[tuple[tuple[Any, ...], Any]]:
        return [
            (query.query_key, self.set_query_data(query.query_key, updater))
            for query in self.query_cache.find_all(filters)
        ]

    def get_query_state(self, query_key: QueryKey) -> QueryState[Any] | None:
        query = self.query_cache.find(query_key)
        return query.state if query is not None else None

    # -------------------------------------------------------------------------
    # Invalidation, refetching, cancellation
    # -------------------------------------------------------------------------

    async def invalidate_queries(
        self,
        filters: Filters = None,
        *,
        refetch_type: RefetchType = "active",
        throw_on_error: bool = False,
    ) -> None:
        """Mark matching queries stale and refetch those of ``refetch_type``.

        A key prefix invalidates every query whose key starts with it.
        """
        resolved = QueryFilters.coerce(filters)
        for query in self.query_cache.find_all(resolved):
            query.invalidate()
        if refetch_type == "none":
            return
        await self.refetch_queries(
            replace(resolved, type=refetch_type), throw_on_error=throw_on_error
        )

    async def refetch_queries(
        self,
        filters: Filters = None,
        *,
        cancel_refetch: bool = True,
        throw_on_error: bool = False,
    ) -> None:
        """Refetch matching queries that are enabled and have a query function."""
        tasks = [
            query.start_fetch(cancel_refetch=cancel_refetch)
            for query in self.query_cache.find_all(filters)
            if not query.is_disabled() and query.has_query_fn()
        ]
        outcomes = await asyncio.gather(
            *(wait_for_fetch(task) for task in tasks), return_exceptions=True
        )
        if throw_on_error:
            for outcome in outcomes:
                if isinstance(outcome, Exception) and not isinstance(
                    outcome, QueryCancelledError
                ):
                    raise outcome

    def cancel_queries(self, filters: Filters = None, *, revert: bool = True) -> None:
        for query in self.query_cache.find_all(filters):
            query.cancel(revert=revert)

    async def reset_queries(self, filters: Filters = None, *, throw_on_error: bool = False) -> None:
        """Reset matching queries to their initial state, then refetch the active ones."""
        resolved = QueryFilters.coerce(filters)
        for query in self.query_cache.find_all(resolved):
            query.reset()
        await self.refetch_queries(replace(resolved, type="active"), throw_on_error=throw_on_error)

    def remove_queries(self, filters: Filters = None) -> None:
        for query in self.query_cache.find_all(filters):
            self.query_cache.remove(query)

    def is_fetching(self, filters: Filters = None) -> int:
        resolved = replace(QueryFilters.coerce(filters), fetch_status=FetchStatus.FETCHING)
        return len(self.query_cache.find_all(resolved))

    def is_mutating(self, filters: MutationFilters | None = None) -> int:
        resolved = replace(filters or MutationFilters(), status=MutationStatus.LOADING)
        return len(self.mutation_cache.find_all(resolved))

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def execute_mutation(self, options: MutationOptions, variables: Any) -> Any:
        """Run one mutation outside any observer."""
        mutation = self.mutation_cache.build(self, options)
        return await mutation.execute(variables)

    async def resume_paused_mutations(self) -> list[Any]:
        return await self.mutation_cache.resume_paused_mutations()

    # -------------------------------------------------------------------------
    # Defaults
    # -------------------------------------------------------------------------

    def get_default_options(self) -> DefaultOptions:
        return self._default_options

    def set_default_options(self, options: DefaultOptions) -> None:
        self._default_options = options

    def set_query_defaults(self, query_key: QueryKey, options: QueryOptions[Any]) -> None:
        """Defaults for every query whose key starts with ``query_key``."""
        key = normalize_query_key(query_key)
        key_hash = hash_query_key(key)
        self._query_defaults = [
            (k, o) for k, o in self._query_defaults if hash_query_key(k) != key_hash
        ]
        self._query_defaults.append((key, options))

    def get_query_defaults(self, query_key: QueryKey) -> QueryOptions[Any] | None:
        matching = [o for k, o in self._query_defaults if matches_query_key(query_key, k)]
        if not matching:
            return None
        return matching[0].merged(*matching[1:])

    def set_mutation_defaults(self, mutation_key: MutationKey, options: MutationOptions) -> None:
        key = normalize_query_key(mutation_key)
        key_hash = hash_query_key(key)
        self._mutation_defaults = [
            (k, o) for k, o in self._mutation_defaults if hash_query_key(k) != key_hash
        ]
        self._mutation_defaults.append((key, options))

    def get_mutation_defaults(self, mutation_key: MutationKey) -> MutationOptions | None:
        matching = [o for k, o in self._mutation_defaults if matches_query_key(mutation_key, k)]
        if not matching:
            return None
        return matching[0].merged(*matching[1:])

    def default_query_options(self, options: QueryOptions[T]) -> QueryOptions[T]:
        """Resolve library, client, key-prefix and per-call options, in that order."""
        key_defaults = (
            self.get_query_defaults(options.query_key) if options.query_key is not None else None
        )
        return DEFAULT_QUERY_OPTIONS.merged(self._default_options.queries, key_defaults, options)

    def default_mutation_options(self, options: MutationOptions) -> MutationOptions:
        key_defaults = (
            self.get_mutation_defaults(options.mutation_key)
            if options.mutation_key is not None
            else None
        )
        return DEFAULT_MUTATION_OPTIONS.merged(
            self._default_options.mutations, key_defaults, options
        )

    @staticmethod
    def _hash(options: QueryOptions[Any]) -> str:
        if options.query_key is None:
            raise ValueError("query_key is required")
        return hash_query_key(options.query_key)


__all__ = ["QueryClient", "RefetchType"]
