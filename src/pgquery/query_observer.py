"""QueryObserver - a live subscription to one query.

The observer derives a ``QueryObserverResult`` from its query's state
(applying ``select``, staleness, placeholder and previous data), and only
notifies its listeners when a field they care about actually changed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pgquery.duration import parse_duration
from pgquery.options import QueryOptions
from pgquery.structural_sharing import replace_equal_deep
from pgquery.types import FetchStatus, QueryState, QueryStatus, Unsubscribe
from pgquery.utils import now_ms, schedule

if TYPE_CHECKING:
    from pgquery.client import QueryClient
    from pgquery.query import Query

logger = logging.getLogger(__name__)

TData = TypeVar("TData")


@dataclass(frozen=True, slots=True)
class QueryObserverResult(Generic[TData]):
    """What an observer's listeners see."""

    data: TData | None
    data_updated_at: int
    error: BaseException | None
    error_updated_at: int
    failure_count: int
    failure_reason: BaseException | None
    status: QueryStatus
    fetch_status: FetchStatus
    is_error: bool
    is_fetched: bool
    is_fetched_after_mount: bool
    is_fetching: bool
    is_initial_loading: bool
    is_loading: bool
    is_loading_error: bool
    is_paused: bool
    is_pending: bool
    is_placeholder_data: bool
    is_previous_data: bool
    is_refetch_error: bool
    is_refetching: bool
    is_stale: bool
    is_success: bool
    select_error: BaseException | None = None


class TrackedResult:
    """Read-only view of a result that records which fields are read."""

    __slots__ = ("_result", "_tracked")

    def __init__(self, result: QueryObserverResult[Any], tracked: set[str]) -> None:
        self._result = result
        self._tracked = tracked

    def __getattr__(self, name: str) -> Any:
        value = getattr(self._result, name)
        self._tracked.add(name)
        return value

    def __repr__(self) -> str:
        return f"TrackedResult({self._result!r})"


_VALUE_TYPES = (int, float, str)


def _differs(a: Any, b: Any) -> bool:
    if a is b:
        return False
    if type(a) is type(b) and isinstance(a, _VALUE_TYPES):
        return a != b
    return True


def _changed_props(prev: QueryObserverResult[Any], next_: QueryObserverResult[Any]) -> list[str]:
    return [f.name for f in fields(next_) if _differs(getattr(prev, f.name), getattr(next_, f.name))]


def _resolve_enabled(query: Query[Any], options: QueryOptions[Any]) -> bool:
    enabled = options.enabled
    if callable(enabled):
        return bool(enabled(query))
    return enabled is not False


def _is_stale(query: Query[Any], options: QueryOptions[Any]) -> bool:
    return query.is_stale_by_time(options.stale_time_ms)


def _should_fetch_on(query: Query[Any], options: QueryOptions[Any], value: Any) -> bool:
    if not _resolve_enabled(query, options):
        return False
    if callable(value):
        value = value(query)
    if value == "always":
        return True
    return bool(value) and _is_stale(query, options)


def _should_fetch_on_mount(query: Query[Any], options: QueryOptions[Any]) -> bool:
    if not query.state.data_updated_at:
        return _resolve_enabled(query, options)
    return _should_fetch_on(query, options, options.refetch_on_mount)


class QueryObserver(Generic[TData]):
    """Binds one set of query options to a live subscription.

    Nothing is fetched until the first listener subscribes. The last
    unsubscribe destroys the observer and leaves the query to garbage
    collection.
    """

    def __init__(self, client: QueryClient, options: QueryOptions[TData]) -> None:
        self.client = client
        self.options: QueryOptions[TData] = client.default_query_options(options)
        self._listeners: list[Callable[[QueryObserverResult[TData]], None]] = []
        self._tracked_props: set[str] = set()
        self._current_query: Query[TData] | None = None
        self._current_query_initial_state: QueryState[TData] = QueryState()
        self._current_result: QueryObserverResult[TData] | None = None
        self._previous_query_result: QueryObserverResult[TData] | None = None
        self._select_fn: Callable[[Any], Any] | None = None
        self._select_input: Any = None
        self._select_result: Any = None
        self._select_error: BaseException | None = None
        self._stale_handle: asyncio.TimerHandle | None = None
        self._interval_handle: asyncio.TimerHandle | None = None
        self._current_refetch_interval: float | None = None

        self._update_query()
        self.query.set_options(self.options)
        self.update_result(notify=False)

    def __repr__(self) -> str:
        return f"QueryObserver({self.query.query_hash}, listeners={len(self._listeners)})"

    @property
    def query(self) -> Query[TData]:
        if self._current_query is None:
            raise RuntimeError("QueryObserver is not bound to a query")
        return self._current_query

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Callable[[QueryObserverResult[TData]], None]) -> Unsubscribe:
        """Register ``listener``; the first one mounts the observer."""
        self._listeners.append(listener)
        if len(self._listeners) == 1:
            self._on_subscribe()

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
                if not self._listeners:
                    self.destroy()

        return unsubscribe

    def has_listeners(self) -> bool:
        return bool(self._listeners)

    def _on_subscribe(self) -> None:
        self.query.add_observer(self)
        if _should_fetch_on_mount(self.query, self.options):
            self._execute_fetch()
        else:
            self.update_result()
        self._update_timers()

    def destroy(self) -> None:
        self._listeners.clear()
        self._clear_timers()
        self.query.remove_observer(self)

    # -------------------------------------------------------------------------
    # Options
    # -------------------------------------------------------------------------

    def set_options(self, options: QueryOptions[TData], *, notify: bool = True) -> None:
        """Apply new options.

        A different key moves the observer (and its listeners) to another
        query; a different ``query_fn`` refetches; timers are rebuilt.
        """
        prev_options = self.options
        prev_query = self.query
        self.options = self.client.default_query_options(options)
        if self.options.query_key is None:
            raise ValueError("query_key is required")

        self._update_query()
        self.query.set_options(self.options)

        if self.has_listeners():
            if self._should_fetch_optionally(prev_query, prev_options):
                self._execute_fetch()
            self.update_result(notify=notify)
            self._update_timers()
        else:
            self.update_result(notify=notify)

    def _should_fetch_optionally(
        self, prev_query: Query[TData], prev_options: QueryOptions[TData]
    ) -> bool:
        query, options = self.query, self.options
        if query is not prev_query:
            return _should_fetch_on_mount(query, options)
        if not _resolve_enabled(query, options):
            return False
        if options.query_fn is not prev_options.query_fn:
            return True
        if not _resolve_enabled(query, prev_options):
            return _is_stale(query, options)
        return False

    def _update_query(self) -> None:
        query = self.client.query_cache.build(self.client, self.options)
        if query is self._current_query:
            return
        prev_query = self._current_query
        self._current_query = query
        self._current_query_initial_state = query.state
        self._previous_query_result = self._current_result
        if prev_query is not None and self.has_listeners():
            prev_query.remove_observer(self)
            query.add_observer(self)

    def is_enabled(self) -> bool:
        return _resolve_enabled(self.query, self.options)

    def should_fetch_on_window_focus(self) -> bool:
        return _should_fetch_on(self.query, self.options, self.options.refetch_on_window_focus)

    def should_fetch_on_reconnect(self) -> bool:
        return _should_fetch_on(self.query, self.options, self.options.refetch_on_reconnect)

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    def start_refetch(self, *, cancel_refetch: bool = True) -> asyncio.Task[TData]:
        """Start (or join) a fetch of the current query in the background."""
        self._update_query()
        return self.query.start_fetch(self.options, cancel_refetch=cancel_refetch)

    def _execute_fetch(self) -> asyncio.Task[TData]:
        return self.start_refetch(cancel_refetch=False)

    async def refetch(
        self, *, throw_on_error: bool = False, cancel_refetch: bool = True
    ) -> QueryObserverResult[TData]:
        """Fetch again and return the resulting observer result."""
        task = self.start_refetch(cancel_refetch=cancel_refetch)
        await self._settle(task)
        self.update_result()
        result = self._result()
        self._raise_if_needed(result, force=throw_on_error)
        return result

    @staticmethod
    async def _settle(task: asyncio.Task[Any]) -> None:
        try:
            # Errors are recorded in query state and surface through the result
            with contextlib.suppress(Exception):
                await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def fetch_optimistic(self, options: QueryOptions[TData]) -> QueryObserverResult[TData]:
        """Fetch the query ``options`` describe and return its result."""
        defaulted = self.client.default_query_options(options)
        query = self.client.query_cache.build(self.client, defaulted)
        await query.fetch(defaulted)
        return self.create_result(query, defaulted)

    async def get_next_result(self, *, throw_on_error: bool = False) -> QueryObserverResult[TData]:
        """Wait for the next result that is not fetching."""
        future: asyncio.Future[QueryObserverResult[TData]] = (
            asyncio.get_running_loop().create_future()
        )

        def listener(result: QueryObserverResult[TData]) -> None:
            if not result.is_fetching and not future.done():
                future.set_result(result)

        unsubscribe = self.subscribe(listener)
        try:
            current = self._current_result
            if current is not None and not current.is_fetching and not future.done():
                future.set_result(current)
            result = await future
        finally:
            unsubscribe()
        self._raise_if_needed(result, force=throw_on_error)
        return result

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    def get_current_result(self) -> QueryObserverResult[TData]:
        """The latest result. Raises its error when ``throw_on_error`` applies."""
        result = self._result()
        self._raise_if_needed(result)
        return result

    def _result(self) -> QueryObserverResult[TData]:
        if self._current_result is None:
            raise RuntimeError("QueryObserver has not computed a result yet")
        return self._current_result

    def get_optimistic_result(self, options: QueryOptions[TData]) -> QueryObserverResult[TData]:
        """The result ``options`` would produce right now, assuming a fetch starts."""
        defaulted = self.client.default_query_options(options)
        query = self.client.query_cache.build(self.client, defaulted)
        return self.create_result(query, defaulted, optimistic=True)

    def track_result(self, result: QueryObserverResult[TData]) -> TrackedResult:
        """Wrap ``result`` so reading a field subscribes to changes of that field."""
        return TrackedResult(result, self._tracked_props)

    def _should_throw(self, error: BaseException) -> bool:
        throw_on_error = self.options.throw_on_error
        if callable(throw_on_error):
            return bool(throw_on_error(error, self.query))
        return bool(throw_on_error)

    def _raise_if_needed(self, result: QueryObserverResult[TData], *, force: bool = False) -> None:
        error = result.error
        if result.is_error and error is not None and (force or self._should_throw(error)):
            raise error

    def on_query_update(self) -> None:
        self.update_result()
        if self.has_listeners():
            self._update_timers()

    def update_result(self, *, notify: bool = True) -> None:
        prev = self._current_result
        next_ = self.create_result(self.query, self.options)
        if prev is None:
            self._current_result = next_
            return
        changed = _changed_props(prev, next_)
        if not changed:
            return
        self._current_result = next_
        if notify and self._should_notify(changed):
            self._notify()

    def _should_notify(self, changed: list[str]) -> bool:
        notify_props = self.options.notify_on_change_props
        if notify_props == "all":
            return True
        if notify_props is None:
            if not self._tracked_props:
                return True
            include = set(self._tracked_props)
        else:
            include = set(notify_props)
        if self.options.throw_on_error:
            include.add("error")
        return any(name in include for name in changed)

    def _notify(self) -> None:
        result = self._result()
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception:
                logger.exception("QueryObserver listener failed for %s", self.query.query_hash)

    def _select(
        self, data: Any, select: Callable[[Any], Any], options: QueryOptions[Any]
    ) -> Any:
        if data is self._select_input and select is self._select_fn:
            return self._select_result
        self._select_fn = select
        self._select_input = data
        try:
            selected = select(data)
        except Exception as error:
            self._select_error = error
            return self._select_result
        self._select_error = None
        prev_data = self._current_result.data if self._current_result is not None else None
        sharing = options.structural_sharing
        if callable(sharing):
            selected = sharing(prev_data, selected)
        elif sharing is not False:
            selected = replace_equal_deep(prev_data, selected)
        self._select_result = selected
        return selected

    def create_result(
        self,
        query: Query[TData],
        options: QueryOptions[TData],
        *,
        optimistic: bool = False,
    ) -> QueryObserverResult[TData]:
        state = query.state
        status, fetch_status = state.status, state.fetch_status
        data_updated_at, error_updated_at = state.data_updated_at, state.error_updated_at
        error = state.error
        is_previous_data = is_placeholder_data = False
        select_error: BaseException | None = None

        if optimistic:
            mounted = self.has_listeners()
            if (not mounted and _should_fetch_on_mount(query, options)) or (
                mounted and query is not self.query and _should_fetch_on_mount(query, options)
            ):
                fetch_status = (
                    FetchStatus.FETCHING
                    if self.client.online_manager.is_online()
                    else FetchStatus.PAUSED
                )
                if not data_updated_at:
                    status = QueryStatus.LOADING

        previous = self._previous_query_result
        data: Any = None
        if (
            options.keep_previous_data
            and not state.data_updated_at
            and previous is not None
            and previous.is_success
            and previous.data is not None
            and status is not QueryStatus.ERROR
        ):
            data = previous.data
            data_updated_at = previous.data_updated_at
            status = previous.status
            is_previous_data = True
        elif state.data is not None:
            if options.select is not None:
                data = self._select(state.data, options.select, options)
                select_error = self._select_error
            else:
                data = state.data

        if (
            data is None
            and not is_previous_data
            and options.placeholder_data is not None
            and status in (QueryStatus.IDLE, QueryStatus.LOADING)
        ):
            placeholder = options.placeholder_data
            if callable(placeholder):
                placeholder = placeholder(previous.data if previous is not None else None)
            if placeholder is not None:
                if options.select is not None:
                    placeholder = self._select(placeholder, options.select, options)
                    select_error = self._select_error
                status = QueryStatus.SUCCESS
                data = placeholder
                is_placeholder_data = True

        if select_error is not None:
            error = select_error
            error_updated_at = now_ms()
            status = QueryStatus.ERROR

        initial = self._current_query_initial_state if query is self.query else state
        is_fetching = fetch_status is FetchStatus.FETCHING
        is_pending = status in (QueryStatus.IDLE, QueryStatus.LOADING)
        is_error = status is QueryStatus.ERROR
        is_loading = is_pending and is_fetching
        return QueryObserverResult(
            data=data,
            data_updated_at=data_updated_at,
            error=error,
            error_updated_at=error_updated_at,
            failure_count=state.failure_count,
            failure_reason=state.failure_reason,
            status=status,
            fetch_status=fetch_status,
            is_error=is_error,
            is_fetched=state.data_updated_at > 0 or state.error_updated_at > 0,
            is_fetched_after_mount=(
                state.data_updated_at > initial.data_updated_at
                or state.error_updated_at > initial.error_updated_at
            ),
            is_fetching=is_fetching,
            is_initial_loading=is_loading and not state.data_updated_at,
            is_loading=is_loading,
            is_loading_error=is_error and not state.data_updated_at,
            is_paused=fetch_status is FetchStatus.PAUSED,
            is_pending=is_pending,
            is_placeholder_data=is_placeholder_data,
            is_previous_data=is_previous_data,
            is_refetch_error=is_error and state.data_updated_at > 0,
            is_refetching=is_fetching and not is_pending,
            is_stale=_is_stale(query, options),
            is_success=status is QueryStatus.SUCCESS,
            select_error=select_error,
        )

    # -------------------------------------------------------------------------
    # Timers
    # -------------------------------------------------------------------------

    def _update_timers(self) -> None:
        self._update_stale_timeout()
        self._update_refetch_interval(self._compute_refetch_interval())

    def _clear_timers(self) -> None:
        if self._stale_handle is not None:
            self._stale_handle.cancel()
            self._stale_handle = None
        if self._interval_handle is not None:
            self._interval_handle.cancel()
            self._interval_handle = None

    def _update_stale_timeout(self) -> None:
        if self._stale_handle is not None:
            self._stale_handle.cancel()
            self._stale_handle = None
        state = self.query.state
        stale_time = self.options.stale_time_ms
        if not state.data_updated_at or state.is_invalidated or math.isinf(stale_time):
            return
        remaining = state.data_updated_at + stale_time - now_ms()
        if remaining < 0:
            return
        # +1 so the check runs strictly after the boundary
        self._stale_handle = schedule(remaining + 1, self._on_stale_timeout)

    def _on_stale_timeout(self) -> None:
        self._stale_handle = None
        self.update_result()

    def _compute_refetch_interval(self) -> float | None:
        interval = self.options.refetch_interval
        if callable(interval):
            interval = interval(self.query.state.data, self.query)
        if interval is None or interval is False:
            return None
        interval_ms = parse_duration(interval)
        if interval_ms <= 0 or math.isinf(interval_ms):
            return None
        return interval_ms

    def _update_refetch_interval(self, interval: float | None) -> None:
        if self._interval_handle is not None:
            self._interval_handle.cancel()
            self._interval_handle = None
        self._current_refetch_interval = interval
        if interval is None or not self.is_enabled():
            return
        self._interval_handle = schedule(interval, self._on_refetch_interval)

    def _on_refetch_interval(self) -> None:
        self._interval_handle = None
        if not self.has_listeners():
            return
        if self.options.refetch_interval_in_background or self.client.focus_manager.is_focused():
            self._execute_fetch()
        if self._interval_handle is None:
            self._update_refetch_interval(self._compute_refetch_interval())


__all__ = ["QueryObserver", "QueryObserverResult", "TrackedResult"]
