"""Query - the state machine for one cached resource."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import fields, replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pgquery.errors import MissingQueryFnError, QueryCancelledError, QueryDataError
from pgquery.options import QueryOptions
from pgquery.retryer import Retryer
from pgquery.structural_sharing import replace_equal_deep
from pgquery.types import (
    AbortSignal,
    FetchStatus,
    QueryCacheEvent,
    QueryFunctionContext,
    QueryState,
    QueryStatus,
)
from pgquery.utils import consume_task_exception, maybe_await, now_ms, running_loop, schedule

if TYPE_CHECKING:
    from pgquery.managers import OnlineManager
    from pgquery.query_cache import QueryCache
    from pgquery.query_observer import QueryObserver

logger = logging.getLogger(__name__)

TData = TypeVar("TData")


def initial_query_state(options: QueryOptions[Any]) -> QueryState[Any]:
    """State of a query that has never fetched, seeded by ``initial_data``."""
    data = options.initial_data
    if callable(data):
        data = data()
    if data is None:
        return QueryState()
    return QueryState(
        data=data,
        data_updated_at=options.initial_data_updated_at or now_ms(),
        status=QueryStatus.SUCCESS,
    )


async def wait_for_fetch(task: asyncio.Task[TData]) -> TData:
    """Await a shared fetch task without cancelling it for other awaiters.

    A task cancelled before it could record an outcome surfaces as
    ``QueryCancelledError``.
    """
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        if task.cancelled():
            raise QueryCancelledError() from None
        raise


class Query(Generic[TData]):
    """One cached resource, keyed by ``query_hash``.

    Owned by a ``QueryCache``. Observers register themselves in
    ``observers``; when the last one leaves the query becomes eligible for
    garbage collection after ``gc_time``.
    """

    def __init__(
        self,
        *,
        cache: QueryCache,
        query_key: tuple[Any, ...],
        query_hash: str,
        options: QueryOptions[TData],
        online_manager: OnlineManager,
        state: QueryState[TData] | None = None,
    ) -> None:
        self.cache = cache
        self.query_key = query_key
        self.query_hash = query_hash
        self.options = options
        self.initial_state: QueryState[TData] = initial_query_state(options)
        self.state: QueryState[TData] = state or self.initial_state
        self.observers: list[QueryObserver[Any]] = []
        self._online_manager = online_manager
        self._task: asyncio.Task[TData] | None = None
        self._retryer: Retryer[TData] | None = None
        self._signal: AbortSignal | None = None
        self._revert_state: QueryState[TData] | None = None
        self._gc_handle: asyncio.TimerHandle | None = None
        self._schedule_gc()

    def __repr__(self) -> str:
        return f"Query({self.query_hash}, {self.state.status.value}/{self.state.fetch_status.value})"

    # -------------------------------------------------------------------------
    # Options and state
    # -------------------------------------------------------------------------

    def set_options(self, options: QueryOptions[TData]) -> None:
        """Replace the options in effect (last writer wins)."""
        self.options = options

    def set_state(self, **changes: Any) -> None:
        """Shallow-merge ``changes`` into the state and notify."""
        if "data" in changes:
            changes["data"] = self._share(self.state.data, changes["data"])
        self._dispatch("set_state", **changes)

    def set_data(
        self,
        data: TData,
        *,
        updated_at: int | None = None,
        manual: bool = False,
    ) -> TData:
        """Store ``data`` as the successful result of this query."""
        data = self._share(self.state.data, data)
        changes: dict[str, Any] = {
            "data": data,
            "data_updated_at": updated_at or now_ms(),
            "error": None,
            "status": QueryStatus.SUCCESS,
            "is_invalidated": False,
        }
        if not manual:
            changes.update(
                fetch_status=FetchStatus.IDLE,
                failure_count=0,
                failure_reason=None,
            )
        self._dispatch("success", **changes)
        return data

    def invalidate(self) -> None:
        if not self.state.is_invalidated:
            self._dispatch("invalidate", is_invalidated=True)

    def reset(self) -> None:
        """Return to the pre-first-fetch state without leaving the cache."""
        self.cancel(revert=False, silent=True)
        self._replace_state(self.initial_state, "reset")

    def _share(self, old: Any, new: Any) -> Any:
        sharing = self.options.structural_sharing
        if sharing is False:
            return new
        if callable(sharing):
            return sharing(old, new)
        return replace_equal_deep(old, new)

    def _replace_state(self, state: QueryState[TData], action: str) -> None:
        self._dispatch(action, **{f.name: getattr(state, f.name) for f in fields(state)})

    def _dispatch(self, action: str, **changes: Any) -> None:
        self.state = replace(self.state, **changes)
        for observer in list(self.observers):
            observer.on_query_update()
        self.cache.notify(QueryCacheEvent("updated", self, action))

    # -------------------------------------------------------------------------
    # Staleness and activity
    # -------------------------------------------------------------------------

    def is_stale_by_time(self, stale_time: float = 0) -> bool:
        """Stale once ``stale_time`` ms have passed since the last data update."""
        if self.state.is_invalidated or self.state.data is None:
            return True
        return now_ms() >= self.state.data_updated_at + stale_time

    def is_stale(self) -> bool:
        return self.is_stale_by_time(self.options.stale_time_ms)

    def is_active(self) -> bool:
        return len(self.observers) > 0

    def is_disabled(self) -> bool:
        if self.observers:
            return not any(observer.is_enabled() for observer in self.observers)
        return self.options.enabled is False

    def is_fetching(self) -> bool:
        return self._task is not None and not self._task.done()

    def has_query_fn(self) -> bool:
        """Whether a fetch could run: own options or an observer supply a query_fn."""
        if self.options.query_fn is not None:
            return True
        return any(observer.options.query_fn is not None for observer in self.observers)

    @property
    def in_flight(self) -> asyncio.Task[TData] | None:
        """The running fetch task, if any."""
        return self._task if self.is_fetching() else None

    # -------------------------------------------------------------------------
    # Observers and garbage collection
    # -------------------------------------------------------------------------

    def add_observer(self, observer: QueryObserver[Any]) -> None:
        if observer in self.observers:
            return
        self.observers.append(observer)
        self._clear_gc()
        self.cache.notify(QueryCacheEvent("observer_added", self, None))

    def remove_observer(self, observer: QueryObserver[Any]) -> None:
        if observer not in self.observers:
            return
        self.observers.remove(observer)
        if not self.observers:
            if self._retryer is not None and self.is_fetching():
                # Nobody is waiting for more attempts
                self._retryer.cancel_retry()
            self._schedule_gc()
        self.cache.notify(QueryCacheEvent("observer_removed", self, None))

    def _clear_gc(self) -> None:
        if self._gc_handle is not None:
            self._gc_handle.cancel()
            self._gc_handle = None

    def _schedule_gc(self) -> None:
        self._clear_gc()
        if not self.observers:
            self._gc_handle = schedule(self.options.gc_time_ms, self._optional_remove)

    def _optional_remove(self) -> None:
        self._gc_handle = None
        if not self.observers and self.state.fetch_status is FetchStatus.IDLE:
            logger.debug("Garbage collecting %s", self.query_hash)
            self.cache.remove(self)

    def destroy(self) -> None:
        self._clear_gc()
        self.cancel(revert=True, silent=True)

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    async def fetch(
        self,
        options: QueryOptions[TData] | None = None,
        *,
        cancel_refetch: bool = False,
    ) -> TData:
        """Fetch (or join the in-flight fetch) and return the data.

        Raises the query function's final error, or ``QueryCancelledError``.
        """
        return await wait_for_fetch(self.start_fetch(options, cancel_refetch=cancel_refetch))

    def start_fetch(
        self,
        options: QueryOptions[TData] | None = None,
        *,
        cancel_refetch: bool = False,
    ) -> asyncio.Task[TData]:
        """Start a fetch in the background, or return the one in flight."""
        if self._task is not None and not self._task.done():
            if self.state.data is not None and cancel_refetch:
                self.cancel(silent=True)
            else:
                if self._retryer is not None:
                    # Someone is waiting again, so the retry policy applies again
                    self._retryer.continue_retry()
                return self._task

        if options is not None:
            self.set_options(options)
        if self.options.query_fn is None:
            for observer in self.observers:
                if observer.options.query_fn is not None:
                    self.set_options(observer.options)
                    break

        signal = AbortSignal()
        context = QueryFunctionContext(
            query_key=self.query_key,
            signal=signal,
            meta=dict(self.options.meta or {}),
        )
        retryer: Retryer[TData] = Retryer(
            lambda: self._run_query_fn(context),
            retry=self.options.retry,
            retry_delay=self.options.retry_delay,
            can_run=self._online_manager.is_online,
            on_fail=self._on_fail,
            on_pause=lambda: self._dispatch("pause", fetch_status=FetchStatus.PAUSED),
            on_continue=lambda: self._dispatch("continue", fetch_status=FetchStatus.FETCHING),
        )
        self._signal = signal
        self._retryer = retryer
        self._revert_state = self.state

        task = asyncio.get_running_loop().create_task(self._execute(retryer, signal))
        task.add_done_callback(consume_task_exception)
        self._task = task

        logger.debug("Fetching %s", self.query_hash)
        loading = {"status": QueryStatus.LOADING, "error": None} if self.state.data is None else {}
        self._dispatch(
            "fetch",
            fetch_status=(
                FetchStatus.FETCHING if self._online_manager.is_online() else FetchStatus.PAUSED
            ),
            failure_count=0,
            failure_reason=None,
            fetch_meta=context.meta,
            **loading,
        )
        return task

    async def _run_query_fn(self, context: QueryFunctionContext) -> TData:
        query_fn = self.options.query_fn
        if query_fn is None:
            raise MissingQueryFnError(self.query_hash)
        data = await maybe_await(query_fn(context))
        if data is None:
            raise QueryDataError(self.query_hash)
        return data

    def _on_fail(self, failure_count: int, error: BaseException) -> None:
        self._dispatch("failed", failure_count=failure_count, failure_reason=error)

    async def _execute(self, retryer: Retryer[TData], signal: AbortSignal) -> TData:
        try:
            data = await retryer.run()
        except asyncio.CancelledError:
            if signal.aborted:
                raise self._cancelled_error(signal) from None
            # Cancelled from outside (e.g. loop shutdown)
            self._finish(signal)
            if self._signal is signal:
                self._dispatch("cancel", fetch_status=FetchStatus.IDLE)
            raise
        except Exception as error:
            if signal.aborted:
                raise self._cancelled_error(signal) from None
            self._finish(signal)
            self._dispatch(
                "error",
                error=error,
                error_updated_at=now_ms(),
                failure_count=retryer.failure_count,
                failure_reason=error,
                fetch_status=FetchStatus.IDLE,
                status=QueryStatus.ERROR,
            )
            self._schedule_gc()
            raise

        if signal.aborted:
            # Result arrived after cancellation superseded it
            raise self._cancelled_error(signal)
        self._finish(signal)
        data = self.set_data(data)
        self._schedule_gc()
        return data

    def _finish(self, signal: AbortSignal) -> None:
        if self._signal is signal:
            self._task = None
            self._retryer = None
            self._revert_state = None

    @staticmethod
    def _cancelled_error(signal: AbortSignal) -> QueryCancelledError:
        reason = signal.reason
        if isinstance(reason, QueryCancelledError):
            return reason
        return QueryCancelledError()

    def cancel(self, *, revert: bool = True, silent: bool = False) -> None:
        """Abort the in-flight fetch.

        The abort is advisory for the query function; its result, if it
        still arrives, is discarded. Settled data is never touched.
        """
        task, signal = self._task, self._signal
        if task is None or task.done() or signal is None:
            return
        logger.debug("Cancelling fetch of %s", self.query_hash)
        revert_state = self._revert_state
        self._finish(signal)
        signal.abort(QueryCancelledError(revert=revert, silent=silent))
        task.cancel()
        if revert and revert_state is not None:
            self._replace_state(replace(revert_state, fetch_status=FetchStatus.IDLE), "cancel")
        else:
            self._dispatch("cancel", fetch_status=FetchStatus.IDLE)
        self._schedule_gc()

    def on_focus(self) -> None:
        if running_loop() is None:
            logger.debug("No running event loop, not refetching %s on focus", self.query_hash)
            return
        observer = next(
            (o for o in self.observers if o.should_fetch_on_window_focus()), None
        )
        if observer is not None:
            observer.start_refetch(cancel_refetch=False)
        if self._retryer is not None:
            self._retryer.continue_()

    def on_online(self) -> None:
        if running_loop() is None:
            logger.debug("No running event loop, not refetching %s on reconnect", self.query_hash)
            return
        observer = next((o for o in self.observers if o.should_fetch_on_reconnect()), None)
        if observer is not None:
            observer.start_refetch(cancel_refetch=False)
        if self._retryer is not None:
            self._retryer.continue_()


__all__ = ["Query", "initial_query_state", "wait_for_fetch"]
