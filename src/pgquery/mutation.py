"""Mutation - one invocation of a write operation and its lifecycle hooks."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pgquery.errors import QueryCancelledError
from pgquery.options import MutationOptions
from pgquery.retryer import Retryer
from pgquery.types import MutationCacheEvent, MutationState, MutationStatus
from pgquery.utils import maybe_await, now_ms, schedule

if TYPE_CHECKING:
    from pgquery.managers import OnlineManager
    from pgquery.mutation_cache import MutationCache
    from pgquery.mutation_observer import MutationObserver

logger = logging.getLogger(__name__)

TData = TypeVar("TData")
TVariables = TypeVar("TVariables")
TContext = TypeVar("TContext")


class Mutation(Generic[TData, TVariables, TContext]):
    """A single mutation run.

    ``execute`` drives the hooks in order: ``on_mutate`` (its return value
    becomes ``context``), the mutation function with retries, then
    ``on_success`` or ``on_error``, then ``on_settled``. Cache-level hooks
    run before the option hooks of the same name.
    """

    def __init__(
        self,
        *,
        mutation_cache: MutationCache,
        mutation_id: int,
        options: MutationOptions,
        online_manager: OnlineManager,
        state: MutationState[TData, TVariables, TContext] | None = None,
    ) -> None:
        self.mutation_cache = mutation_cache
        self.mutation_id = mutation_id
        self.options = options
        self.state: MutationState[TData, TVariables, TContext] = state or MutationState()
        self.observers: list[MutationObserver] = []
        self._online_manager = online_manager
        self._retryer: Retryer[TData] | None = None
        self._settled: asyncio.Event | None = None
        self._gc_handle: asyncio.TimerHandle | None = None

    def __repr__(self) -> str:
        return f"Mutation({self.mutation_id}, {self.state.status.value})"

    def set_options(self, options: MutationOptions) -> None:
        self.options = options

    def set_state(self, **changes: Any) -> None:
        self._dispatch("set_state", **changes)

    def reset(self) -> None:
        self._dispatch("reset", **_IDLE_STATE)

    def _dispatch(self, action: str, **changes: Any) -> None:
        self.state = replace(self.state, **changes)
        for observer in list(self.observers):
            observer.on_mutation_update(self)
        self.mutation_cache.notify(MutationCacheEvent("updated", self, action))

    # -------------------------------------------------------------------------
    # Observers and garbage collection
    # -------------------------------------------------------------------------

    def add_observer(self, observer: MutationObserver) -> None:
        if observer in self.observers:
            return
        self.observers.append(observer)
        self._clear_gc()
        self.mutation_cache.notify(MutationCacheEvent("observer_added", self))

    def remove_observer(self, observer: MutationObserver) -> None:
        if observer not in self.observers:
            return
        self.observers.remove(observer)
        self._schedule_gc()
        self.mutation_cache.notify(MutationCacheEvent("observer_removed", self))

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
        if self.observers:
            return
        if self.state.status is MutationStatus.LOADING:
            self._schedule_gc()
        else:
            self.mutation_cache.remove(self)

    def destroy(self) -> None:
        self._clear_gc()

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def is_paused(self) -> bool:
        return self.state.is_paused

    async def continue_(self) -> TData:
        """Resume a paused mutation and wait for it to settle.

        A mutation restored in the paused state (never started here) is
        executed from scratch with its recorded variables.
        """
        if self._retryer is None or self._settled is None:
            return await self.execute(self.state.variables)  # type: ignore[arg-type]
        self._retryer.continue_()
        await self._settled.wait()
        if self.state.status is MutationStatus.ERROR and self.state.error is not None:
            raise self.state.error
        return self.state.data  # type: ignore[return-value]

    async def execute(self, variables: TVariables) -> TData:
        """Run the mutation for ``variables``; re-raises the final error."""
        mutation_fn = self.options.mutation_fn
        if mutation_fn is None:
            raise ValueError("mutation_fn is required")

        self._settled = asyncio.Event()
        cache_config = self.mutation_cache.config
        context: Any = self.state.context
        resuming = self.state.status is MutationStatus.LOADING
        if not resuming:
            self._dispatch(
                "loading",
                **{
                    **_IDLE_STATE,
                    "status": MutationStatus.LOADING,
                    "variables": variables,
                    "is_paused": not self._online_manager.is_online(),
                    "submitted_at": now_ms(),
                },
            )

        try:
            if not resuming:
                if cache_config.on_mutate is not None:
                    await maybe_await(cache_config.on_mutate(variables, self))
                if self.options.on_mutate is not None:
                    context = await maybe_await(self.options.on_mutate(variables))
                    if context is not None:
                        self._dispatch("context", context=context)

            self._retryer = Retryer(
                lambda: maybe_await(mutation_fn(variables)),
                retry=self.options.retry,
                retry_delay=self.options.retry_delay,
                can_run=self._online_manager.is_online,
                on_fail=self._on_fail,
                on_pause=lambda: self._dispatch("pause", is_paused=True),
                on_continue=lambda: self._dispatch("continue", is_paused=False),
            )
            data = await self._retryer.run()

            if cache_config.on_success is not None:
                await maybe_await(cache_config.on_success(data, variables, context, self))
            if self.options.on_success is not None:
                await maybe_await(self.options.on_success(data, variables, context))
            if cache_config.on_settled is not None:
                await maybe_await(
                    cache_config.on_settled(data, None, variables, context, self)
                )
            if self.options.on_settled is not None:
                await maybe_await(self.options.on_settled(data, None, variables, context))

            self._dispatch(
                "success",
                data=data,
                error=None,
                failure_count=0,
                failure_reason=None,
                is_paused=False,
                status=MutationStatus.SUCCESS,
            )
            return data
        except asyncio.CancelledError:
            logger.debug("Mutation %d cancelled", self.mutation_id)
            cancelled = QueryCancelledError("Mutation was cancelled", revert=False)
            self._dispatch(
                "error",
                error=cancelled,
                failure_count=(self._retryer.failure_count if self._retryer else 0),
                failure_reason=cancelled,
                is_paused=False,
                status=MutationStatus.ERROR,
            )
            raise
        except Exception as error:
            logger.debug("Mutation %d failed: %r", self.mutation_id, error)
            try:
                if cache_config.on_error is not None:
                    await maybe_await(cache_config.on_error(error, variables, context, self))
                if self.options.on_error is not None:
                    await maybe_await(self.options.on_error(error, variables, context))
                if cache_config.on_settled is not None:
                    await maybe_await(
                        cache_config.on_settled(None, error, variables, context, self)
                    )
                if self.options.on_settled is not None:
                    await maybe_await(
                        self.options.on_settled(None, error, variables, context)
                    )
            finally:
                self._dispatch(
                    "error",
                    error=error,
                    failure_count=(self._retryer.failure_count if self._retryer else 1),
                    failure_reason=error,
                    is_paused=False,
                    status=MutationStatus.ERROR,
                )
            raise
        finally:
            self._retryer = None
            self._settled.set()
            self._schedule_gc()

    def _on_fail(self, failure_count: int, error: BaseException) -> None:
        self._dispatch("failed", failure_count=failure_count, failure_reason=error)


_IDLE_STATE: dict[str, Any] = {
    "context": None,
    "data": None,
    "error": None,
    "failure_count": 0,
    "failure_reason": None,
    "is_paused": False,
    "status": MutationStatus.IDLE,
    "variables": None,
    "submitted_at": 0,
}

__all__ = ["Mutation"]
