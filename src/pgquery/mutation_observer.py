"""MutationObserver - tracks the latest mutation started through it."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pgquery.options import MutationOptions
from pgquery.types import MutationState, MutationStatus, Unsubscribe
from pgquery.utils import maybe_await

if TYPE_CHECKING:
    from pgquery.client import QueryClient
    from pgquery.mutation import Mutation

logger = logging.getLogger(__name__)

TData = TypeVar("TData")
TVariables = TypeVar("TVariables")
TContext = TypeVar("TContext")


@dataclass(frozen=True, slots=True)
class MutationObserverResult(Generic[TData, TVariables, TContext]):
    context: TContext | None
    data: TData | None
    error: BaseException | None
    failure_count: int
    failure_reason: BaseException | None
    is_error: bool
    is_idle: bool
    is_loading: bool
    is_paused: bool
    is_pending: bool
    is_success: bool
    status: MutationStatus
    submitted_at: int
    variables: TVariables | None

    @classmethod
    def from_state(cls, state: MutationState[Any, Any, Any]) -> MutationObserverResult[Any, Any, Any]:
        status = state.status
        return cls(
            context=state.context,
            data=state.data,
            error=state.error,
            failure_count=state.failure_count,
            failure_reason=state.failure_reason,
            is_error=status is MutationStatus.ERROR,
            is_idle=status is MutationStatus.IDLE,
            is_loading=status is MutationStatus.LOADING,
            is_paused=state.is_paused,
            is_pending=status is MutationStatus.LOADING,
            is_success=status is MutationStatus.SUCCESS,
            status=status,
            submitted_at=state.submitted_at,
            variables=state.variables,
        )


class MutationObserver(Generic[TData, TVariables, TContext]):
    """Runs mutations with fixed options and reports the latest one's state.

    Each ``mutate`` call starts a new ``Mutation``; the observer follows the
    most recent one and detaches from the previous.
    """

    def __init__(self, client: QueryClient, options: MutationOptions) -> None:
        self.client = client
        self.options = client.default_mutation_options(options)
        self._listeners: list[Callable[[MutationObserverResult[TData, TVariables, TContext]], None]] = []
        self._current_mutation: Mutation[TData, TVariables, TContext] | None = None
        self._current_result: MutationObserverResult[TData, TVariables, TContext] = (
            MutationObserverResult.from_state(MutationState())
        )

    def set_options(self, options: MutationOptions) -> None:
        self.options = self.client.default_mutation_options(options)
        if self._current_mutation is not None:
            self._current_mutation.set_options(self.options)

    def subscribe(
        self, listener: Callable[[MutationObserverResult[TData, TVariables, TContext]], None]
    ) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
                if not self._listeners:
                    self.destroy()

        return unsubscribe

    def has_listeners(self) -> bool:
        return bool(self._listeners)

    def destroy(self) -> None:
        self._listeners.clear()
        if self._current_mutation is not None:
            self._current_mutation.remove_observer(self)

    def get_current_result(self) -> MutationObserverResult[TData, TVariables, TContext]:
        result = self._current_result
        if result.is_error and result.error is not None and self._should_throw(result.error):
            raise result.error
        return result

    def _should_throw(self, error: BaseException) -> bool:
        throw_on_error = self.options.throw_on_error
        if callable(throw_on_error):
            return bool(throw_on_error(error))
        return bool(throw_on_error)

    def reset(self) -> None:
        """Forget the current mutation and return to idle."""
        if self._current_mutation is not None:
            self._current_mutation.remove_observer(self)
            self._current_mutation = None
        self._update_result()
        self._notify()

    async def mutate(
        self,
        variables: TVariables,
        *,
        on_success: Callable[[Any, Any, Any], Any] | None = None,
        on_error: Callable[[BaseException, Any, Any], Any] | None = None,
        on_settled: Callable[[Any, BaseException | None, Any, Any], Any] | None = None,
    ) -> TData:
        """Start a new mutation and wait for it.

        The per-call hooks run after the mutation's own hooks, and only if
        this call is still the observer's latest mutation when it settles.
        """
        if self._current_mutation is not None:
            self._current_mutation.remove_observer(self)
        mutation: Mutation[TData, TVariables, TContext] = self.client.mutation_cache.build(
            self.client, self.options
        )
        self._current_mutation = mutation
        mutation.add_observer(self)

        try:
            data = await mutation.execute(variables)
        except Exception as error:
            if mutation is self._current_mutation:
                context = mutation.state.context
                if on_error is not None:
                    await maybe_await(on_error(error, variables, context))
                if on_settled is not None:
                    await maybe_await(on_settled(None, error, variables, context))
            raise
        if mutation is self._current_mutation:
            context = mutation.state.context
            if on_success is not None:
                await maybe_await(on_success(data, variables, context))
            if on_settled is not None:
                await maybe_await(on_settled(data, None, variables, context))
        return data

    def on_mutation_update(self, mutation: Mutation[Any, Any, Any]) -> None:
        if mutation is not self._current_mutation:
            return
        self._update_result()
        self._notify()

    def _update_result(self) -> None:
        state = self._current_mutation.state if self._current_mutation else MutationState()
        self._current_result = MutationObserverResult.from_state(state)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._current_result)
            except Exception:
                logger.exception("MutationObserver listener failed")


__all__ = ["MutationObserver", "MutationObserverResult"]
