"""MutationCache - every mutation a client has started, in submission order."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pgquery.mutation import Mutation
from pgquery.query_key import hash_query_key, matches_query_key
from pgquery.types import MutationCacheEvent, MutationKey, MutationState, MutationStatus, Unsubscribe

if TYPE_CHECKING:
    from pgquery.client import QueryClient
    from pgquery.options import MutationOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MutationCacheConfig:
    """Hooks run for every mutation, before the per-mutation hooks.

    Each receives the same arguments as its option counterpart plus the
    ``Mutation`` itself as the last argument.
    """

    on_mutate: Callable[..., Any] | None = None
    on_success: Callable[..., Any] | None = None
    on_error: Callable[..., Any] | None = None
    on_settled: Callable[..., Any] | None = None


@dataclass(frozen=True, slots=True)
class MutationFilters:
    mutation_key: MutationKey | None = None
    exact: bool = False
    status: MutationStatus | None = None
    predicate: Callable[[Mutation[Any, Any, Any]], bool] | None = None

    def matches(self, mutation: Mutation[Any, Any, Any]) -> bool:
        if self.mutation_key is not None:
            key = mutation.options.mutation_key
            if key is None:
                return False
            if self.exact:
                if hash_query_key(key) != hash_query_key(self.mutation_key):
                    return False
            elif not matches_query_key(key, self.mutation_key):
                return False
        if self.status is not None and mutation.state.status != self.status:
            return False
        if self.predicate is not None and not self.predicate(mutation):
            return False
        return True


class MutationCache:
    """Holds mutations and broadcasts their changes."""

    def __init__(self, config: MutationCacheConfig | None = None) -> None:
        self.config = config or MutationCacheConfig()
        self._mutations: list[Mutation[Any, Any, Any]] = []
        self._mutation_id = 0
        self._listeners: list[Callable[[MutationCacheEvent], None]] = []

    def __len__(self) -> int:
        return len(self._mutations)

    def build(
        self,
        client: QueryClient,
        options: MutationOptions,
        state: MutationState[Any, Any, Any] | None = None,
    ) -> Mutation[Any, Any, Any]:
        """Always create a new mutation with the next ``mutation_id``."""
        self._mutation_id += 1
        mutation: Mutation[Any, Any, Any] = Mutation(
            mutation_cache=self,
            mutation_id=self._mutation_id,
            options=client.default_mutation_options(options),
            online_manager=client.online_manager,
            state=state,
        )
        self.add(mutation)
        return mutation

    def add(self, mutation: Mutation[Any, Any, Any]) -> None:
        if mutation in self._mutations:
            return
        self._mutations.append(mutation)
        self.notify(MutationCacheEvent("added", mutation))

    def remove(self, mutation: Mutation[Any, Any, Any]) -> None:
        if mutation not in self._mutations:
            return
        mutation.destroy()
        self._mutations.remove(mutation)
        self.notify(MutationCacheEvent("removed", mutation))

    def clear(self) -> None:
        for mutation in list(self._mutations):
            self.remove(mutation)

    def get_all(self) -> list[Mutation[Any, Any, Any]]:
        return list(self._mutations)

    def find(self, filters: MutationFilters) -> Mutation[Any, Any, Any] | None:
        return next((m for m in self._mutations if filters.matches(m)), None)

    def find_all(self, filters: MutationFilters | None = None) -> list[Mutation[Any, Any, Any]]:
        filters = filters or MutationFilters()
        return [m for m in self._mutations if filters.matches(m)]

    def subscribe(self, listener: Callable[[MutationCacheEvent], None]) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, event: MutationCacheEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("MutationCache listener failed on %s event", event.type)

    async def resume_paused_mutations(self) -> list[Any]:
        """Continue paused mutations one after another.

        Returns each mutation's data, or the exception it settled with.
        """
        outcomes: list[Any] = []
        for mutation in [m for m in self._mutations if m.is_paused()]:
            logger.debug("Resuming paused mutation %d", mutation.mutation_id)
            try:
                outcomes.append(await mutation.continue_())
            except Exception as error:
                outcomes.append(error)
        return outcomes


__all__ = ["MutationCache", "MutationCacheConfig", "MutationFilters"]
