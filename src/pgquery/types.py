"""Core types for pgquery."""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")
TData = TypeVar("TData")
TError = TypeVar("TError", bound=BaseException)
TVariables = TypeVar("TVariables")
TContext = TypeVar("TContext")

# ("users", "list", {"active": True}) - any JSON-serializable segments
QueryKey = Sequence[Any]
MutationKey = Sequence[Any]

# A value, or a pure function of the previous value
Updater = Union[T, Callable[[Union[T, None]], Union[T, None]]]


class QueryStatus(str, enum.Enum):
    """Settled outcome of a query."""

    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"
    SUCCESS = "success"


class FetchStatus(str, enum.Enum):
    """Whether a query function is currently running."""

    IDLE = "idle"
    FETCHING = "fetching"
    PAUSED = "paused"


class MutationStatus(str, enum.Enum):
    """Lifecycle of a single mutation."""

    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"
    SUCCESS = "success"


class AbortSignal:
    """Advisory cancellation flag handed to query functions.

    Query functions may poll ``signal.aborted`` or register a listener; the
    cache discards any result that arrives after the signal fired.
    """

    __slots__ = ("_aborted", "_reason", "_listeners")

    def __init__(self) -> None:
        self._aborted = False
        self._reason: Any = None
        self._listeners: list[Callable[[], None]] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Any:
        return self._reason

    def abort(self, reason: Any = None) -> None:
        if self._aborted:
            return
        self._aborted = True
        self._reason = reason
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener()

    def add_listener(self, listener: Callable[[], None]) -> None:
        if self._aborted:
            listener()
        else:
            self._listeners.append(listener)


@dataclass(frozen=True, slots=True)
class QueryFunctionContext:
    """Argument passed to every query function."""

    query_key: tuple[Any, ...]
    signal: AbortSignal
    meta: dict[str, Any] = field(default_factory=dict)


QueryFunction = Callable[[QueryFunctionContext], Awaitable[Any]]
MutationFunction = Callable[[Any], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class QueryState(Generic[TData]):
    """Snapshot of one cached query. Replaced on every change."""

    data: TData | None = None
    data_updated_at: int = 0  # Unix timestamp ms
    error: BaseException | None = None
    error_updated_at: int = 0
    failure_count: int = 0
    failure_reason: BaseException | None = None
    status: QueryStatus = QueryStatus.IDLE
    fetch_status: FetchStatus = FetchStatus.IDLE
    is_invalidated: bool = False
    fetch_meta: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class MutationState(Generic[TData, TVariables, TContext]):
    """Snapshot of one mutation."""

    context: TContext | None = None
    data: TData | None = None
    error: BaseException | None = None
    failure_count: int = 0
    failure_reason: BaseException | None = None
    is_paused: bool = False
    status: MutationStatus = MutationStatus.IDLE
    variables: TVariables | None = None
    submitted_at: int = 0


@dataclass(frozen=True, slots=True)
class QueryCacheEvent:
    """Emitted by a QueryCache for every change to its queries."""

    type: str  # added, removed, updated, observer_added, observer_removed
    query: Any
    action: str | None = None


@dataclass(frozen=True, slots=True)
class MutationCacheEvent:
    """Emitted by a MutationCache for every change to its mutations."""

    type: str  # added, removed, updated, observer_added, observer_removed
    mutation: Any
    action: str | None = None


Listener = Callable[[T], None]
Unsubscribe = Callable[[], None]

__all__ = [
    "AbortSignal",
    "FetchStatus",
    "Listener",
    "MutationCacheEvent",
    "MutationFunction",
    "MutationKey",
    "MutationState",
    "MutationStatus",
    "QueryCacheEvent",
    "QueryFunction",
    "QueryFunctionContext",
    "QueryKey",
    "QueryState",
    "QueryStatus",
    "Unsubscribe",
    "Updater",
]
