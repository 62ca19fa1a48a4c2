"""Layered query and mutation options.

Options are resolved once, when a query is built: library defaults, then the
client's defaults, then key-prefix defaults, then the per-call options. A
field left as ``None`` means "not set at this layer".
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, fields, replace
from typing import TYPE_CHECKING, Any, Generic, Literal, TypeVar, Union

from pgquery.duration import Duration, parse_duration
from pgquery.retryer import RetryDelayValue, RetryValue, default_retry_delay
from pgquery.types import MutationFunction, QueryFunction, QueryKey

if TYPE_CHECKING:
    from pgquery.query import Query

TData = TypeVar("TData")

RefetchOn = Union[bool, Literal["always"], Callable[..., Any]]
RefetchInterval = Union[Duration, Literal[False], Callable[..., Any]]
ThrowOnError = Union[bool, Callable[..., bool]]

_O = TypeVar("_O", "QueryOptions[Any]", "MutationOptions")


def _merge(base: _O, *overrides: _O | None) -> _O:
    result = base
    for override in overrides:
        if override is None:
            continue
        changes = {
            f.name: getattr(override, f.name)
            for f in fields(override)
            if getattr(override, f.name) is not None
        }
        if changes:
            result = replace(result, **changes)
    return result


def _check_retry(retry: RetryValue | None) -> None:
    if isinstance(retry, int) and not isinstance(retry, bool) and retry < 0:
        raise ValueError(f"retry must be >= 0, got {retry}")


@dataclass(frozen=True, slots=True)
class QueryOptions(Generic[TData]):
    """Options for one query and the observers that watch it."""

    query_key: QueryKey | None = None
    query_fn: QueryFunction | None = None
    enabled: bool | Callable[["Query[Any]"], bool] | None = None
    retry: RetryValue | None = None
    retry_delay: RetryDelayValue | None = None
    stale_time: Duration | None = None
    gc_time: Duration | None = None
    refetch_interval: RefetchInterval | None = None
    refetch_interval_in_background: bool | None = None
    refetch_on_mount: RefetchOn | None = None
    refetch_on_window_focus: RefetchOn | None = None
    refetch_on_reconnect: RefetchOn | None = None
    select: Callable[[Any], Any] | None = None
    structural_sharing: bool | Callable[[Any, Any], Any] | None = None
    throw_on_error: ThrowOnError | None = None
    notify_on_change_props: Sequence[str] | Literal["all"] | None = None
    keep_previous_data: bool | None = None
    placeholder_data: Any = None
    initial_data: Any = None
    initial_data_updated_at: int | None = None
    meta: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        _check_retry(self.retry)
        for name in ("stale_time", "gc_time"):
            value = getattr(self, name)
            if value is not None:
                parse_duration(value)

    def merged(self, *overrides: QueryOptions[Any] | None) -> QueryOptions[TData]:
        """Return a copy with every explicitly set field of ``overrides`` applied."""
        return _merge(self, *overrides)

    @property
    def stale_time_ms(self) -> float:
        return parse_duration(self.stale_time) if self.stale_time is not None else 0

    @property
    def gc_time_ms(self) -> float:
        if self.gc_time is None:
            return DEFAULT_GC_TIME
        return parse_duration(self.gc_time)


@dataclass(frozen=True, slots=True)
class MutationOptions:
    """Options for one mutation invocation."""

    mutation_fn: MutationFunction | None = None
    mutation_key: QueryKey | None = None
    retry: RetryValue | None = None
    retry_delay: RetryDelayValue | None = None
    gc_time: Duration | None = None
    on_mutate: Callable[[Any], Any] | None = None
    on_success: Callable[[Any, Any, Any], Any] | None = None
    on_error: Callable[[BaseException, Any, Any], Any] | None = None
    on_settled: Callable[[Any, BaseException | None, Any, Any], Any] | None = None
    throw_on_error: bool | Callable[[BaseException], bool] | None = None
    meta: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        _check_retry(self.retry)
        if self.gc_time is not None:
            parse_duration(self.gc_time)

    def merged(self, *overrides: MutationOptions | None) -> MutationOptions:
        return _merge(self, *overrides)

    @property
    def gc_time_ms(self) -> float:
        if self.gc_time is None:
            return DEFAULT_GC_TIME
        return parse_duration(self.gc_time)


@dataclass(frozen=True, slots=True)
class DefaultOptions:
    """Client-wide defaults for queries and mutations."""

    queries: QueryOptions[Any] | None = None
    mutations: MutationOptions | None = None


DEFAULT_GC_TIME = 5 * 60 * 1000  # 5 minutes

DEFAULT_QUERY_OPTIONS: QueryOptions[Any] = QueryOptions(
    enabled=True,
    retry=3,
    retry_delay=default_retry_delay,
    stale_time=0,
    gc_time=DEFAULT_GC_TIME,
    refetch_interval=False,
    refetch_interval_in_background=False,
    refetch_on_mount=True,
    refetch_on_window_focus=True,
    refetch_on_reconnect=True,
    structural_sharing=True,
    throw_on_error=False,
    keep_previous_data=False,
)

DEFAULT_MUTATION_OPTIONS = MutationOptions(
    retry=0,
    retry_delay=default_retry_delay,
    gc_time=DEFAULT_GC_TIME,
    throw_on_error=False,
)

__all__ = [
    "DEFAULT_GC_TIME",
    "DEFAULT_MUTATION_OPTIONS",
    "DEFAULT_QUERY_OPTIONS",
    "DefaultOptions",
    "MutationOptions",
    "QueryOptions",
    "RefetchInterval",
    "RefetchOn",
    "ThrowOnError",
]
