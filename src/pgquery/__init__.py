"""pgquery - reactive async query cache with observers and mutations."""

# Client
from pgquery.client import QueryClient

# Duration parsing
from pgquery.duration import Duration, parse_duration

# Errors
from pgquery.errors import (
    FetchError,
    MissingQueryFnError,
    PgQueryError,
    QueryCancelledError,
    QueryDataError,
    ValidationError,
)

# Key helpers
from pgquery.keys import QueryKeyFactory, define_keys, query_keys

# Environment
from pgquery.managers import FocusManager, OnlineManager, focus_manager, online_manager
from pgquery.mutation import Mutation
from pgquery.mutation_cache import MutationCache, MutationCacheConfig, MutationFilters
from pgquery.mutation_observer import MutationObserver, MutationObserverResult

# Options
from pgquery.options import DefaultOptions, MutationOptions, QueryOptions
from pgquery.query import Query
from pgquery.query_cache import QueryCache, QueryFilters
from pgquery.query_key import hash_query_key, is_equal_key, matches_query_key
from pgquery.query_observer import QueryObserver, QueryObserverResult
from pgquery.retryer import is_retryable_error
from pgquery.structural_sharing import replace_equal_deep

# Core types
from pgquery.types import (
    AbortSignal,
    FetchStatus,
    MutationCacheEvent,
    MutationState,
    MutationStatus,
    QueryCacheEvent,
    QueryFunctionContext,
    QueryState,
    QueryStatus,
)

__version__ = "0.1.0"

__all__ = [
    "AbortSignal",
    "DefaultOptions",
    "Duration",
    "FetchError",
    "FetchStatus",
    "FocusManager",
    "MissingQueryFnError",
    "Mutation",
    "MutationCache",
    "MutationCacheConfig",
    "MutationCacheEvent",
    "MutationFilters",
    "MutationObserver",
    "MutationObserverResult",
    "MutationOptions",
    "MutationState",
    "MutationStatus",
    "OnlineManager",
    "PgQueryError",
    "Query",
    "QueryCache",
    "QueryCacheEvent",
    "QueryCancelledError",
    "QueryClient",
    "QueryDataError",
    "QueryFilters",
    "QueryFunctionContext",
    "QueryKeyFactory",
    "QueryObserver",
    "QueryObserverResult",
    "QueryOptions",
    "QueryState",
    "QueryStatus",
    "ValidationError",
    "define_keys",
    "focus_manager",
    "hash_query_key",
    "is_equal_key",
    "is_retryable_error",
    "matches_query_key",
    "online_manager",
    "parse_duration",
    "query_keys",
    "replace_equal_deep",
]
