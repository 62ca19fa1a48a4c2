"""Exception hierarchy for pgquery.

Errors raised by query and mutation functions are never swallowed by the
cache: they are captured into query/mutation state and re-raised to whoever
awaits the fetch. The classes below are the errors the library itself
produces, plus the two categories the retry policy distinguishes::

    PgQueryError
    +-- QueryCancelledError
    +-- FetchError          (network/backend, retried)
    +-- ValidationError     (application-level, not retried by default)
    +-- QueryDataError
    +-- MissingQueryFnError
"""

from __future__ import annotations


class PgQueryError(Exception):
    """Base exception for all pgquery errors."""


class QueryCancelledError(PgQueryError):
    """Raised to awaiters of a fetch that was cancelled.

    Args:
        revert: Whether the query state was rolled back to its pre-fetch value.
        silent: Whether the cancellation should be ignored by callers.
    """

    def __init__(
        self,
        message: str = "Query was cancelled",
        *,
        revert: bool = True,
        silent: bool = False,
    ) -> None:
        super().__init__(message)
        self.revert = revert
        self.silent = silent


class FetchError(PgQueryError):
    """A backend or network failure reported by a query/mutation function.

    ``status_code`` is the HTTP status when one was received. Server errors,
    timeouts, rate limiting and transport failures are retryable; other
    client errors are not.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code in (408, 429)


class ValidationError(PgQueryError):
    """Application-level rejection. Retrying cannot fix it."""


class QueryDataError(PgQueryError):
    """Raised when a query function resolves to ``None``."""

    def __init__(self, query_hash: str) -> None:
        super().__init__(f"Query data cannot be None: {query_hash}")
        self.query_hash = query_hash


class MissingQueryFnError(PgQueryError):
    """Raised when a fetch is requested for a query without a query function."""

    def __init__(self, query_hash: str) -> None:
        super().__init__(f"Missing query_fn: {query_hash}")
        self.query_hash = query_hash


__all__ = [
    "FetchError",
    "MissingQueryFnError",
    "PgQueryError",
    "QueryCancelledError",
    "QueryDataError",
    "ValidationError",
]
