"""Retry loop shared by queries and mutations.

A ``Retryer`` runs one async operation until it succeeds, the retry policy
gives up, or the surrounding task is cancelled. While the environment is
offline it pauses before each attempt and waits for ``continue_()``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar, Union

import httpx

from pgquery.duration import Duration, parse_duration
from pgquery.errors import (
    FetchError,
    MissingQueryFnError,
    QueryCancelledError,
    QueryDataError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryValue = Union[bool, int, Callable[[int, BaseException], bool]]
RetryDelayValue = Union[Duration, Callable[[int, BaseException], Duration]]

_RETRYABLE_CLIENT_STATUSES = (408, 429)


def default_retry_delay(attempt: int, error: BaseException | None = None) -> int:
    """Exponential backoff: 1s, 2s, 4s, ... capped at 30s. ``attempt`` is zero-based."""
    return min(1000 * 2**attempt, 30_000)


def is_retryable_error(error: BaseException) -> bool:
    """Whether retrying could plausibly succeed.

    Network and server failures are worth another attempt; application-level
    rejections (validation errors, 4xx responses) are not.
    """
    if isinstance(
        error, (ValidationError, QueryCancelledError, QueryDataError, MissingQueryFnError)
    ):
        return False
    if isinstance(error, FetchError):
        return error.retryable
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status >= 500 or status in _RETRYABLE_CLIENT_STATUSES
    return True


def should_retry(retry: RetryValue | None, failure_count: int, error: BaseException) -> bool:
    """Apply a retry policy.

    ``failure_count`` includes the failure being judged. A predicate decides on
    its own; counts and booleans never retry non-retryable errors.
    """
    if callable(retry):
        return bool(retry(failure_count, error))
    if not is_retryable_error(error):
        return False
    if retry is None or retry is False:
        return False
    if retry is True:
        return True
    return failure_count <= retry


def resolve_retry_delay(
    retry_delay: RetryDelayValue | None, attempt: int, error: BaseException
) -> float:
    """Milliseconds to wait before retry number ``attempt`` (zero-based)."""
    if retry_delay is None:
        return default_retry_delay(attempt, error)
    if callable(retry_delay):
        return parse_duration(retry_delay(attempt, error))
    return parse_duration(retry_delay)


class Retryer(Generic[T]):
    """Runs ``fn`` with retries, backoff and offline pausing."""

    def __init__(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        retry: RetryValue | None = None,
        retry_delay: RetryDelayValue | None = None,
        can_run: Callable[[], bool] = lambda: True,
        on_fail: Callable[[int, BaseException], None] | None = None,
        on_pause: Callable[[], None] | None = None,
        on_continue: Callable[[], None] | None = None,
    ) -> None:
        self._fn = fn
        self._retry = retry
        self._retry_delay = retry_delay
        self._can_run = can_run
        self._on_fail = on_fail
        self._on_pause = on_pause
        self._on_continue = on_continue
        self._continue_event: asyncio.Event | None = None
        self._is_retry_cancelled = False
        self.failure_count = 0

    @property
    def is_paused(self) -> bool:
        return self._continue_event is not None

    def continue_(self) -> None:
        """Resume a paused retryer."""
        if self._continue_event is not None:
            self._continue_event.set()

    def cancel_retry(self) -> None:
        """Let the current attempt finish but do not retry it."""
        self._is_retry_cancelled = True

    def continue_retry(self) -> None:
        self._is_retry_cancelled = False

    async def _pause(self) -> None:
        self._continue_event = asyncio.Event()
        if self._on_pause:
            self._on_pause()
        try:
            await self._continue_event.wait()
        finally:
            self._continue_event = None
        if self._on_continue:
            self._on_continue()

    async def run(self) -> T:
        while True:
            if not self._can_run():
                await self._pause()
            try:
                return await self._fn()
            except Exception as error:
                self.failure_count += 1
                if self._is_retry_cancelled or not should_retry(
                    self._retry, self.failure_count, error
                ):
                    raise
                if self._on_fail:
                    self._on_fail(self.failure_count, error)
                delay = resolve_retry_delay(
                    self._retry_delay, self.failure_count - 1, error
                )
                logger.debug(
                    "Attempt %d failed (%r), retrying in %sms",
                    self.failure_count,
                    error,
                    delay,
                )
                await asyncio.sleep(delay / 1000)


__all__ = [
    "RetryDelayValue",
    "RetryValue",
    "Retryer",
    "default_retry_delay",
    "is_retryable_error",
    "resolve_retry_delay",
    "should_retry",
]
