"""Shared pytest fixtures."""

import pytest

from pgquery import DefaultOptions, FocusManager, OnlineManager, QueryClient, QueryOptions


@pytest.fixture
def focus() -> FocusManager:
    """A focus manager private to the test."""
    return FocusManager()


@pytest.fixture
def online() -> OnlineManager:
    """An online manager private to the test."""
    return OnlineManager()


@pytest.fixture
def client(focus: FocusManager, online: OnlineManager) -> QueryClient:
    """Create a fresh client with 1ms retry backoff for each test."""
    return QueryClient(
        default_options=DefaultOptions(queries=QueryOptions(retry_delay=1)),
        focus_manager=focus,
        online_manager=online,
    )
