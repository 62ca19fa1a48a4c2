"""Tests for QueryCache and QueryFilters."""

import logging

import pytest

from pgquery import FetchStatus, QueryCacheEvent, QueryClient, QueryFilters, QueryOptions


def build(client: QueryClient, key: list, **options):
    return client.query_cache.build(client, QueryOptions(query_key=key, **options))


class TestBuild:
    """Tests for QueryCache.build."""

    async def test_build_is_idempotent_per_hash(self, client: QueryClient) -> None:
        """Building twice for one key returns the same query."""
        first = build(client, ["users", {"a": 1, "b": 2}])
        second = build(client, ("users", {"b": 2, "a": 1}))
        assert first is second
        assert len(client.query_cache) == 1

    async def test_existing_options_are_kept(self, client: QueryClient) -> None:
        """Building again does not overwrite the query's options."""
        query = build(client, ["users"], stale_time="1m")
        build(client, ["users"], stale_time="1h")
        assert query.options.stale_time == "1m"

    async def test_options_are_defaulted(self, client: QueryClient) -> None:
        """Test that built queries carry defaulted options."""
        query = build(client, ["users"])
        assert query.options.retry == 3
        assert query.options.retry_delay == 1
        assert query.options.gc_time_ms == 300_000

    async def test_requires_key(self, client: QueryClient) -> None:
        """Test that building without a key raises."""
        with pytest.raises(ValueError, match="query_key"):
            client.query_cache.build(client, QueryOptions())


class TestFind:
    """Tests for find and find_all."""

    async def test_bare_key_find_is_exact(self, client: QueryClient) -> None:
        """Test that find with a bare key matches exactly."""
        build(client, ["users", "list"])
        assert client.query_cache.find(["users"]) is None
        assert client.query_cache.find(["users", "list"]) is not None

    async def test_find_all_by_prefix(self, client: QueryClient) -> None:
        """Test that find_all matches by key prefix."""
        build(client, ["users", "list", {"active": True}])
        build(client, ["users", "detail", 1])
        build(client, ["posts", "list"])
        assert len(client.query_cache.find_all(["users"])) == 2
        assert len(client.query_cache.find_all()) == 3

    async def test_exact_filter(self, client: QueryClient) -> None:
        """Test the exact filter."""
        build(client, ["users"])
        build(client, ["users", "list"])
        found = client.query_cache.find_all(QueryFilters(query_key=["users"], exact=True))
        assert [q.query_key for q in found] == [("users",)]

    async def test_type_filter(self, client: QueryClient) -> None:
        """Test filtering active and inactive queries."""
        from pgquery import QueryObserver

        active = build(client, ["active"])
        build(client, ["inactive"])
        observer = QueryObserver(client, QueryOptions(query_key=["active"], enabled=False))
        observer.subscribe(lambda result: None)

        assert client.query_cache.find_all(QueryFilters(type="active")) == [active]
        assert [q.query_key for q in client.query_cache.find_all(QueryFilters(type="inactive"))] == [
            ("inactive",)
        ]

    async def test_stale_and_predicate_filters(self, client: QueryClient) -> None:
        """Test the stale flag and predicate filters."""
        fresh = build(client, ["fresh"], stale_time="1h")
        fresh.set_data(1, manual=True)
        stale = build(client, ["stale"])
        stale.set_data(2, manual=True)

        assert client.query_cache.find_all(QueryFilters(stale=False)) == [fresh]
        assert stale in client.query_cache.find_all(QueryFilters(stale=True))
        assert client.query_cache.find_all(
            QueryFilters(predicate=lambda q: q.state.data == 2)
        ) == [stale]

    async def test_fetch_status_filter(self, client: QueryClient) -> None:
        """Test filtering by fetch status."""
        build(client, ["idle"])
        found = client.query_cache.find_all(QueryFilters(fetch_status=FetchStatus.FETCHING))
        assert found == []


class TestEvents:
    """Tests for cache events."""

    async def test_lifecycle_events(self, client: QueryClient) -> None:
        """Test the added, updated and removed events."""
        events: list[QueryCacheEvent] = []
        client.query_cache.subscribe(events.append)

        query = build(client, ["events"])
        query.set_data("x", manual=True)
        client.query_cache.remove(query)

        assert [e.type for e in events] == ["added", "updated", "removed"]
        assert events[1].action == "success"
        assert all(e.query is query for e in events)

    async def test_unsubscribe(self, client: QueryClient) -> None:
        """Test that an unsubscribed listener hears nothing more."""
        events: list[QueryCacheEvent] = []
        unsubscribe = client.query_cache.subscribe(events.append)
        unsubscribe()
        build(client, ["quiet"])
        assert events == []

    async def test_failing_listener_is_isolated(
        self, client: QueryClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A failing listener does not stop the others."""
        events: list[QueryCacheEvent] = []

        def broken(event: QueryCacheEvent) -> None:
            raise RuntimeError("listener bug")

        client.query_cache.subscribe(broken)
        client.query_cache.subscribe(events.append)
        with caplog.at_level(logging.ERROR, logger="pgquery.query_cache"):
            build(client, ["isolated"])

        assert [e.type for e in events] == ["added"]
        assert "listener failed" in caplog.text

    async def test_clear_removes_everything(self, client: QueryClient) -> None:
        """Test that clear empties the cache."""
        build(client, ["a"])
        build(client, ["b"])
        client.query_cache.clear()
        assert client.query_cache.get_all() == []
