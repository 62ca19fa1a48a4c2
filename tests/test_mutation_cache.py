"""Tests for MutationCache."""

import asyncio

import pytest

from pgquery import (
    MutationCacheEvent,
    MutationFilters,
    MutationOptions,
    MutationStatus,
    OnlineManager,
    QueryClient,
)


class TestBuild:
    """Tests for MutationCache.build."""

    def test_ids_increase(self, client: QueryClient) -> None:
        """Mutation ids are unique and increasing."""
        options = MutationOptions(mutation_fn=lambda v: v)
        first = client.mutation_cache.build(client, options)
        second = client.mutation_cache.build(client, options)

        assert first is not second
        assert second.mutation_id == first.mutation_id + 1
        assert client.mutation_cache.get_all() == [first, second]
        assert len(client.mutation_cache) == 2

    def test_mutation_defaults_applied(self, client: QueryClient) -> None:
        """Test that key-prefix mutation defaults are applied on build."""
        client.set_mutation_defaults(["todos"], MutationOptions(retry=2))
        mutation = client.mutation_cache.build(
            client, MutationOptions(mutation_key=["todos", "add"], mutation_fn=lambda v: v)
        )
        assert mutation.options.retry == 2


class TestFind:
    """Tests for mutation filters."""

    async def test_filter_by_key_and_status(self, client: QueryClient) -> None:
        """Test finding mutations by key and status."""
        cache = client.mutation_cache
        add = cache.build(client, MutationOptions(mutation_key=["todos", "add"], mutation_fn=lambda v: v))
        remove = cache.build(
            client, MutationOptions(mutation_key=["todos", "remove"], mutation_fn=lambda v: v)
        )
        other = cache.build(client, MutationOptions(mutation_key=["users"], mutation_fn=lambda v: v))
        await add.execute(1)

        assert cache.find_all(MutationFilters(mutation_key=["todos"])) == [add, remove]
        assert cache.find_all(MutationFilters(mutation_key=["todos"], exact=True)) == []
        assert cache.find(MutationFilters(mutation_key=["users"], exact=True)) is other
        assert cache.find_all(MutationFilters(status=MutationStatus.SUCCESS)) == [add]
        assert cache.find_all(MutationFilters(predicate=lambda m: m.mutation_id == remove.mutation_id)) == [
            remove
        ]

    def test_unkeyed_mutation_skipped_by_key_filter(self, client: QueryClient) -> None:
        """Test that mutations without a key never match a key filter."""
        client.mutation_cache.build(client, MutationOptions(mutation_fn=lambda v: v))
        assert client.mutation_cache.find(MutationFilters(mutation_key=["any"])) is None


class TestEvents:
    """Tests for cache events."""

    async def test_added_updated_removed(self, client: QueryClient) -> None:
        """Test the event stream for one mutation."""
        events: list[MutationCacheEvent] = []
        client.mutation_cache.subscribe(events.append)

        mutation = client.mutation_cache.build(client, MutationOptions(mutation_fn=lambda v: v))
        await mutation.execute(1)
        client.mutation_cache.remove(mutation)

        types = [event.type for event in events]
        assert types[0] == "added"
        assert types[-1] == "removed"
        actions = [event.action for event in events if event.type == "updated"]
        assert actions == ["loading", "success"]

    def test_unsubscribe(self, client: QueryClient) -> None:
        """Test that an unsubscribed listener hears nothing more."""
        events: list[MutationCacheEvent] = []
        unsubscribe = client.mutation_cache.subscribe(events.append)
        unsubscribe()
        client.mutation_cache.build(client, MutationOptions(mutation_fn=lambda v: v))
        assert events == []

    def test_clear(self, client: QueryClient) -> None:
        """Test that clear removes every mutation."""
        for _ in range(3):
            client.mutation_cache.build(client, MutationOptions(mutation_fn=lambda v: v))
        client.mutation_cache.clear()
        assert client.mutation_cache.get_all() == []


class TestResume:
    """Tests for resuming paused mutations."""

    async def test_resumes_in_order(self, client: QueryClient, online: OnlineManager) -> None:
        """Paused mutations resume one after another in submit order."""
        order: list[str] = []

        async def record(variables: str) -> str:
            order.append(variables)
            return variables

        online.set_online(False)
        tasks = [
            asyncio.create_task(client.execute_mutation(MutationOptions(mutation_fn=record), name))
            for name in ("first", "second")
        ]
        await asyncio.sleep(0.01)
        assert order == []

        online.set_online(True)
        outcomes = await client.resume_paused_mutations()

        assert outcomes == ["first", "second"]
        assert order == ["first", "second"]
        assert await asyncio.gather(*tasks) == ["first", "second"]

    async def test_failures_collected(self, client: QueryClient, online: OnlineManager) -> None:
        """Test that one failing resumed mutation does not stop the rest."""

        async def failing(variables: str) -> str:
            raise RuntimeError(variables)

        online.set_online(False)
        task = asyncio.create_task(
            client.execute_mutation(MutationOptions(mutation_fn=failing), "offline")
        )
        await asyncio.sleep(0.01)

        online.set_online(True)
        outcomes = await client.resume_paused_mutations()
        assert len(outcomes) == 1
        assert isinstance(outcomes[0], RuntimeError)
        with pytest.raises(RuntimeError):
            await task

    async def test_resumed_when_client_mounted(
        self, client: QueryClient, online: OnlineManager
    ) -> None:
        """Test that reconnecting a mounted client resumes paused mutations."""
        online.set_online(False)
        client.mount()
        task = asyncio.create_task(
            client.execute_mutation(MutationOptions(mutation_fn=lambda v: v * 2), 4)
        )
        await asyncio.sleep(0.01)

        online.set_online(True)
        assert await asyncio.wait_for(task, 1) == 8
        client.unmount()
