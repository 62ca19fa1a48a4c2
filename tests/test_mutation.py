"""Tests for Mutation execution and lifecycle hooks."""

import asyncio

import pytest

from pgquery import (
    Mutation,
    MutationCache,
    MutationCacheConfig,
    MutationOptions,
    MutationStatus,
    OnlineManager,
    QueryCancelledError,
    QueryClient,
)


def build(client: QueryClient, **options) -> Mutation:
    return client.mutation_cache.build(client, MutationOptions(**options))


class TestExecute:
    """Tests for Mutation.execute."""

    async def test_success_records_state(self, client: QueryClient) -> None:
        """Test that a successful run records data, variables and submit time."""

        async def create_user(variables: dict) -> dict:
            return {"id": 7, **variables}

        mutation = build(client, mutation_fn=create_user)
        data = await mutation.execute({"name": "ada"})

        assert data == {"id": 7, "name": "ada"}
        assert mutation.state.status is MutationStatus.SUCCESS
        assert mutation.state.data == data
        assert mutation.state.variables == {"name": "ada"}
        assert mutation.state.submitted_at > 0

    async def test_sync_mutation_fn(self, client: QueryClient) -> None:
        """Test that a plain function works as mutation_fn."""
        mutation = build(client, mutation_fn=lambda n: n * 2)
        assert await mutation.execute(21) == 42

    async def test_loading_while_running(self, client: QueryClient) -> None:
        """Test that a running mutation is loading and counted by is_mutating."""
        release = asyncio.Event()

        async def slow(variables: int) -> int:
            await release.wait()
            return variables

        mutation = build(client, mutation_fn=slow)
        task = asyncio.create_task(mutation.execute(1))
        await asyncio.sleep(0)
        assert mutation.state.status is MutationStatus.LOADING
        assert client.is_mutating() == 1

        release.set()
        assert await task == 1
        assert client.is_mutating() == 0

    async def test_error_reraised(self, client: QueryClient) -> None:
        """Test that the mutation's error is recorded and raised."""

        async def failing(variables: int) -> int:
            raise RuntimeError("rejected")

        mutation = build(client, mutation_fn=failing)
        with pytest.raises(RuntimeError, match="rejected"):
            await mutation.execute(1)

        assert mutation.state.status is MutationStatus.ERROR
        assert isinstance(mutation.state.error, RuntimeError)
        assert mutation.state.failure_count == 1

    async def test_missing_mutation_fn(self, client: QueryClient) -> None:
        """Executing without a mutation_fn fails fast."""
        mutation = build(client)
        with pytest.raises(ValueError):
            await mutation.execute(1)

    async def test_retry(self, client: QueryClient) -> None:
        """Test that an explicit retry count is honoured."""
        attempts = 0

        async def flaky(variables: int) -> str:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise ConnectionError("reset")
            return "ok"

        mutation = build(client, mutation_fn=flaky, retry=2, retry_delay=1)
        assert await mutation.execute(1) == "ok"
        assert attempts == 3

    async def test_no_retry_by_default(self, client: QueryClient) -> None:
        """Test that mutations are not retried by default."""
        attempts = 0

        async def failing(variables: int) -> str:
            nonlocal attempts
            attempts += 1
            raise ConnectionError("reset")

        mutation = build(client, mutation_fn=failing)
        with pytest.raises(ConnectionError):
            await mutation.execute(1)
        assert attempts == 1


class TestHooks:
    """Tests for hook order and context."""

    async def test_success_hook_order(self, client: QueryClient) -> None:
        """Test that on_mutate, on_success and on_settled run in order."""
        calls: list[tuple] = []

        async def on_mutate(variables: int) -> dict:
            calls.append(("mutate", variables))
            return {"snapshot": "before"}

        async def mutate(variables: int) -> int:
            calls.append(("fn", variables))
            return variables + 1

        mutation = build(
            client,
            mutation_fn=mutate,
            on_mutate=on_mutate,
            on_success=lambda data, variables, context: calls.append(("success", data, context)),
            on_error=lambda error, variables, context: calls.append(("error",)),
            on_settled=lambda data, error, variables, context: calls.append(
                ("settled", data, error)
            ),
        )
        await mutation.execute(1)

        assert calls == [
            ("mutate", 1),
            ("fn", 1),
            ("success", 2, {"snapshot": "before"}),
            ("settled", 2, None),
        ]
        assert mutation.state.context == {"snapshot": "before"}

    async def test_error_hooks_receive_context(self, client: QueryClient) -> None:
        """on_mutate's context reaches on_error so callers can roll back."""
        seen: list = []
        error = RuntimeError("boom")

        async def failing(variables: int) -> int:
            raise error

        mutation = build(
            client,
            mutation_fn=failing,
            on_mutate=lambda variables: "rollback-token",
            on_error=lambda err, variables, context: seen.append((err, context)),
            on_settled=lambda data, err, variables, context: seen.append((data, err)),
        )
        with pytest.raises(RuntimeError):
            await mutation.execute(5)

        assert seen == [(error, "rollback-token"), (None, error)]

    async def test_failing_hook_becomes_error(self, client: QueryClient) -> None:
        """A hook that raises fails the mutation."""

        async def mutate(variables: int) -> int:
            return variables

        def on_success(data, variables, context) -> None:
            raise KeyError("hook")

        mutation = build(client, mutation_fn=mutate, on_success=on_success)
        with pytest.raises(KeyError):
            await mutation.execute(1)
        assert mutation.state.status is MutationStatus.ERROR

    async def test_cache_hooks_run_first(self, focus, online: OnlineManager) -> None:
        """Test that cache-level hooks run before option hooks."""
        calls: list[str] = []
        cache = MutationCache(
            MutationCacheConfig(
                on_mutate=lambda variables, mutation: calls.append("cache-mutate"),
                on_success=lambda data, variables, context, mutation: calls.append(
                    "cache-success"
                ),
                on_settled=lambda data, error, variables, context, mutation: calls.append(
                    "cache-settled"
                ),
            )
        )
        client = QueryClient(mutation_cache=cache, focus_manager=focus, online_manager=online)

        await client.execute_mutation(
            MutationOptions(
                mutation_fn=lambda variables: variables,
                on_mutate=lambda variables: calls.append("mutate"),
                on_success=lambda data, variables, context: calls.append("success"),
                on_settled=lambda data, error, variables, context: calls.append("settled"),
            ),
            1,
        )

        assert calls == [
            "cache-mutate",
            "mutate",
            "cache-success",
            "success",
            "cache-settled",
            "settled",
        ]


class TestLifecycle:
    """Tests for pausing, resetting and garbage collection."""

    async def test_paused_offline_then_resumed(
        self, client: QueryClient, online: OnlineManager
    ) -> None:
        """Test that an offline mutation pauses and finishes once resumed."""
        calls = 0

        async def mutate(variables: str) -> str:
            nonlocal calls
            calls += 1
            return variables.upper()

        online.set_online(False)
        mutation = build(client, mutation_fn=mutate)
        task = asyncio.create_task(mutation.execute("queued"))
        await asyncio.sleep(0.01)

        assert mutation.is_paused()
        assert mutation.state.status is MutationStatus.LOADING
        assert calls == 0

        online.set_online(True)
        assert await client.resume_paused_mutations() == ["QUEUED"]
        assert await task == "QUEUED"
        assert calls == 1
        assert not mutation.is_paused()

    async def test_reset(self, client: QueryClient) -> None:
        """Test that reset returns the mutation to idle."""
        mutation = build(client, mutation_fn=lambda v: v)
        await mutation.execute(3)
        mutation.reset()
        assert mutation.state.status is MutationStatus.IDLE
        assert mutation.state.data is None

    async def test_removed_after_gc_time(self, client: QueryClient) -> None:
        """Test that a settled mutation is dropped after gc_time."""
        mutation = build(client, mutation_fn=lambda v: v, gc_time=10)
        await mutation.execute(1)
        assert mutation in client.mutation_cache.get_all()

        await asyncio.sleep(0.03)
        assert mutation not in client.mutation_cache.get_all()

    async def test_cancelled_task_settles(self, client: QueryClient) -> None:
        """Cancelling the running task leaves the mutation settled and collectable."""

        async def slow(variables: int) -> int:
            await asyncio.sleep(1)
            return variables

        options = MutationOptions(mutation_fn=slow, gc_time=10)
        task = asyncio.create_task(client.execute_mutation(options, 1))
        await asyncio.sleep(0.01)
        assert client.is_mutating() == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert client.is_mutating() == 0
        mutation = client.mutation_cache.get_all()[0]
        assert mutation.state.status is MutationStatus.ERROR
        assert isinstance(mutation.state.error, QueryCancelledError)

        await asyncio.sleep(0.03)
        assert client.mutation_cache.get_all() == []
