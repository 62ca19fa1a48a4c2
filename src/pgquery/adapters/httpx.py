"""Query and mutation functions backed by ``httpx.AsyncClient``."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx

from pgquery.errors import FetchError
from pgquery.types import QueryFunctionContext


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
        message = body.get("message") or body.get("error") or f"HTTP {response.status_code}"
    except (ValueError, AttributeError):
        message = f"HTTP {response.status_code}"
    raise FetchError(str(message), status_code=response.status_code)


def _decode(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return {}
    return response.json()


def http_query_fn(
    client: httpx.AsyncClient,
    path: str,
    *,
    params: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
) -> Callable[[QueryFunctionContext], Awaitable[Any]]:
    """Build a query function that GETs ``path`` and returns the decoded JSON.

    Non-2xx responses raise ``FetchError`` carrying the status code, so the
    retry policy can tell server failures from client errors. Transport
    errors propagate as ``httpx`` raises them. Aborting ``context.signal``
    cancels the request in flight.
    """

    async def query_fn(context: QueryFunctionContext) -> Any:
        request = asyncio.ensure_future(client.get(path, params=params, headers=headers))
        context.signal.add_listener(request.cancel)
        response = await request
        _raise_for_status(response)
        return _decode(response)

    return query_fn


def http_mutation_fn(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    *,
    headers: Mapping[str, str] | None = None,
) -> Callable[[Any], Awaitable[Any]]:
    """Build a mutation function sending its variables as the JSON body."""

    async def mutation_fn(variables: Any) -> Any:
        response = await client.request(method, path, json=variables, headers=headers)
        _raise_for_status(response)
        return _decode(response)

    return mutation_fn


__all__ = ["http_mutation_fn", "http_query_fn"]
