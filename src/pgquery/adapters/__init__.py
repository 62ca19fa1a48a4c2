"""Bridges from pgquery query/mutation functions to HTTP clients."""

from pgquery.adapters.httpx import http_mutation_fn, http_query_fn

__all__ = ["http_mutation_fn", "http_query_fn"]
