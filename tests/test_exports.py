"""Tests for package exports."""


def test_core_exports() -> None:
    """Test that the core classes are importable from the package root."""
    from pgquery import (
        MutationCache,
        MutationObserver,
        QueryCache,
        QueryClient,
        QueryObserver,
        QueryOptions,
    )

    assert QueryClient is not None
    assert QueryCache is not None
    assert MutationCache is not None
    assert QueryObserver is not None
    assert MutationObserver is not None
    assert QueryOptions is not None


def test_all_names_resolve() -> None:
    """Test that every name in __all__ exists."""
    import pgquery

    for name in pgquery.__all__:
        assert getattr(pgquery, name) is not None, name


def test_adapters_importable() -> None:
    from pgquery.adapters import http_mutation_fn, http_query_fn

    assert callable(http_query_fn)
    assert callable(http_mutation_fn)
