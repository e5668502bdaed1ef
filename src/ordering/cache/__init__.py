"""Read cache factory.

Provides get_read_cache() / set_read_cache() / reset_read_cache() to swap
implementations. Defaults to the in-process cache.
"""

from ordering.cache.port import ReadCache

_current_cache: ReadCache | None = None


def get_read_cache() -> ReadCache:
    """Return the current read cache. Defaults to InMemoryReadCache."""
    global _current_cache
    if _current_cache is None:
        from ordering.cache.memory_adapter import InMemoryReadCache

        _current_cache = InMemoryReadCache()
    return _current_cache


def set_read_cache(cache: ReadCache) -> None:
    """Override the active read cache (useful for tests)."""
    global _current_cache
    _current_cache = cache


def reset_read_cache() -> None:
    """Reset to the default read cache."""
    global _current_cache
    _current_cache = None
