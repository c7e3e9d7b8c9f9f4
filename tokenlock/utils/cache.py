import time
from typing import Any


# Simple in-memory TTL cache for read-only RPC results
_cache: dict[str, tuple[float, Any]] = {}


def get_cache(key: str, ttl: int) -> Any | None:
    """
    Return cached value if it exists and is younger than ttl seconds.
    """
    entry = _cache.get(key)
    if entry is None:
        return None

    stored_at, value = entry
    if time.time() - stored_at > ttl:
        del _cache[key]
        return None

    return value


def set_cache(key: str, value: Any) -> None:
    _cache[key] = (time.time(), value)


def clear_cache() -> None:
    _cache.clear()
