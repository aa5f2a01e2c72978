"""Cache backend contract and the in-process implementations."""

import time
from collections.abc import Callable, Iterable
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class CacheBackend(Protocol):
    """Key-value store with per-key TTL.

    Implementations never raise on backend failure: reads degrade to a miss,
    writes and invalidations to a no-op, and ``increment`` to ``None``.
    """

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def invalidate(self, keys: Iterable[str]) -> None: ...

    async def increment(self, key: str, ttl_seconds: int) -> int | None:
        """Increment the counter at *key* and return its new value.

        The TTL is set when the counter is created and left untouched by
        later increments. ``None`` means no counter is available.
        """
        ...

    async def increment_below(self, key: str, limit: int, ttl_seconds: int) -> bool | None:
        """Increment the counter at *key* only while it is below *limit*.

        Returns ``True`` if it was incremented and ``False`` if it already
        reached *limit* (left unchanged). TTL handling matches ``increment``.
        """
        ...


class NullCache:
    """Cache that stores nothing. Every read misses; counters are unavailable."""

    async def get(self, key: str) -> Any | None:
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        return None

    async def invalidate(self, keys: Iterable[str]) -> None:
        return None

    async def increment(self, key: str, ttl_seconds: int) -> int | None:
        return None

    async def increment_below(self, key: str, limit: int, ttl_seconds: int) -> bool | None:
        return None


class MemoryCache:
    """Single-process TTL cache.

    Suitable for tests and single-worker deployments; entries are not shared
    between processes. ``clock`` returns seconds and defaults to
    :func:`time.monotonic`.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)

    async def invalidate(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._entries.pop(key, None)

    async def increment(self, key: str, ttl_seconds: int) -> int | None:
        current = await self.get(key)
        if current is None:
            self._entries[key] = (1, self._clock() + ttl_seconds)
            return 1
        _, expires_at = self._entries[key]
        count = int(current) + 1
        self._entries[key] = (count, expires_at)
        return count

    async def increment_below(self, key: str, limit: int, ttl_seconds: int) -> bool | None:
        current = await self.get(key)
        if current is not None and int(current) >= limit:
            return False
        await self.increment(key, ttl_seconds)
        return True

    def __len__(self) -> int:
        return len(self._entries)
