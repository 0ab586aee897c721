"""TTL and capacity bounded key/value store used in front of remote sources."""

import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()


class TTLCache:
    """In-memory cache with per-entry expiry and least-recently-used eviction.

    Expired entries are dropped on access and purged before any capacity
    eviction happens, so a live entry is never evicted while a dead one remains.

    Parameters
    ----------
    max_size : int, default=256
        Maximum number of live entries.
    ttl : float, default=300.0
        Default time-to-live, in the units of `clock`.
    clock : Callable[[], float], optional
        Monotonic time source. Defaults to `time.monotonic`.
    """

    def __init__(
        self,
        max_size: int = 256,
        ttl: float = 300.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock or time.monotonic
        # key -> (value, inserted_at, ttl)
        self._entries: "OrderedDict[Hashable, Tuple[Any, float, float]]" = OrderedDict()

    def _expired(self, entry: Tuple[Any, float, float], now: float) -> bool:
        _, inserted_at, ttl = entry
        return now - inserted_at >= ttl

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        if self._expired(entry, self._clock()):
            del self._entries[key]
            return default
        self._entries.move_to_end(key)
        return entry[0]

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        self._entries[key] = (value, now, self.ttl if ttl is None else ttl)
        self._entries.move_to_end(key)
        if len(self._entries) > self.max_size:
            self._purge(now)
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Cache full, evicted %r", evicted)

    def delete(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def _purge(self, now: float) -> None:
        for key in [k for k, e in self._entries.items() if self._expired(e, now)]:
            del self._entries[key]

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        self._purge(self._clock())
        return len(self._entries)

    async def get_or_load(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """Return the cached value, or await `loader` and cache its result."""
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = await loader()
        self.set(key, value, ttl=ttl)
        return value
