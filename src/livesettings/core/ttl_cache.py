"""In-process key/value store with per-entry expiry.

``LastUpdatedCache`` uses it to remember the store's last-updated timestamp
between polls. Anything with the same ``get``/``set``/``delete`` signatures
(a thin Redis or memcached wrapper, say) can be passed in its place to share
that timestamp between processes.
"""

import threading
from time import monotonic
from typing import Any, Callable, Dict, NamedTuple, Optional

from loguru import logger

_MISSING = object()


class _Entry(NamedTuple):
    value: Any
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class TTLCache:
    """Thread-safe TTL cache keyed by string.

    Expiry uses the monotonic clock, so wall-clock jumps never resurrect or
    prematurely drop entries. Expired entries are removed lazily on ``get``
    or in bulk by ``cleanup_expired``.

    Attributes:
        _cache: Key to ``_Entry(value, expires_at)``.
        _default_ttl: Seconds an entry lives when ``set`` gets no ttl.
    """

    def __init__(self, default_ttl: float = 60):
        self._cache: Dict[str, _Entry] = {}
        self._default_ttl = default_ttl
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for ``key``, or ``default``.

        None is a legitimate cached value; pass a sentinel as ``default`` to
        tell it apart from a miss.
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return default
            if entry.expired(monotonic()):
                del self._cache[key]
                logger.trace(f"TTL cache expired {key}")
                return default
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        seconds = self._default_ttl if ttl is None else ttl
        with self._lock:
            self._cache[key] = _Entry(value, monotonic() + seconds)

    def fetch(self, key: str, producer: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        """Return the cached value, calling ``producer`` to fill a miss.

        The producer runs outside the lock; two concurrent misses may both
        call it and the last one stored wins.
        """
        value = self.get(key, _MISSING)
        if value is _MISSING:
            value = producer()
            self.set(key, value, ttl)
        return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def cleanup_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = monotonic()
        with self._lock:
            stale = [key for key, entry in self._cache.items() if entry.expired(now)]
            for key in stale:
                del self._cache[key]
        if stale:
            logger.debug(f"TTL cache dropped {len(stale)} expired entries")
        return len(stale)

    def stats(self) -> Dict[str, int]:
        now = monotonic()
        with self._lock:
            total = len(self._cache)
            expired = sum(1 for entry in self._cache.values() if entry.expired(now))
        return {
            "total_entries": total,
            "expired_entries": expired,
            "active_entries": total - expired,
        }
