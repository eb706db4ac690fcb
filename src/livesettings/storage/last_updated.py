"""Adapter decorator that caches ``last_updated_at`` in a key/value cache."""

from datetime import datetime
from typing import Any, List, Optional

from loguru import logger

from livesettings.core import coerce
from livesettings.core.history import HistoryItem
from livesettings.core.setting import Setting
from livesettings.core.ttl_cache import TTLCache
from livesettings.storage.base import StorageAdapter

CACHE_KEY = "livesettings.last_updated"

# Stored in place of None so a cached "empty store" is distinguishable from a miss
_EMPTY = ""


class LastUpdatedCache(StorageAdapter):
    """Wrap a storage adapter so the hot ``last_updated_at`` poll hits a cache.

    With many processes each polling the store every few seconds, a shared
    cache (anything exposing ``get(key)``, ``set(key, value, ttl)`` and
    ``delete(key)``) turns most polls into cache hits. Writes made through
    this adapter invalidate the cached value; writes made elsewhere become
    visible once the TTL expires.
    """

    def __init__(self, storage: StorageAdapter, cache: Any = None, ttl: float = 5.0) -> None:
        super().__init__(storage.namespace)
        self.storage = storage
        self.cache = cache if cache is not None else TTLCache(default_ttl=ttl)
        self.ttl = ttl
        self.time_precision = storage.time_precision

    @property
    def cache_key(self) -> str:
        return f"{CACHE_KEY}:{self.namespace}" if self.namespace else CACHE_KEY

    def last_updated_at(self) -> Optional[datetime]:
        cached = self.cache.get(self.cache_key)
        if cached is not None:
            return coerce.time(cached) if cached != _EMPTY else None

        value = self.storage.last_updated_at()
        self.cache.set(self.cache_key, coerce.iso8601(value) if value else _EMPTY, self.ttl)
        return value

    def invalidate(self) -> None:
        self.cache.delete(self.cache_key)

    def all(self) -> List[Setting]:
        return self.storage.all()

    def active(self) -> List[Setting]:
        return self.storage.active()

    def updated_since(self, timestamp: datetime) -> List[Setting]:
        return self.storage.updated_since(timestamp)

    def find_by_key(self, key: str) -> Optional[Setting]:
        return self.storage.find_by_key(key)

    def ready(self) -> bool:
        return self.storage.ready()

    def _write(self, setting: Setting, previous_key: Optional[str]) -> None:
        try:
            self.storage._write(setting, previous_key)
        finally:
            self.invalidate()
        logger.trace(f"Invalidated {self.cache_key} after writing {setting.key!r}")

    def create_history(
        self,
        key: str,
        value: Optional[str] = None,
        changed_by: Optional[str] = None,
        deleted: bool = False,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.storage.create_history(
            key, value=value, changed_by=changed_by, deleted=deleted, created_at=created_at
        )

    def history(self, key: str, limit: Optional[int] = None, offset: int = 0) -> List[HistoryItem]:
        return self.storage.history(key, limit=limit, offset=offset)

    def redact_history(self, key: str) -> None:
        self.storage.redact_history(key)

    def with_namespace(self, namespace: Optional[str]) -> "LastUpdatedCache":
        return LastUpdatedCache(self.storage.with_namespace(namespace), cache=self.cache, ttl=self.ttl)

    def __repr__(self) -> str:
        return f"LastUpdatedCache({self.storage!r}, ttl={self.ttl!r})"
