"""Storage adapters for livesettings."""

from typing import Optional

from loguru import logger

from livesettings.core.config import Settings, settings as default_settings
from livesettings.storage.base import StorageAdapter
from livesettings.storage.http import HttpStorage
from livesettings.storage.json_storage import JSONFileStorage, JSONStorage
from livesettings.storage.last_updated import LastUpdatedCache
from livesettings.storage.memory import MemoryStorage
from livesettings.storage.null import NullStorage
from livesettings.storage.redis_storage import RedisStorage
from livesettings.storage.sql import SQLStorage

__all__ = [
    "StorageAdapter",
    "MemoryStorage",
    "NullStorage",
    "SQLStorage",
    "JSONStorage",
    "JSONFileStorage",
    "RedisStorage",
    "HttpStorage",
    "LastUpdatedCache",
    "build_storage",
]


def build_storage(config: Optional[Settings] = None, namespace: Optional[str] = None) -> StorageAdapter:
    """Create the storage adapter selected by ``config.STORAGE``.

    Raises:
        ValueError: For an unknown backend name or missing backend options.
    """
    config = config or default_settings
    backend = config.STORAGE.strip().lower()

    storage: StorageAdapter
    if backend == "memory":
        storage = MemoryStorage(namespace=namespace)
    elif backend == "null":
        storage = NullStorage(namespace=namespace)
    elif backend == "sql":
        from livesettings.core.db import create_settings_engine

        storage = SQLStorage(create_settings_engine(config.DB_URL, config.DB_ECHO), namespace=namespace)
    elif backend == "json":
        storage = JSONFileStorage(config.JSON_FILE, namespace=namespace)
    elif backend == "redis":
        storage = RedisStorage.from_url(config.REDIS_URL, namespace=namespace, timeout=config.HTTP_TIMEOUT)
    elif backend == "http":
        if not config.HTTP_BASE_URL:
            raise ValueError("LIVESETTINGS_HTTP_BASE_URL is required for the http storage backend")
        storage = HttpStorage(
            config.HTTP_BASE_URL,
            namespace=namespace,
            timeout=config.HTTP_TIMEOUT,
            headers=config.HTTP_HEADERS,
        )
    else:
        raise ValueError(f"Unknown storage backend: {config.STORAGE!r}")

    if config.LAST_UPDATED_TTL > 0:
        storage = LastUpdatedCache(storage, ttl=config.LAST_UPDATED_TTL)

    logger.debug(f"Using settings storage {storage!r}")
    return storage
