"""livesettings: typed application settings with a self-refreshing local cache.

Typical setup::

    from livesettings import SettingsRegistry, context

    registry = SettingsRegistry.from_config()
    settings = registry.default

    with context():
        if settings.enabled("checkout.v2"):
            ...
"""

from livesettings.core.context import RequestContext, context, current_context
from livesettings.core.exceptions import (
    InvalidStoreDataError,
    NamespaceError,
    SettingsError,
    SettingValidationError,
    StoreUnavailableError,
)
from livesettings.core.history import HistoryItem
from livesettings.core.instance import SettingsInstance, SettingsRegistry
from livesettings.core.local_cache import NOT_DEFINED, CacheState, LocalCache
from livesettings.core.setting import Setting, ValueType
from livesettings.storage import StorageAdapter, build_storage

__version__ = "0.1.0"

__all__ = [
    "CacheState",
    "HistoryItem",
    "InvalidStoreDataError",
    "LocalCache",
    "NOT_DEFINED",
    "NamespaceError",
    "RequestContext",
    "Setting",
    "SettingValidationError",
    "SettingsError",
    "SettingsInstance",
    "SettingsRegistry",
    "StorageAdapter",
    "StoreUnavailableError",
    "ValueType",
    "build_storage",
    "context",
    "current_context",
]
