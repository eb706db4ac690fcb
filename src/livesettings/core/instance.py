"""Typed accessors over a local cache, plus the per-namespace registry."""

from __future__ import annotations

import random
import re
import threading
from contextlib import contextmanager
from datetime import date, datetime as dt
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from loguru import logger

from livesettings.core import coerce
from livesettings.core.config import Settings, settings as default_settings
from livesettings.core.context import current_context, draw
from livesettings.core.exceptions import NamespaceError
from livesettings.core.history import HistoryItem
from livesettings.core.local_cache import NOT_DEFINED, ErrorHook, LocalCache
from livesettings.core.setting import Setting, infer_value_type
from livesettings.storage import build_storage
from livesettings.storage.base import StorageAdapter

NAMESPACE_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")

UPDATE_FIELDS = ("value_type", "value", "description", "deleted")


def validate_namespace(namespace: Optional[str]) -> Optional[str]:
    """Return the namespace if it is a valid name (None is the default namespace)."""
    if namespace is None:
        return None
    if not isinstance(namespace, str) or not NAMESPACE_PATTERN.match(namespace):
        raise NamespaceError(
            f"Invalid settings namespace {namespace!r}: use only letters, numbers and underscores"
        )
    return namespace


def _to_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dt, date)):
        return coerce.iso8601(coerce.time(value))
    if isinstance(value, (list, tuple)):
        return coerce.join_array(value) or ""
    return str(value)


class SettingsInstance:
    """Settings of one namespace: typed getters, writers and cache control.

    Reads consult the active request context first, then the local cache.
    Writes go to the storage adapter and are pushed into the cache so the
    writing process sees them immediately; other processes pick them up on
    their next refresh.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        namespace: Optional[str] = None,
        refresh_interval: float = 5.0,
        on_error: Optional[ErrorHook] = None,
        asynchronous_load: bool = False,
    ) -> None:
        self.namespace = validate_namespace(namespace)
        if storage.namespace != self.namespace:
            storage = storage.with_namespace(self.namespace)
        self.storage = storage
        self.cache = LocalCache(
            storage,
            refresh_interval=refresh_interval,
            on_error=on_error,
            asynchronous_load=asynchronous_load,
        )

    def __repr__(self) -> str:
        return f"SettingsInstance(namespace={self.namespace!r}, storage={self.storage!r})"

    # Reads

    def _entry(self, key: str) -> Optional[Setting]:
        key = str(key)
        scope = current_context()
        if scope is None:
            return self.cache.entry(key)

        def resolve() -> Optional[Setting]:
            pinned = scope.pin(self.namespace, self.cache.snapshot)
            found = pinned.get(key)
            if found is NOT_DEFINED:
                return None
            if found is not None:
                return found
            return self.cache.entry(key)

        return scope.fetch(self.namespace, key, resolve)

    def _value(self, key: str) -> Any:
        setting = self._entry(key)
        return None if setting is None else setting.value

    def __getitem__(self, key: str) -> Optional[str]:
        return self.get(key)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """The value as a string.

        Datetimes are rendered as ISO-8601 UTC, arrays newline joined and
        booleans as ``"true"``/``"false"``.
        """
        value = self._value(key)
        if value is None:
            value = default
        return None if value is None else _to_string(value)

    def integer(self, key: str, default: Optional[int] = None) -> Optional[int]:
        """The value as an int; floats are truncated, unparseable values give None."""
        value = self._value(key)
        if value is None:
            value = default
        if value is None:
            return None
        try:
            return coerce.integer(value)
        except ValueError:
            pass
        try:
            return int(coerce.floating(value))
        except (TypeError, ValueError, OverflowError):
            return None

    def float(self, key: str, default: Optional[float] = None) -> Optional[float]:
        value = self._value(key)
        if value is None:
            value = default
        try:
            return coerce.floating(value)
        except (TypeError, ValueError):
            return None

    def enabled(self, key: str, default: bool = False) -> bool:
        """True if the value is a truthy token (see ``coerce.boolean``)."""
        value = self._value(key)
        return bool(coerce.boolean(default if value is None else value))

    def disabled(self, key: str, default: bool = True) -> bool:
        return not self.enabled(key, not default)

    def datetime(self, key: str, default: Any = None) -> Optional[dt]:
        """The value as an aware UTC datetime; unparseable values give None."""
        value = self._value(key)
        if value is None:
            value = default
        try:
            return coerce.time(value)
        except ValueError:
            return None

    def array(self, key: str, default: Optional[List[Any]] = None) -> Optional[List[str]]:
        value = self._value(key)
        if value is None:
            value = default
        if value is None:
            return None
        if isinstance(value, (list, tuple)):
            return [_to_string(item) for item in value if item is not None]
        return [_to_string(value)]

    def structured(
        self,
        prefix: Optional[str] = None,
        delimiter: str = ".",
        max_depth: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Nested dict built by splitting keys on ``delimiter``.

        ``{"a.b": 1, "a.c": 2}`` becomes ``{"a": {"b": 1, "c": 2}}``. With a
        prefix only keys under it are included and the prefix is stripped.
        ``max_depth`` limits the nesting; the remainder of a key stays
        joined. When a key is both a leaf and a branch the branch wins.
        """
        if max_depth is not None and max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        scope = current_context()
        if scope is not None:
            keys = list(scope.pin(self.namespace, self.cache.snapshot).keys())
        else:
            keys = list(self.cache.snapshot().keys())

        lead = f"{prefix}{delimiter}" if prefix else ""
        result: Dict[str, Any] = {}
        for key in sorted(keys):
            if lead and not key.startswith(lead):
                continue
            value = self._value(key)
            if value is None:
                continue
            path = key[len(lead):]
            parts = path.split(delimiter, max_depth - 1) if max_depth else path.split(delimiter)
            node = result
            for part in parts[:-1]:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = node[part] = {}
                node = child
            if not isinstance(node.get(parts[-1]), dict):
                node[parts[-1]] = value
        return result

    def rand(self, maximum: Union[int, float, range, None] = None) -> Union[int, float]:
        """Random number; stable for the active request context's sequence."""
        scope = current_context()
        if scope is None:
            return draw(random, maximum)
        return scope.rand(maximum)

    def to_dict(self) -> Dict[str, Any]:
        return self.cache.to_dict()

    def history(self, key: str, limit: Optional[int] = None, offset: int = 0) -> List[HistoryItem]:
        return self.storage.history(key, limit=limit, offset=offset)

    # Writes

    def _publish(self, setting: Setting) -> None:
        if not self.cache.loaded:
            self.cache.load_settings()
        self.cache.update_setting(setting)

    def set(self, key: str, value: Any, value_type: Any = None, changed_by: Optional[str] = None) -> Setting:
        """Create or update a setting and make it visible in this process.

        A new setting's type is inferred from ``value`` unless given. Inside a
        request context the scope keeps seeing the value from before the
        write.

        Raises:
            SettingValidationError: If the value does not fit the type.
        """
        key = str(key)
        if current_context() is not None:
            self._entry(key)

        setting = self.storage.find_by_key(key)
        if setting is None:
            setting = Setting(
                key=key,
                value_type=value_type or infer_value_type(value),
                namespace=self.namespace,
            )
        elif value_type is not None:
            setting.value_type = value_type
        setting.value = value
        self.storage.save(setting, changed_by=changed_by)
        self._publish(setting)
        logger.debug(f"Set setting {key!r} in namespace {self.namespace!r}")
        return setting

    @contextmanager
    def override(self, key: str, value: Any, value_type: Any = None) -> Iterator[Setting]:
        """Temporarily set a value, restoring the previous state on exit.

        A key that did not exist before is deleted again. Intended for tests.
        """
        previous = self.storage.find_by_key(key)
        setting = self.set(key, value, value_type=value_type)
        try:
            yield setting
        finally:
            if previous is None:
                self.delete(key)
            else:
                self.set(key, previous.raw_value, value_type=previous.value_type)

    def delete(self, key: str, changed_by: Optional[str] = None) -> bool:
        """Soft-delete a setting; False if there was nothing to delete."""
        setting = self.storage.find_by_key(str(key))
        if setting is None:
            return False
        setting.deleted = True
        self.storage.save(setting, changed_by=changed_by)
        self._publish(setting)
        return True

    def bulk_update(
        self, params: Iterable[Mapping[str, Any]], changed_by: Optional[str] = None
    ) -> Tuple[bool, List[Setting]]:
        """Apply several changes at once, writing nothing unless all are valid.

        Each item has a ``key`` and any of ``value``, ``value_type``,
        ``description`` or ``deleted``. Items without a key or without any
        of those fields are skipped, as are deletions of unknown keys.

        Returns:
            ``(all_valid, settings)``; invalid settings carry their
            ``errors``.
        """
        changed: Dict[str, Setting] = {}
        all_valid = True
        for item in params:
            item = {str(name): value for name, value in item.items()}
            key = item.get("key")
            if coerce.blank(key):
                continue
            if all(coerce.blank(item.get(name)) for name in UPDATE_FIELDS) and "value" not in item:
                continue
            key = str(key)
            setting = changed.get(key) or self.storage.find_by_key(key)
            deleting = bool(coerce.boolean(item.get("deleted")))
            if setting is None:
                if deleting:
                    continue
                setting = Setting(key=key, namespace=self.namespace)
                if "value_type" not in item:
                    setting.value_type = infer_value_type(item.get("value"))

            if deleting:
                setting.deleted = True
            else:
                if "value_type" in item:
                    setting.value_type = item["value_type"]
                if "value" in item:
                    setting.value = item["value"]
                if "description" in item:
                    setting.description = item["description"]
                setting.deleted = False
                all_valid = setting.is_valid() and all_valid
            setting.changed_by = changed_by
            changed[key] = setting

        settings = list(changed.values())
        if all_valid and settings:
            self.storage.save_all(settings, changed_by=changed_by)
            for setting in settings:
                self._publish(setting)
            logger.info(f"Bulk updated {len(settings)} settings in namespace {self.namespace!r}")
        return all_valid, settings

    # Cache control

    def load_settings(self) -> None:
        """Load the cache now, waiting for a background load to finish."""
        self.cache.load_settings()
        self.cache.wait_for_load()

    def refresh_settings(self) -> None:
        self.cache.refresh()

    def clear_cache(self) -> None:
        """Drop the cache; it reloads on the next read."""
        self.cache.reset()

    @property
    def loaded(self) -> bool:
        return self.cache.loaded

    @property
    def refresh_interval(self) -> float:
        return self.cache.refresh_interval

    @refresh_interval.setter
    def refresh_interval(self, seconds: float) -> None:
        self.cache.refresh_interval = seconds


class SettingsRegistry:
    """Application owned set of ``SettingsInstance`` objects, one per namespace.

    There is no module level registry; create one at startup and pass it to
    the code that needs settings.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        refresh_interval: float = 5.0,
        on_error: Optional[ErrorHook] = None,
        asynchronous_load: bool = False,
    ) -> None:
        self.storage = storage
        self.on_error = on_error
        self.asynchronous_load = asynchronous_load
        self._refresh_interval = float(refresh_interval)
        self._lock = threading.Lock()
        self._instances: Dict[Optional[str], SettingsInstance] = {}
        self.default = self._build(None)

    @classmethod
    def from_config(
        cls, config: Optional[Settings] = None, namespaces: Iterable[str] = (), **kwargs: Any
    ) -> "SettingsRegistry":
        """Registry over the storage backend selected in configuration."""
        config = config or default_settings
        registry = cls(
            build_storage(config),
            refresh_interval=config.REFRESH_INTERVAL,
            asynchronous_load=config.ASYNC_LOAD,
            **kwargs,
        )
        for namespace in namespaces:
            registry.add_namespace(namespace)
        return registry

    def _build(self, namespace: Optional[str]) -> SettingsInstance:
        instance = SettingsInstance(
            self.storage,
            namespace=namespace,
            refresh_interval=self._refresh_interval,
            on_error=self.on_error,
            asynchronous_load=self.asynchronous_load,
        )
        self._instances[namespace] = instance
        return instance

    def add_namespace(self, namespace: str) -> SettingsInstance:
        """Register a namespace (idempotent) and return its instance."""
        validate_namespace(namespace)
        with self._lock:
            existing = self._instances.get(namespace)
            if existing is not None:
                return existing
            logger.debug(f"Registered settings namespace {namespace!r}")
            return self._build(namespace)

    def for_namespace(self, namespace: Optional[str] = None) -> SettingsInstance:
        if namespace is None:
            return self.default
        validate_namespace(namespace)
        instance = self._instances.get(namespace)
        if instance is None:
            raise NamespaceError(f"Unknown settings namespace {namespace!r}")
        return instance

    def __getitem__(self, namespace: Optional[str]) -> SettingsInstance:
        return self.for_namespace(namespace)

    @property
    def namespaces(self) -> List[str]:
        return sorted(name for name in self._instances if name is not None)

    def instances(self) -> List[SettingsInstance]:
        return list(self._instances.values())

    def load_settings(self) -> None:
        for instance in self.instances():
            instance.load_settings()

    def refresh_settings(self) -> None:
        for instance in self.instances():
            instance.refresh_settings()

    def clear_cache(self) -> None:
        for instance in self.instances():
            instance.clear_cache()

    @property
    def loaded(self) -> bool:
        return all(instance.loaded for instance in self.instances())

    @property
    def refresh_interval(self) -> float:
        return self._refresh_interval

    @refresh_interval.setter
    def refresh_interval(self, seconds: float) -> None:
        self._refresh_interval = float(seconds)
        for instance in self.instances():
            instance.refresh_interval = seconds
