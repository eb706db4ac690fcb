"""In-process storage used by tests and single-process deployments."""

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from livesettings.core import coerce
from livesettings.core.history import HistoryItem
from livesettings.core.setting import Setting
from livesettings.storage.base import StorageAdapter


class MemoryStorage(StorageAdapter):
    """Thread-safe dictionary backed storage.

    Records are kept as plain attribute dicts so that callers mutating a
    returned Setting never change what is stored. Namespaces created with
    ``with_namespace`` share the same underlying dictionaries.
    """

    def __init__(self, namespace: Optional[str] = None) -> None:
        super().__init__(namespace)
        self._lock = threading.RLock()
        self._namespaces: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _bucket(self, name: str) -> Dict[str, Any]:
        ns = self._namespaces.get(self._storage_namespace())
        if ns is None:
            ns = {"settings": {}, "history": {}}
            self._namespaces[self._storage_namespace()] = ns
        return ns[name]

    def _load(self, attributes: Dict[str, Any]) -> Setting:
        return Setting.from_dict(attributes, namespace=self.namespace)

    def clear(self) -> None:
        """Remove every setting and history entry in every namespace."""
        with self._lock:
            self._namespaces.clear()

    def all(self) -> List[Setting]:
        with self._lock:
            records = list(self._bucket("settings").values())
        return [self._load(attributes) for attributes in records]

    def updated_since(self, timestamp: datetime) -> List[Setting]:
        timestamp = coerce.time(timestamp)
        return [
            setting
            for setting in self.all()
            if setting.updated_at is not None and setting.updated_at > timestamp
        ]

    def last_updated_at(self) -> Optional[datetime]:
        with self._lock:
            stamps = [
                attributes["updated_at"]
                for attributes in self._bucket("settings").values()
                if attributes.get("updated_at")
            ]
        return max((coerce.time(stamp) for stamp in stamps), default=None)

    def find_by_key(self, key: str) -> Optional[Setting]:
        with self._lock:
            attributes = self._bucket("settings").get(key)
        if attributes is None or attributes.get("deleted"):
            return None
        return self._load(attributes)

    def _write(self, setting: Setting, previous_key: Optional[str]) -> None:
        with self._lock:
            settings = self._bucket("settings")
            if previous_key and previous_key != setting.key:
                settings.pop(previous_key, None)
            settings[setting.key] = setting.to_dict()

    def create_history(
        self,
        key: str,
        value: Optional[str] = None,
        changed_by: Optional[str] = None,
        deleted: bool = False,
        created_at: Optional[datetime] = None,
    ) -> None:
        item = HistoryItem(
            key=key, value=value, changed_by=changed_by, deleted=deleted, created_at=created_at
        )
        with self._lock:
            self._bucket("history").setdefault(key, []).insert(0, item)

    def history(self, key: str, limit: Optional[int] = None, offset: int = 0) -> List[HistoryItem]:
        with self._lock:
            items = list(self._bucket("history").get(key, []))
        end = None if limit is None else offset + limit
        return items[offset:end]

    def redact_history(self, key: str) -> None:
        with self._lock:
            items = self._bucket("history").get(key)
            if items:
                self._bucket("history")[key] = [item.redacted() for item in items]
