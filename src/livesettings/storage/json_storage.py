"""Storage engines that keep every setting in a single JSON document.

The document is a JSON array of setting objects, each carrying its own
newest-first ``history`` array. This suits blob stores (object storage, a
shared file) where the whole payload is read and written at once.
"""

import json
import os
import tempfile
import threading
from abc import abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from livesettings.core import coerce
from livesettings.core.exceptions import InvalidStoreDataError, StoreUnavailableError
from livesettings.core.history import HistoryItem
from livesettings.core.setting import Setting
from livesettings.storage.base import StorageAdapter


class JSONStorage(StorageAdapter):
    """Abstract base for stores whose payload is one JSON document.

    Subclasses implement ``load_payload`` and ``save_payload``. Every write
    is a read-modify-write of the whole document guarded by a process-local
    lock; concurrent writers in other processes are last-write-wins.
    """

    time_precision = coerce.MILLISECOND

    def __init__(self, namespace: Optional[str] = None) -> None:
        super().__init__(namespace)
        self._write_lock = threading.RLock()

    @abstractmethod
    def load_payload(self) -> Optional[str]:
        """Return the JSON document for the current namespace (None if absent)."""

    @abstractmethod
    def save_payload(self, payload: str) -> None:
        """Persist the JSON document for the current namespace."""

    # Parsing

    def _records(self) -> List[Dict[str, Any]]:
        payload = self.load_payload()
        if coerce.blank(payload):
            return []
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise InvalidStoreDataError(f"Settings payload is not valid JSON: {e}") from e
        if not isinstance(data, list):
            raise InvalidStoreDataError("Settings payload must be a JSON array")
        return data

    def _dump(self, records: List[Dict[str, Any]]) -> None:
        records = sorted(records, key=lambda record: record["key"])
        self.save_payload(json.dumps(records, indent=2))

    def all(self) -> List[Setting]:
        return [Setting.from_dict(record, namespace=self.namespace) for record in self._records()]

    def updated_since(self, timestamp: datetime) -> List[Setting]:
        timestamp = coerce.with_precision(timestamp, self.time_precision)
        return [
            setting
            for setting in self.all()
            if setting.updated_at is not None and setting.updated_at > timestamp
        ]

    def last_updated_at(self) -> Optional[datetime]:
        return max((setting.updated_at for setting in self.all() if setting.updated_at), default=None)

    def find_by_key(self, key: str) -> Optional[Setting]:
        for setting in self.all():
            if setting.key == key and not setting.deleted:
                return setting
        return None

    def _write(self, setting: Setting, previous_key: Optional[str]) -> None:
        with self._write_lock:
            records = {record["key"]: record for record in self._records()}
            history = []
            if previous_key and previous_key != setting.key and previous_key in records:
                history = records.pop(previous_key).get("history", [])
            existing = records.get(setting.key)
            if existing is not None:
                history = existing.get("history", []) or history
            record = setting.to_dict()
            record["history"] = history
            records[setting.key] = record
            self._dump(list(records.values()))

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
        with self._write_lock:
            records = self._records()
            for record in records:
                if record["key"] == key:
                    entries = record.setdefault("history", [])
                    entries.append(item.model_dump(mode="json", exclude={"key"}))
                    entries.sort(key=lambda entry: entry["created_at"], reverse=True)
                    self._dump(records)
                    return
        logger.warning(f"History for unknown setting {key!r} dropped")

    def history(self, key: str, limit: Optional[int] = None, offset: int = 0) -> List[HistoryItem]:
        for record in self._records():
            if record["key"] == key:
                entries = record.get("history", [])
                end = None if limit is None else offset + limit
                return [HistoryItem(key=key, **entry) for entry in entries[offset:end]]
        return []

    def redact_history(self, key: str) -> None:
        with self._write_lock:
            records = self._records()
            for record in records:
                if record["key"] == key:
                    for entry in record.get("history", []):
                        entry["value"] = None
                    self._dump(records)
                    return


class JSONFileStorage(JSONStorage):
    """JSON document storage in a local file.

    Each namespace gets its own file (``settings.json`` for the default
    namespace, ``settings.<namespace>.json`` otherwise). Writes go to a
    temporary file that is atomically renamed over the original.
    """

    def __init__(self, path: os.PathLike, namespace: Optional[str] = None) -> None:
        super().__init__(namespace)
        self.path = Path(path)

    def _file(self) -> Path:
        if not self.namespace:
            return self.path
        return self.path.with_name(f"{self.path.stem}.{self.namespace}{self.path.suffix}")

    def load_payload(self) -> Optional[str]:
        path = self._file()
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreUnavailableError(f"Cannot read {path}: {e}") from e

    def save_payload(self, payload: str) -> None:
        path = self._file()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, path)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot write {path}: {e}") from e

    def last_updated_at(self) -> Optional[datetime]:
        if not self._file().exists():
            return None
        return super().last_updated_at()
