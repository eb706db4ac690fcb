"""The contract every settings backing store implements."""

import copy
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from loguru import logger

from livesettings.core import coerce
from livesettings.core.exceptions import SettingsError, SettingValidationError
from livesettings.core.history import HistoryItem
from livesettings.core.setting import Setting


class StorageAdapter(ABC):
    """Uniform read/write interface over a durable settings store.

    Subclasses implement the query primitives and ``_write``; validation,
    timestamp stamping, key renames and history bookkeeping live here so
    every backend behaves the same way.

    Contract:
        * ``all`` returns every setting including deleted ones.
        * ``updated_since`` returns settings (deleted or not) whose
          ``updated_at`` is strictly greater than the timestamp.
        * ``last_updated_at`` is the maximum ``updated_at`` including deleted
          rows, or None for an empty store. It is polled often and must be
          cheap.
        * ``find_by_key`` ignores deleted settings.
        * Connectivity problems raise ``StoreUnavailableError``; invalid data
          raises ``SettingValidationError``.
    """

    #: Timestamp resolution the backend can store faithfully.
    time_precision = coerce.MICROSECOND

    def __init__(self, namespace: Optional[str] = None) -> None:
        self.namespace = namespace
        self._stamp_lock = threading.Lock()
        self._last_stamp: Optional[datetime] = None

    # Queries

    @abstractmethod
    def all(self) -> List[Setting]:
        """Every setting in the namespace, including deleted ones."""

    def active(self) -> List[Setting]:
        """Only non-deleted settings. Used by the full cache load."""
        return [setting for setting in self.all() if not setting.deleted]

    @abstractmethod
    def updated_since(self, timestamp: datetime) -> List[Setting]:
        """Settings with ``updated_at`` strictly after ``timestamp``."""

    @abstractmethod
    def last_updated_at(self) -> Optional[datetime]:
        """Most recent ``updated_at`` across all settings, or None."""

    @abstractmethod
    def find_by_key(self, key: str) -> Optional[Setting]:
        """The non-deleted setting stored under ``key``, or None."""

    def ready(self) -> bool:
        """Whether the backend is set up (tables exist, etc.)."""
        return True

    # History

    @abstractmethod
    def create_history(
        self,
        key: str,
        value: Optional[str] = None,
        changed_by: Optional[str] = None,
        deleted: bool = False,
        created_at: Optional[datetime] = None,
    ) -> None:
        """Append one history entry for ``key``."""

    @abstractmethod
    def history(self, key: str, limit: Optional[int] = None, offset: int = 0) -> List[HistoryItem]:
        """History entries for ``key``, most recent first."""

    @abstractmethod
    def redact_history(self, key: str) -> None:
        """Null out stored values in the history of ``key``."""

    # Writes

    @abstractmethod
    def _write(self, setting: Setting, previous_key: Optional[str]) -> None:
        """Upsert the record by key (``previous_key`` when it is being renamed)."""

    def persist(self, setting: Setting) -> Setting:
        """Validate and write a setting.

        On success ``updated_at`` (and ``created_at`` for new records) are
        stamped. A renamed setting leaves a deleted tombstone under its old
        key so caches polling ``updated_since`` evict it.

        Raises:
            SettingValidationError: If the record is invalid. Nothing is written.
        """
        errors = setting.validate()
        if errors:
            raise SettingValidationError(errors)
        setting.normalize()
        setting.namespace = self.namespace

        previous_key = setting.original_key
        stamp = self._next_timestamp(setting.updated_at)
        setting.updated_at = stamp
        if setting.created_at is None:
            setting.created_at = stamp
        self._write(setting, previous_key)

        if previous_key and previous_key != setting.key:
            tombstone = Setting(
                key=previous_key,
                value_type=setting.value_type,
                deleted=True,
                created_at=stamp,
                updated_at=stamp,
                namespace=self.namespace,
            )
            self._write(tombstone, None)
        return setting

    def save(self, setting: Setting, changed_by: Optional[str] = None) -> Setting:
        """Persist a setting and append its history entry.

        History problems are logged and never undo the persisted change.
        """
        if changed_by is None:
            changed_by = setting.changed_by
        record_history = setting.history_needed()
        redact = setting.became_secret()

        self.persist(setting)
        setting.mark_persisted()
        setting.changed_by = None

        try:
            if redact:
                self.redact_history(setting.key)
            if record_history:
                self.create_history(
                    setting.key,
                    value=setting.history_value(),
                    changed_by=changed_by,
                    deleted=setting.deleted,
                    created_at=setting.updated_at,
                )
        except SettingsError as e:
            logger.warning(f"Failed to record history for setting {setting.key!r}: {e}")
        return setting

    def save_all(self, settings: Iterable[Setting], changed_by: Optional[str] = None) -> List[Setting]:
        """Save several settings; nothing is written unless all are valid."""
        settings = list(settings)
        errors = {}
        for setting in settings:
            for field, messages in setting.validate().items():
                errors.setdefault(f"{setting.key}.{field}", []).extend(messages)
        if errors:
            raise SettingValidationError(errors)
        return [self.save(setting, changed_by) for setting in settings]

    def with_namespace(self, namespace: Optional[str]) -> "StorageAdapter":
        """Same backing store scoped to another namespace."""
        clone = copy.copy(self)
        clone.namespace = namespace
        clone._stamp_lock = threading.Lock()
        return clone

    # Helpers

    def _next_timestamp(self, previous: Optional[datetime]) -> datetime:
        """Current time, bumped so stamps never go backwards for this adapter."""
        step = timedelta(milliseconds=1) if self.time_precision == coerce.MILLISECOND else timedelta(microseconds=1)
        with self._stamp_lock:
            stamp = coerce.with_precision(datetime.now(timezone.utc), self.time_precision)
            floor = max(
                (ts for ts in (previous, self._last_stamp) if ts is not None),
                default=None,
            )
            if floor is not None and stamp <= floor:
                stamp = coerce.with_precision(floor, self.time_precision) + step
            self._last_stamp = stamp
            return stamp

    def _storage_namespace(self) -> str:
        return self.namespace or ""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(namespace={self.namespace!r})"
