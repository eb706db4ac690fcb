"""In-process read-through cache of every active setting.

The cache holds one snapshot dict (key -> Setting, or ``NOT_DEFINED`` for a
key known to be missing). Readers never lock: they grab the current dict
reference and look the key up. Bulk changes (full load, refresh, writes
pushed by ``update_setting``) build a new dict and swap the reference; a
single-key miss fill inserts into the live dict. All writers serialize on
``_write_lock``.

Freshness is driven by read traffic. A read that finds ``refresh_interval``
seconds have passed since the last check runs one refresh cycle on the
calling thread while other readers keep using the previous snapshot. An idle
process never polls the store.
"""

import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from loguru import logger

from livesettings.core.exceptions import StoreUnavailableError
from livesettings.core.setting import Setting
from livesettings.storage.base import StorageAdapter


class _NotDefined:
    """Negative entry: the store had no value for the key when it was looked up."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_DEFINED"

    def __bool__(self) -> bool:
        return False


NOT_DEFINED = _NotDefined()

ErrorHook = Callable[[Exception], None]


class CacheState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"


def _newest(settings: Iterable[Setting]) -> Optional[datetime]:
    return max((s.updated_at for s in settings if s.updated_at is not None), default=None)


class LocalCache:
    """Read-through snapshot of the settings in one storage adapter.

    Args:
        storage: Adapter the snapshot is loaded from.
        refresh_interval: Seconds between change checks triggered by reads.
        on_error: Called with any exception raised by a throttled refresh or
            a background load. Those errors are also logged and never reach
            readers.
        asynchronous_load: Warm the snapshot on a daemon thread instead of
            blocking the first reader. Reads during warm-up go straight to
            ``find_by_key`` and are not cached.
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

        self._snapshot: Dict[str, Any] = {}
        self._state = CacheState.UNLOADED
        # Bumped by reset(); loads and lookups started under an older
        # generation must not publish into the new state.
        self._generation = 0
        # Bumped whenever a refresh or write publishes a snapshot; a miss fill
        # that overlapped one may hold a record the merge already superseded.
        self._merges = 0

        self._write_lock = threading.Lock()
        self._load_lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._load_done = threading.Event()
        self._loader: Optional[threading.Thread] = None

        self._next_check_at = 0.0
        self.loaded_at: Optional[datetime] = None
        self.last_checked_at: Optional[datetime] = None
        self.last_known_update_at: Optional[datetime] = None
        self.last_error: Optional[Exception] = None
        self._counters = {"loads": 0, "refreshes": 0, "lookups": 0, "errors": 0}

    # State

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def loaded(self) -> bool:
        return self._state is CacheState.LOADED

    @property
    def refresh_interval(self) -> float:
        return self._refresh_interval

    @refresh_interval.setter
    def refresh_interval(self, seconds: float) -> None:
        seconds = float(seconds)
        with self._write_lock:
            self._refresh_interval = seconds
            self._next_check_at = min(self._next_check_at, time.monotonic() + seconds)

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, key: object) -> bool:
        """Whether the snapshot holds an entry (negative entries included).

        Does not load the cache or touch the store.
        """
        return str(key) in self._snapshot

    def __repr__(self) -> str:
        return f"LocalCache({self.storage!r}, state={self._state.value}, entries={len(self._snapshot)})"

    # Reads

    def __getitem__(self, key: str) -> Any:
        """The coerced value for ``key``, or None if it has no value."""
        setting = self.entry(key)
        return None if setting is None else setting.value

    def get(self, key: str, default: Any = None) -> Any:
        value = self[key]
        return default if value is None else value

    def entry(self, key: str) -> Optional[Setting]:
        """The Setting cached for ``key``, or None if the key is not defined.

        Loads the cache on first use and runs a throttled refresh when one is
        due. A key missing from the snapshot costs one ``find_by_key`` call;
        the result (or a negative entry) is kept so the next read is free.
        Store errors raised by that lookup propagate to the caller.
        """
        key = str(key)
        just_loaded = self._prepare()
        if just_loaded is None:
            return self.storage.find_by_key(key)

        snapshot = self._snapshot
        if key in snapshot:
            found = snapshot[key]
            return None if found is NOT_DEFINED else found

        generation = self._generation
        merges = self._merges
        if just_loaded:
            # The load that just finished saw every active setting
            self._fill(key, None, generation, merges)
            return None

        setting = self.storage.find_by_key(key)
        self._counters["lookups"] += 1
        return self._fill(key, setting, generation, merges)

    def snapshot(self) -> Dict[str, Any]:
        """The current snapshot mapping.

        Treat it as read-only. Refreshes and writes replace it instead of
        changing it, so holding on to it gives a view they do not alter. Only
        keys that were absent may still be added by miss fills.
        """
        if self._prepare() is None:
            return {setting.key: setting for setting in self.storage.active()}
        return self._snapshot

    def to_dict(self) -> Dict[str, Any]:
        """Every defined key mapped to its coerced value."""
        snapshot = dict(self.snapshot())
        return {key: entry.value for key, entry in snapshot.items() if entry is not NOT_DEFINED}

    def _prepare(self) -> Optional[bool]:
        """Make sure a snapshot is available for reading.

        Returns:
            None while the snapshot is unavailable (asynchronous warm-up, or a
            reset raced the load), True if this call ran or waited for the
            full load, False if the snapshot was already loaded.
        """
        if self._state is CacheState.LOADED:
            self._maybe_refresh()
            return False

        if self.asynchronous_load or self._loading_in_background():
            self._start_background_load()
            return None if self._state is not CacheState.LOADED else False

        self._load()
        return True if self._state is CacheState.LOADED else None

    def _fill(self, key: str, setting: Optional[Setting], generation: int, merges: int) -> Optional[Setting]:
        with self._write_lock:
            if generation != self._generation or self._state is not CacheState.LOADED:
                return setting
            if merges != self._merges:
                # A deletion merged during the lookup leaves no trace to compare against
                return setting
            current = self._snapshot.get(key)
            if current is not None:
                # A refresh or write published this key while we were looking it up
                return None if current is NOT_DEFINED else current
            self._snapshot[key] = setting if setting is not None else NOT_DEFINED
        return setting

    # Loading

    def load_settings(self, asynchronous: Optional[bool] = None) -> None:
        """Load every active setting into the cache.

        Concurrent calls coalesce into a single load. Does nothing when the
        cache is already loaded.
        """
        if asynchronous is None:
            asynchronous = self.asynchronous_load
        if asynchronous:
            self._start_background_load()
        else:
            self._load()

    def wait_for_load(self, timeout: Optional[float] = None) -> bool:
        """Block until a background load finishes; True if the cache is loaded."""
        if self._state is CacheState.LOADED:
            return True
        if self._loading_in_background():
            self._load_done.wait(timeout)
        return self._state is CacheState.LOADED

    def _loading_in_background(self) -> bool:
        loader = self._loader
        return loader is not None and loader.is_alive()

    def _start_background_load(self) -> None:
        with self._write_lock:
            if self._state is CacheState.LOADED or self._loading_in_background():
                return
            self._load_done.clear()
            self._loader = threading.Thread(
                target=self._load_in_background, name="livesettings-load", daemon=True
            )
            self._loader.start()

    def _load_in_background(self) -> None:
        try:
            self._load()
        except Exception as e:
            self._report(e, "Background settings load failed")
        finally:
            self._load_done.set()

    def _load(self) -> None:
        if self._state is CacheState.LOADED:
            return
        with self._load_lock:
            # Another thread finished the load while we waited for the lock
            if self._state is CacheState.LOADED:
                return
            with self._write_lock:
                generation = self._generation
                self._state = CacheState.LOADING

            started = time.monotonic()
            try:
                settings = self.storage.active()
            except Exception:
                with self._write_lock:
                    if generation == self._generation:
                        self._state = CacheState.UNLOADED
                raise

            snapshot = {setting.key: setting for setting in settings if not setting.deleted}
            now = datetime.now(timezone.utc)
            with self._write_lock:
                if generation != self._generation:
                    logger.debug("Discarding settings load started before a reset")
                    return
                self._snapshot = snapshot
                self.last_known_update_at = _newest(settings)
                self.last_checked_at = now
                self.loaded_at = now
                self._next_check_at = time.monotonic() + self._refresh_interval
                self._state = CacheState.LOADED
                self._counters["loads"] += 1
            self._load_done.set()

        logger.info(
            f"Loaded {len(snapshot)} settings from {self.storage!r} "
            f"in {(time.monotonic() - started) * 1000:.1f}ms"
        )

    # Refreshing

    def _maybe_refresh(self) -> None:
        if time.monotonic() < self._next_check_at:
            return
        # Single flight; everyone else keeps reading the current snapshot
        if not self._refresh_lock.acquire(blocking=False):
            return
        try:
            if time.monotonic() < self._next_check_at:
                return
            # Scheduled before querying so a failing store is retried one interval later
            self._next_check_at = time.monotonic() + self._refresh_interval
            self._refresh_cycle()
        except Exception as e:
            self._report(e, "Settings refresh failed")
        finally:
            self._refresh_lock.release()

    def refresh(self) -> bool:
        """Pull changes from the store now, regardless of the interval.

        Waits for an in-flight refresh instead of running alongside it.
        Errors propagate. Does nothing while the cache is not loaded.

        Returns:
            True if changed records were merged into the snapshot.
        """
        if self._state is not CacheState.LOADED:
            return False
        with self._refresh_lock:
            self._next_check_at = time.monotonic() + self._refresh_interval
            return self._refresh_cycle()

    def _refresh_cycle(self) -> bool:
        generation = self._generation
        cursor = self.last_known_update_at

        last_updated = self.storage.last_updated_at()
        if last_updated is None or (cursor is not None and last_updated <= cursor):
            with self._write_lock:
                if generation == self._generation:
                    self.last_checked_at = datetime.now(timezone.utc)
            logger.trace(f"Settings unchanged since {cursor}")
            return False

        changes = self.storage.updated_since(cursor) if cursor is not None else self.storage.all()
        changed, removed = self._merge(changes, generation)
        if changed is None:
            return False

        # The cursor only moves once the merged snapshot is published
        seen = _newest(changes) or last_updated
        with self._write_lock:
            if generation != self._generation:
                return False
            self.last_known_update_at = max(seen, cursor) if cursor is not None else seen
            self.last_checked_at = datetime.now(timezone.utc)
            self._counters["refreshes"] += 1

        logger.debug(f"Refreshed settings: {changed} updated, {removed} removed")
        return bool(changes)

    def _merge(self, changes: Iterable[Setting], generation: int) -> Tuple[Optional[int], int]:
        changed = removed = 0
        with self._write_lock:
            if generation != self._generation or self._state is not CacheState.LOADED:
                return None, 0
            snapshot = dict(self._snapshot)
            for setting in changes:
                if setting.deleted:
                    if snapshot.pop(setting.key, None) is not None:
                        removed += 1
                else:
                    snapshot[setting.key] = setting
                    changed += 1
            self._snapshot = snapshot
            self._merges += 1
        return changed, removed

    def _report(self, error: Exception, message: str) -> None:
        self.last_error = error
        self._counters["errors"] += 1
        if isinstance(error, StoreUnavailableError):
            logger.warning(f"{message}, will retry: {error}")
        else:
            logger.opt(exception=error).error(f"{message}: {error}")
        if self.on_error is not None:
            try:
                self.on_error(error)
            except Exception:
                logger.exception("Settings error hook raised")

    # Writes

    def update_setting(self, setting: Setting) -> None:
        """Publish a setting the caller just saved, so it reads its own write.

        Deleted settings are evicted. Ignored while the cache is not loaded;
        the next full load picks the change up. The refresh cursor does not
        move since other writers' changes may still be pending.
        """
        if self._state is not CacheState.LOADED or setting.key is None:
            return
        entry = Setting.from_dict(setting.to_dict(), namespace=setting.namespace)
        with self._write_lock:
            if self._state is not CacheState.LOADED:
                return
            snapshot = dict(self._snapshot)
            if entry.deleted:
                snapshot.pop(entry.key, None)
            else:
                snapshot[entry.key] = entry
            self._snapshot = snapshot
            self._merges += 1

    def reset(self) -> None:
        """Drop the snapshot and go back to UNLOADED; the next read reloads."""
        with self._write_lock:
            self._generation += 1
            self._snapshot = {}
            self._state = CacheState.UNLOADED
            self.loaded_at = None
            self.last_checked_at = None
            self.last_known_update_at = None
            self._next_check_at = 0.0
            self._load_done.clear()
        logger.debug(f"Reset settings cache for {self.storage!r}")

    def stats(self) -> Dict[str, Any]:
        snapshot = self._snapshot
        negative = sum(1 for entry in tuple(snapshot.values()) if entry is NOT_DEFINED)
        return {
            "state": self._state.value,
            "entries": len(snapshot) - negative,
            "negative_entries": negative,
            "loaded_at": self.loaded_at,
            "last_checked_at": self.last_checked_at,
            "last_known_update_at": self.last_known_update_at,
            **self._counters,
        }
