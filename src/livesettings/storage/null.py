"""No-op storage for environments without a settings store."""

from datetime import datetime
from typing import List, Optional

from livesettings.core.history import HistoryItem
from livesettings.core.setting import Setting
from livesettings.storage.base import StorageAdapter


class NullStorage(StorageAdapter):
    """Always empty; writes are validated and then discarded.

    Useful in CI or build steps where the real store is not reachable but
    code that reads settings still has to run (every read yields defaults).
    """

    def all(self) -> List[Setting]:
        return []

    def updated_since(self, timestamp: datetime) -> List[Setting]:
        return []

    def last_updated_at(self) -> Optional[datetime]:
        return None

    def find_by_key(self, key: str) -> Optional[Setting]:
        return None

    def _write(self, setting: Setting, previous_key: Optional[str]) -> None:
        return None

    def create_history(
        self,
        key: str,
        value: Optional[str] = None,
        changed_by: Optional[str] = None,
        deleted: bool = False,
        created_at: Optional[datetime] = None,
    ) -> None:
        return None

    def history(self, key: str, limit: Optional[int] = None, offset: int = 0) -> List[HistoryItem]:
        return []

    def redact_history(self, key: str) -> None:
        return None
