"""SQLAlchemy models backing the SQL storage adapter.

Submodules:
- base: Base, TimestampMixin
- setting: SettingRecord, HistoryRecord
"""

from livesettings.core.models.base import Base, TimestampMixin
from livesettings.core.models.setting import HistoryRecord, SettingRecord

__all__ = [
    "Base",
    "TimestampMixin",
    "SettingRecord",
    "HistoryRecord",
]
