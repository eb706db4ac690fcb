"""History entries recorded for every persisted change to a setting."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator

from livesettings.core import coerce

MAX_CHANGED_BY_LENGTH = 150


class HistoryItem(BaseModel):
    """An immutable snapshot of one past state of a setting.

    ``value`` is None when the setting was deleted at that point, when the
    setting is a secret, or after the entry has been redacted.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    value: Optional[str] = None
    changed_by: Optional[str] = None
    deleted: bool = False
    created_at: datetime

    @field_validator("changed_by", mode="before")
    @classmethod
    def truncate_changed_by(cls, value: object) -> Optional[str]:
        if coerce.blank(value):
            return None
        return str(value)[:MAX_CHANGED_BY_LENGTH]

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created_at(cls, value: object) -> datetime:
        return coerce.time(value) or datetime.now(timezone.utc)

    @field_serializer("created_at")
    def serialize_created_at(self, dt: datetime, _info) -> str:
        """Serialize timestamps as ISO-8601 UTC strings."""
        return coerce.iso8601(dt)

    def redacted(self) -> "HistoryItem":
        """Copy with the value removed; attribution and time are kept."""
        return self.model_copy(update={"value": None})
