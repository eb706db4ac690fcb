"""Setting tables: SettingRecord, HistoryRecord."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from livesettings.core.models.base import Base, TimestampMixin


class SettingRecord(Base, TimestampMixin):
    """Persistent storage for dynamic application settings."""

    __tablename__ = "livesettings"
    __table_args__ = (
        UniqueConstraint("namespace", "key", name="uq_livesettings_namespace_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Empty string stands for the default namespace so the unique constraint holds
    namespace: Mapped[str] = mapped_column(String(64), default="", index=True)
    key: Mapped[str] = mapped_column(String(255))
    raw_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    value_type: Mapped[str] = mapped_column(String(30), default="string")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)


class HistoryRecord(Base):
    """Append-only audit trail of setting changes."""

    __tablename__ = "livesettings_histories"
    __table_args__ = (
        Index("idx_livesettings_histories_key", "namespace", "key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    namespace: Mapped[str] = mapped_column(String(64), default="")
    key: Mapped[str] = mapped_column(String(255))
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_by: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
