"""Relational storage backed by SQLAlchemy."""

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from loguru import logger
from sqlalchemy import Engine, func, inspect, select, update
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from livesettings.core import coerce
from livesettings.core.db import create_session_factory, init_db
from livesettings.core.exceptions import StoreUnavailableError
from livesettings.core.history import HistoryItem
from livesettings.core.models import HistoryRecord, SettingRecord
from livesettings.core.setting import Setting
from livesettings.storage.base import StorageAdapter


class SQLStorage(StorageAdapter):
    """Stores settings in the ``livesettings`` table and history in
    ``livesettings_histories``.

    ``updated_at`` is indexed so the frequent ``last_updated_at`` poll is a
    single index lookup. Connection level failures are reported as
    ``StoreUnavailableError``.
    """

    def __init__(
        self,
        engine: Engine,
        namespace: Optional[str] = None,
        session_factory: Optional[sessionmaker[Session]] = None,
    ) -> None:
        super().__init__(namespace)
        self.engine = engine
        self._session_factory = session_factory or create_session_factory(engine)

    def create_tables(self, force: bool = False) -> None:
        init_db(self.engine, force=force)

    def ready(self) -> bool:
        try:
            return inspect(self.engine).has_table(SettingRecord.__tablename__)
        except (OperationalError, DBAPIError) as e:
            logger.warning(f"Settings database not available: {e}")
            return False

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                yield session
        except OperationalError as e:
            raise StoreUnavailableError(f"Settings database unavailable: {e}") from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise StoreUnavailableError(f"Settings database connection lost: {e}") from e
            raise

    def _scoped(self, stmt):
        return stmt.where(SettingRecord.namespace == self._storage_namespace())

    def _to_setting(self, record: SettingRecord) -> Setting:
        return Setting.from_record(
            key=record.key,
            raw_value=record.raw_value,
            value_type=record.value_type,
            description=record.description,
            deleted=record.deleted,
            created_at=record.created_at,
            updated_at=record.updated_at,
            namespace=self.namespace,
        )

    def all(self) -> List[Setting]:
        with self._session() as session:
            records = session.scalars(self._scoped(select(SettingRecord))).all()
            return [self._to_setting(record) for record in records]

    def active(self) -> List[Setting]:
        with self._session() as session:
            stmt = self._scoped(select(SettingRecord)).where(SettingRecord.deleted.is_(False))
            return [self._to_setting(record) for record in session.scalars(stmt).all()]

    def updated_since(self, timestamp: datetime) -> List[Setting]:
        timestamp = coerce.time(timestamp)
        with self._session() as session:
            stmt = self._scoped(select(SettingRecord)).where(SettingRecord.updated_at > timestamp)
            return [self._to_setting(record) for record in session.scalars(stmt).all()]

    def last_updated_at(self) -> Optional[datetime]:
        with self._session() as session:
            value = session.scalar(self._scoped(select(func.max(SettingRecord.updated_at))))
            return coerce.time(value)

    def find_by_key(self, key: str) -> Optional[Setting]:
        with self._session() as session:
            stmt = self._scoped(select(SettingRecord)).where(
                SettingRecord.key == key, SettingRecord.deleted.is_(False)
            )
            record = session.scalars(stmt).one_or_none()
            return self._to_setting(record) if record else None

    def _write(self, setting: Setting, previous_key: Optional[str]) -> None:
        data = setting.to_dict()
        with self._session() as session, session.begin():
            lookup_key = previous_key or setting.key
            record = session.scalars(
                self._scoped(select(SettingRecord)).where(SettingRecord.key == lookup_key)
            ).one_or_none()
            if record is None and lookup_key != setting.key:
                record = session.scalars(
                    self._scoped(select(SettingRecord)).where(SettingRecord.key == setting.key)
                ).one_or_none()
            if record is None:
                record = SettingRecord(namespace=self._storage_namespace(), key=setting.key)
                session.add(record)
            record.key = setting.key
            record.raw_value = data["value"]
            record.value_type = data["value_type"]
            record.description = data["description"]
            record.deleted = setting.deleted
            record.created_at = setting.created_at
            record.updated_at = setting.updated_at

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
        try:
            with self._session() as session, session.begin():
                session.add(
                    HistoryRecord(
                        namespace=self._storage_namespace(),
                        key=item.key,
                        value=item.value,
                        changed_by=item.changed_by,
                        deleted=item.deleted,
                        created_at=item.created_at,
                    )
                )
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to write history: {e}") from e

    def history(self, key: str, limit: Optional[int] = None, offset: int = 0) -> List[HistoryItem]:
        with self._session() as session:
            stmt = (
                select(HistoryRecord)
                .where(
                    HistoryRecord.namespace == self._storage_namespace(),
                    HistoryRecord.key == key,
                )
                .order_by(HistoryRecord.id.desc())
                .offset(offset)
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return [
                HistoryItem(
                    key=record.key,
                    value=record.value,
                    changed_by=record.changed_by,
                    deleted=record.deleted,
                    created_at=record.created_at,
                )
                for record in session.scalars(stmt).all()
            ]

    def redact_history(self, key: str) -> None:
        with self._session() as session, session.begin():
            session.execute(
                update(HistoryRecord)
                .where(
                    HistoryRecord.namespace == self._storage_namespace(),
                    HistoryRecord.key == key,
                )
                .values(value=None)
            )
