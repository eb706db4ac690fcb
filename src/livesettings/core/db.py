from typing import Any, Optional

from loguru import logger
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from livesettings.core.config import settings
from livesettings.core.models import Base


def create_settings_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create a sync engine for the settings tables.

    check_same_thread=False lets the cache read from any thread. An
    in-memory SQLite URL gets a StaticPool so every session shares the one
    database.
    """
    url = url or settings.DB_URL
    echo = settings.DB_ECHO if echo is None else echo
    kwargs: dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    engine = create_engine(url, **kwargs)
    if url.startswith("sqlite"):
        event.listen(engine, "connect", set_sqlite_pragma)
    return engine


def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Sets performance pragmas for SQLite.

    WAL (Write-Ahead Logging) mode lets the admin process write while
    application processes keep polling for changes.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=30000")  # 30 seconds
    cursor.close()


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory used by the SQL storage adapter."""
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


def init_db(engine: Engine, force: bool = False) -> None:
    """Create the settings tables according to current models.

    Args:
        engine: Engine to create the tables on.
        force: If True, drops the tables first. This deletes every setting
            and all history.
    """
    if force:
        logger.warning("FORCED settings table initialization. Existing data will be lost.")
        Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    logger.info("Settings tables ready.")
