import pytest
from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from livesettings.core.models import Base
from livesettings.core.setting import Setting
from livesettings.storage import MemoryStorage, SQLStorage

# ============================================================================
# TEST DATABASE CONFIGURATION
# ============================================================================
# Tests never touch a file database: each SQL test gets a fresh in-memory
# SQLite shared across threads through a StaticPool.
# ============================================================================

TEST_DB_URL = "sqlite:///:memory:"


@pytest.fixture(autouse=True)
def quiet_logging():
    """Drop log output below WARNING so failures stay readable."""
    logger.remove()
    logger.configure(extra={"settings_scope": "-"})
    logger.add(lambda message: None, level="WARNING")
    yield
    logger.remove()


@pytest.fixture(scope="function")
def memory_storage():
    return MemoryStorage()


@pytest.fixture(scope="function")
def db_engine():
    """Create the settings tables before each test, drop them after."""
    engine = create_engine(
        TEST_DB_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def sql_storage(db_engine):
    return SQLStorage(db_engine)


@pytest.fixture
def make_setting():
    """Factory for unsaved settings."""

    def _make(key="feature.flag", value="on", value_type="string", **kwargs):
        return Setting(key=key, raw_value=value, value_type=value_type, **kwargs)

    return _make
