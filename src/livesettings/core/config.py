import os
from pathlib import Path
from typing import Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process configuration for livesettings.

    Values come from ``LIVESETTINGS_*`` environment variables or a ``.env``
    file. This is the static bootstrap configuration; the dynamic settings
    themselves live in the configured storage backend.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIVESETTINGS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Project Paths
    DATA_DIR: Path = Path(
        os.getenv("LIVESETTINGS_DATA_DIR", str(Path.cwd() / "data"))
    )

    # Local cache
    REFRESH_INTERVAL: float = 5.0
    ASYNC_LOAD: bool = False  # Warm the cache on a background thread

    # Storage backend: sql, memory, null, json, redis, http
    STORAGE: str = "sql"

    # Database (sql storage)
    DB_NAME: str = "livesettings.db"
    DATABASE_URL: Optional[str] = None
    DB_ECHO: bool = False

    @property
    def DB_PATH(self) -> Path:
        return self.DATA_DIR / self.DB_NAME

    @property
    def DB_URL(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        # Use forward slashes so Windows paths work in the URL (no backslash escapes)
        path = self.DB_PATH.resolve().as_posix()
        return f"sqlite:///{path}"

    # JSON document storage
    JSON_PATH: Optional[Path] = None

    @property
    def JSON_FILE(self) -> Path:
        return self.JSON_PATH or self.DATA_DIR / "livesettings.json"

    # Redis storage
    REDIS_URL: str = "redis://localhost:6379/0"

    # Remote HTTP storage
    HTTP_BASE_URL: Optional[str] = None
    HTTP_TIMEOUT: float = 5.0
    HTTP_HEADERS: Dict[str, str] = {}

    # Seconds to cache last_updated_at outside the store (0 disables)
    LAST_UPDATED_TTL: float = 0.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_RETENTION: str = "10 days"
    LOG_ROTATION: str = "10 MB"


settings = Settings()
