from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pathlib import Path

from fieldtracker.sync.conflicts import ConflictStrategy


class ClientSettings(BaseSettings):
    """
    Device-side settings.

    Not a module-level singleton: each ClientRuntime gets its own instance,
    so tests can run several independent devices in one process.
    """

    SERVER_URL: str = "http://localhost:8000"
    # Generated and persisted in the local store on first start when empty
    DEVICE_ID: Optional[str] = None
    DB_PATH: str = str(Path.home() / ".fieldtracker" / "offline.db")

    # Queue
    MAX_RETRY_COUNT: int = 3
    BATCH_SIZE: int = 50
    BACKOFF_BASE_SECONDS: float = 1.0

    # Sync scheduling
    AUTO_SYNC_INTERVAL_SECONDS: float = 30.0
    ENQUEUE_SYNC_DELAY_SECONDS: float = 1.0
    REQUEST_TIMEOUT_SECONDS: float = 15.0

    CONFLICT_STRATEGY: ConflictStrategy = ConflictStrategy.LATEST_WINS
    OVERTIME_THRESHOLD_HOURS: float = 8.0

    model_config = SettingsConfigDict(
        env_prefix="FIELDTRACKER_CLIENT_",
        env_file=".env",
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='ignore'
    )
