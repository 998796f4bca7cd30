from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import List, Union
import json
from pathlib import Path


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str
    AUTO_CREATE_TABLES: bool = False

    # JWT
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # Admin auth
    ADMIN_PASSWORD: str

    # License (base64 Ed25519 public key of the license issuer)
    LICENSE_PUBLIC_KEY: str

    # CORS
    CORS_ORIGINS: Union[str, List[str]] = "http://localhost:3000"

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            # Try to parse as JSON first
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return parsed
            except (json.JSONDecodeError, ValueError):
                pass
            # If not JSON, split by comma
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    # Sync
    SYNC_BATCH_SIZE: int = 100
    MAX_SYNC_CONFLICTS: int = 50
    SERVER_CONFLICT_STRATEGY: str = "latest_wins"
    OVERTIME_THRESHOLD_HOURS: float = 8.0

    # Photo storage
    UPLOAD_DIR: str = str(Path(__file__).parent.parent.parent / "uploads")
    MAX_PHOTO_BYTES: int = 200 * 1024

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = str(Path(__file__).parent.parent.parent / "logs")

    ENVIRONMENT: str = "development"

    model_config = SettingsConfigDict(
        env_file=Path(__file__).parent.parent.parent / ".env",
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='ignore'  # Ignore unrelated environment variables (POSTGRES_USER, client settings, ...)
    )


settings = Settings()
