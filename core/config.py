"""
Application configuration using Pydantic Settings
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Catalog
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/catalog.db"

    # Index repository
    INDEX_URL: str = "https://github.com/rust-lang/crates.io-index"
    REGISTRY_PATH: str = "./data/index"
    UPDATE_INDEX: bool = True

    # Archives
    ARCHIVE_PATH: str = "./data/archives"
    ARCHIVE_URL_TEMPLATE: Optional[str] = None  # Falls back to config.json "dl"
    ARCHIVE_EXTENSION: str = ".crate"

    # Downloads
    DOWNLOAD_ENABLED: bool = True
    DOWNLOAD_CONCURRENCY: int = 8
    DOWNLOAD_BATCH_SIZE: int = 500
    MAX_RETRIES: int = 3
    RETRY_DELAY: float = 1.0
    REQUEST_TIMEOUT: float = 60.0
    USER_AGENT: str = "registry-mirror/1.0"
    REGISTRY_TOKEN: Optional[str] = None

    # Verification of already downloaded archives
    VERIFY_DOWNLOADS: bool = False
    VERIFY_BATCH_SIZE: int = 1000

    # Sync pass
    PARSE_WORKERS: int = 4
    LOCK_PATH: str = "./data/sync.lock"
    LOCK_TIMEOUT: float = 0.0
    SYNC_INTERVAL_MINUTES: int = 30
    SCHEDULER_ENABLED: bool = False

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
