"""
Core utilities and configuration for the registry mirror.

This package provides foundational components used throughout the mirror:

Modules:
    config: Application configuration and environment variable management
    database: Catalog engine and session factory helpers
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import create_catalog_engine
    from core.exceptions import MalformedEntryError, TransportError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Open the catalog
    engine = create_catalog_engine(settings.DATABASE_URL)
"""

__all__ = [
    "settings",
    "create_catalog_engine",
    "create_session_maker",
    "setup_logging",
    # Exceptions
    "MirrorError",
    "RetryableError",
    "NonRetryableError",
    "TransportError",
    "SyncTransportError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "RemoteNotFoundError",
    "RepositoryCorruptError",
    "StorageError",
    "StorageInitError",
    "StorageWriteError",
    "MalformedEntryError",
    "DownloadError",
    "ChecksumMismatchError",
    "NotFoundError",
    "SyncLockError",
]
