"""
Custom exceptions for the mirror with structured error context.

This module provides the exception hierarchy used throughout the sync
pipeline. Each exception includes context information for debugging
and for the sync run audit trail.

Exception Hierarchy:
    MirrorError (base)
    ├── TransportError
    │   ├── SyncTransportError
    │   ├── NetworkError (retryable)
    │   ├── RateLimitError (retryable)
    │   ├── AuthenticationError (non-retryable)
    │   └── RemoteNotFoundError (non-retryable)
    ├── RepositoryCorruptError
    ├── StorageError
    │   ├── StorageInitError
    │   └── StorageWriteError
    ├── MalformedEntryError
    ├── DownloadError
    │   └── ChecksumMismatchError
    ├── NotFoundError
    ├── SyncLockError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class MirrorError(Exception):
    """
    Base exception for all mirror errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (package, url, commit, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(MirrorError):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)
    """
    retryable = True


class NonRetryableError(MirrorError):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Resource not found (HTTP 404)
    """
    retryable = False


# ============================================================================
# Transport Errors
# ============================================================================

class TransportError(MirrorError):
    """
    Network or remote failure while talking to the index or archive host.

    Retryable unless a subclass says otherwise.

    Context should include:
        - url: The remote location
        - status_code: HTTP status code (if applicable)
        - retry_count: Number of attempts made
    """
    retryable = True


class SyncTransportError(TransportError):
    """
    Cloning or pulling the index repository failed.

    The local mirror is left at its previous revision (or absent).
    """
    pass


class NetworkError(RetryableError, TransportError):
    """Timeouts, connection failures and server errors."""
    pass


class RateLimitError(RetryableError, TransportError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, TransportError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class RemoteNotFoundError(NonRetryableError, TransportError):
    """Remote resource not found (HTTP 404)."""
    pass


# ============================================================================
# Repository Errors
# ============================================================================

class RepositoryCorruptError(MirrorError):
    """
    The local index mirror cannot be read and needs a fresh clone.

    Context should include:
        - path: Local mirror path
        - command: The git command that failed (if applicable)
    """
    pass


# ============================================================================
# Storage Errors
# ============================================================================

class StorageError(MirrorError):
    """Base exception for catalog backend failures."""
    pass


class StorageInitError(StorageError):
    """
    The catalog file exists but is unreadable or has an incompatible schema.

    Context should include:
        - table_name: Table with the incompatible definition
        - missing_columns: Columns the existing table lacks
    """
    pass


class StorageWriteError(StorageError):
    """
    A catalog write failed; the transaction was rolled back.

    Context should include:
        - operation: Type of write (UPSERT, UPDATE, INSERT)
        - table_name: Name of the table
    """
    pass


# ============================================================================
# Parse Errors
# ============================================================================

class MalformedEntryError(MirrorError):
    """
    A line of an index file could not be deserialized.

    Parsing of the file stops at the first bad line; the pass continues
    with the next file.
    """

    def __init__(
        self,
        message: str,
        line_number: int,
        package_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        context = dict(context or {})
        context.setdefault("line_number", line_number)
        context.setdefault("package_name", package_name)
        super().__init__(message, context, original_exception)
        self.line_number = line_number
        self.package_name = package_name


# ============================================================================
# Download Errors
# ============================================================================

class DownloadError(MirrorError):
    """
    An archive could not be downloaded; the record stays not downloaded.

    Context should include:
        - package_name / version
        - url: Archive URL
    """
    pass


class ChecksumMismatchError(DownloadError):
    """
    Fetched bytes do not hash to the recorded checksum.

    The bytes are discarded. The record stays pending and is retried on a
    later pass.
    """
    pass


# ============================================================================
# Catalog Lookups and Locking
# ============================================================================

class NotFoundError(MirrorError):
    """An operation referenced a package version absent from the catalog."""
    pass


class SyncLockError(MirrorError):
    """Another sync pass holds the exclusive pass lock."""
    pass
