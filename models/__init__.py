"""
SQLAlchemy ORM models for the catalog tables.

Models:
    base: Base declarative class and the SyncStatus enum
    package_version: One row per published (name, version)
    sync_record: Append-only history of completed sync passes
    sync_run: Audit trail of every attempted pass

Usage:
    from models import PackageVersion, SyncRecord, SyncRun
    from models.base import SyncStatus

Ownership:
    Only mirror.catalog.CatalogStore reads or writes these tables.
"""

from models.base import Base, SyncStatus
from models.package_version import PackageVersion
from models.sync_record import SyncRecord
from models.sync_run import SyncRun

__all__ = [
    "Base",
    "SyncStatus",
    "PackageVersion",
    "SyncRecord",
    "SyncRun",
]
