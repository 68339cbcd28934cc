"""
Pydantic schemas for sync pass and download results
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
import enum

from models.base import SyncStatus


class UpsertOutcome(str, enum.Enum):
    """What an upsert did to the catalog row"""
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class DownloadOutcome(str, enum.Enum):
    """Successful download results"""
    DOWNLOADED = "downloaded"
    ALREADY_DOWNLOADED = "already_downloaded"


class IndexChanges(BaseModel):
    """Result of an index sync: the revision now checked out and what changed"""
    commit_id: str
    baseline_commit: Optional[str] = None
    full_import: bool = False
    changed_paths: List[str] = Field(default_factory=list)


class DownloadResult(BaseModel):
    """One successful download (or no-op)"""
    name: str
    version: str
    outcome: DownloadOutcome
    path: Optional[str] = None
    size: int = 0


class DownloadReport(BaseModel):
    """Aggregate of a batch of downloads"""
    attempted: int = 0
    downloaded: int = 0
    already_downloaded: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class VerifyReport(BaseModel):
    """Aggregate of an archive re-verification batch"""
    checked: int = 0
    valid: int = 0
    reset: int = 0
    reset_versions: List[str] = Field(default_factory=list)


class SyncResult(BaseModel):
    """Statistics for one end-to-end sync pass"""
    run_id: str
    status: SyncStatus
    baseline_commit: Optional[str] = None
    commit_id: Optional[str] = None
    full_import: bool = False
    files_changed: int = 0
    files_processed: int = 0
    files_failed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_unchanged: int = 0
    error_details: List[Dict[str, Any]] = Field(default_factory=list)
    downloads: Optional[DownloadReport] = None
    verification: Optional[VerifyReport] = None
    started_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        use_enum_values = True
