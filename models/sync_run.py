from sqlalchemy import Column, Integer, String, Enum, DateTime, Float, Text, Index
from datetime import datetime
import uuid
from models.base import Base, SyncStatus


class SyncRun(Base):
    """
    Tracks metadata for each attempted sync pass.

    Purpose:
    - Audit trail of all passes, including failed and cancelled ones
    - Per-pass statistics for the health endpoint

    Never consulted for the diff baseline; see SyncRecord.
    """
    __tablename__ = "sync_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(36), default=lambda: str(uuid.uuid4()), unique=True, nullable=False, index=True)

    status = Column(Enum(SyncStatus), default=SyncStatus.RUNNING, nullable=False, index=True)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Revisions
    baseline_commit = Column(String(64), nullable=True)
    commit_id = Column(String(64), nullable=True)

    # Statistics
    files_changed = Column(Integer, default=0)
    files_failed = Column(Integer, default=0)
    records_created = Column(Integer, default=0)
    records_updated = Column(Integer, default=0)
    records_unchanged = Column(Integer, default=0)
    downloads_succeeded = Column(Integer, default=0)
    downloads_failed = Column(Integer, default=0)

    # Error tracking
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_sync_run_status", "status", "started_at"),
    )
