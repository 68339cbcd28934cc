from sqlalchemy import Column, Integer, String, DateTime, Index
from datetime import datetime
from models.base import Base


class SyncRecord(Base):
    """
    One completed synchronization pass.

    Purpose:
    - Baseline for the next incremental diff (latest row by timestamp)
    - History of observed index revisions

    Design:
    - Append-only; rows are never updated or deleted
    - Written as the last write of a pass, after every upsert committed
    """
    __tablename__ = "sync_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    commit_id = Column(String(64), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_sync_history_timestamp", "timestamp", "id"),
    )
