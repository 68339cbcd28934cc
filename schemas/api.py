"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime

from models.base import SyncStatus


# ============================================================================
# Health Check Schemas
# ============================================================================

class SyncRunInfo(BaseModel):
    """Latest sync pass summary for health and stats"""
    run_id: str
    status: SyncStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    baseline_commit: Optional[str] = None
    commit_id: Optional[str] = None
    files_changed: int = 0
    files_failed: int = 0
    records_created: int = 0
    records_updated: int = 0
    downloads_succeeded: int = 0
    downloads_failed: int = 0
    error_message: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class HealthResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    last_sync_commit: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_run: Optional[SyncRunInfo] = None

    @model_validator(mode="after")
    def determine_status(self):
        """Determine overall health status"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif self.last_run is not None and self.last_run.status in ("failed", "partial"):
            self.status = "degraded"
        else:
            self.status = "healthy"
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "last_sync_commit": "4f1c2a9e0b",
                "last_sync_at": "2024-01-15T10:00:00Z"
            }
        }


# ============================================================================
# Package Schemas
# ============================================================================

class PackageVersionResponse(BaseModel):
    """Catalog row for one package version"""
    name: str
    version: str
    size: int
    checksum: Optional[str] = None
    yanked: bool
    downloaded: bool
    last_update: datetime

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "name": "serde",
                "version": "1.0.193",
                "size": 76523,
                "checksum": "25dd9975e68d0cb5aa1120c288333fc98731bd1dd12f561e468ea4728c042b89",
                "yanked": False,
                "downloaded": True,
                "last_update": "2024-01-15T10:30:00Z"
            }
        }


class PaginationMetadata(BaseModel):
    """Pagination metadata"""
    total_items: int
    total_pages: int
    current_page: int
    page_size: int
    has_next: bool
    has_previous: bool


class PackageVersionListResponse(BaseModel):
    """Paginated catalog listing"""
    items: List[PackageVersionResponse]
    pagination: PaginationMetadata


# ============================================================================
# Statistics Schemas
# ============================================================================

class StatsResponse(BaseModel):
    """Catalog statistics"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    total_versions: int
    total_packages: int
    yanked_versions: int
    downloaded_versions: int
    pending_downloads: int
    total_size_bytes: int
    sync_count: int

    last_run: Optional[SyncRunInfo] = None


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
