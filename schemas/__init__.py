"""
Pydantic schemas for data validation and serialization.

Schemas:
    index_entry: One validated index line (PackageVersionCreate)
    sync: Sync pass, download and verification results
    api: API endpoint response schemas

Usage:
    from schemas.index_entry import PackageVersionCreate
    from schemas.sync import SyncResult, UpsertOutcome
    from schemas.api import HealthResponse, StatsResponse
"""

__all__ = [
    "PackageVersionCreate",
    "SyncResult",
    "UpsertOutcome",
    "DownloadReport",
    "HealthResponse",
    "StatsResponse",
]
