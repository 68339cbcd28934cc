"""
Health check endpoint with database and sync status
"""

from fastapi import APIRouter, Depends
from api.dependencies import get_store
from mirror.catalog import CatalogStore
from schemas.api import HealthResponse, SyncRunInfo
from core.exceptions import MirrorError
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(store: CatalogStore = Depends(get_store)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Last completed sync point
    - Latest sync pass, including failed ones
    """
    db_connected = await store.ping()

    last_sync_commit = None
    last_sync_at = None
    last_run = None

    if db_connected:
        try:
            sync_point = await store.latest_sync_point()
            if sync_point:
                last_sync_commit = sync_point.commit_id
                last_sync_at = sync_point.timestamp

            run = await store.latest_sync_run()
            if run:
                last_run = SyncRunInfo.model_validate(run)
        except MirrorError as e:
            logger.error(f"Failed to fetch sync status: {e.message}")

    return HealthResponse(
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        last_sync_commit=last_sync_commit,
        last_sync_at=last_sync_at,
        last_run=last_run
    )
