"""
Catalog statistics endpoint
"""
from datetime import datetime
from fastapi import APIRouter, Depends, Request
from api.dependencies import get_store
from mirror.catalog import CatalogStore
from schemas.api import StatsResponse, SyncRunInfo
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Statistics"])


@router.get("/stats", response_model=StatsResponse)
async def get_stats(request: Request, store: CatalogStore = Depends(get_store)):
    """Catalog totals plus the latest sync pass"""
    request_id = getattr(request.state, "request_id", "-")
    logger.info(f"[{request_id}] GET /stats")

    totals = await store.stats()
    run = await store.latest_sync_run()

    logger.info(
        f"[{request_id}] Stats: {totals['total_versions']} versions, "
        f"{totals['total_packages']} packages, {totals['pending_downloads']} pending"
    )

    return StatsResponse(
        timestamp=datetime.utcnow(),
        last_run=SyncRunInfo.model_validate(run) if run else None,
        **totals
    )
