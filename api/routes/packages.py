"""
Package catalog endpoints with pagination and filtering
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from api.dependencies import get_store
from mirror.catalog import CatalogStore
from schemas.api import PackageVersionListResponse, PackageVersionResponse, PaginationMetadata
from typing import Optional
import math
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Packages"])


def _pagination(total: int, page: int, page_size: int) -> PaginationMetadata:
    total_pages = math.ceil(total / page_size) if total > 0 else 0
    return PaginationMetadata(
        total_items=total,
        total_pages=total_pages,
        current_page=page,
        page_size=page_size,
        has_next=page < total_pages,
        has_previous=page > 1
    )


@router.get("/packages", response_model=PackageVersionListResponse)
async def list_packages(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=1000, description="Items per page"),
    name: Optional[str] = Query(None, description="Filter by package name"),
    yanked: Optional[bool] = Query(None, description="Filter by yanked flag"),
    downloaded: Optional[bool] = Query(None, description="Filter by downloaded flag"),
    store: CatalogStore = Depends(get_store)
):
    """Paginated package versions ordered by name"""
    request_id = getattr(request.state, "request_id", "-")
    logger.info(
        f"[{request_id}] GET /packages - page={page}, page_size={page_size}, "
        f"filters: name={name}, yanked={yanked}, downloaded={downloaded}"
    )

    items, total = await store.list_package_versions(
        name=name,
        yanked=yanked,
        downloaded=downloaded,
        offset=(page - 1) * page_size,
        limit=page_size
    )

    return PackageVersionListResponse(
        items=[PackageVersionResponse.model_validate(item) for item in items],
        pagination=_pagination(total, page, page_size)
    )


@router.get("/packages/{name}", response_model=PackageVersionListResponse)
async def get_package(
    name: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=1000),
    store: CatalogStore = Depends(get_store)
):
    """All versions of one package"""
    items, total = await store.list_package_versions(
        name=name,
        offset=(page - 1) * page_size,
        limit=page_size
    )
    if total == 0:
        raise HTTPException(status_code=404, detail=f"Package '{name}' not found")

    return PackageVersionListResponse(
        items=[PackageVersionResponse.model_validate(item) for item in items],
        pagination=_pagination(total, page, page_size)
    )
