"""
FastAPI dependencies
"""

from fastapi import Request

from mirror.catalog import CatalogStore


def get_store(request: Request) -> CatalogStore:
    """Catalog store created at application startup"""
    return request.app.state.store
