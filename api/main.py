
"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, packages, stats
from core.config import settings
from core.database import create_catalog_engine
from core.logging import setup_logging
from api.middleware import RequestContextMiddleware
from mirror.catalog import CatalogStore
from mirror.scheduler import SyncScheduler
import logging

setup_logging(settings.LOG_LEVEL)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Registry Mirror API",
    description="Read-only view of the mirrored package catalog",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

scheduler = SyncScheduler() if settings.SCHEDULER_ENABLED else None


# Include routers
app.include_router(health.router)
app.include_router(packages.router)
app.include_router(stats.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Registry Mirror API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    app.state.engine = create_catalog_engine(settings.DATABASE_URL)
    app.state.store = CatalogStore(app.state.engine)
    await app.state.store.initialize()

    if scheduler is not None:
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Registry Mirror API")
    if scheduler is not None:
        scheduler.stop()
    await app.state.engine.dispose()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Registry Mirror API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "packages": "/packages",
            "stats": "/stats"
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=settings.API_HOST, port=settings.API_PORT)
