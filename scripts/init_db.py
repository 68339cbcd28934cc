import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import create_catalog_engine
from core.exceptions import StorageInitError
from core.logging import setup_logging
from mirror.catalog import CatalogStore

logger = logging.getLogger(__name__)


async def init_database() -> int:
    logger.info("Opening catalog database...")
    engine = create_catalog_engine(settings.DATABASE_URL)

    try:
        await CatalogStore(engine).initialize()
        logger.info("Catalog schema ready.")
        return 0
    except StorageInitError as e:
        logger.error(f"{e}")
        return 1
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(init_database()))
