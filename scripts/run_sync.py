"""
Script to run one sync pass: update the index mirror, refresh the
catalog and download pending archives.

Exit codes:
    0: Pass succeeded
    1: Pass failed; the sync point was not advanced
    2: Pass succeeded but some index files were malformed
    3: Another pass is already running
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.exceptions import MirrorError, SyncLockError
from core.logging import setup_logging
from mirror.bootstrap import open_sync_runner
from models.base import SyncStatus

logger = logging.getLogger(__name__)


async def run_sync(download: bool = True, verify: bool = False) -> int:
    """Run one sync pass and map its outcome to an exit code"""
    config = settings.model_copy(update={
        "DOWNLOAD_ENABLED": settings.DOWNLOAD_ENABLED and download,
        "VERIFY_DOWNLOADS": settings.VERIFY_DOWNLOADS or verify,
    })

    try:
        async with open_sync_runner(config) as runner:
            result = await runner.run()
    except SyncLockError as e:
        logger.warning(f"{e}")
        return 3
    except MirrorError as e:
        logger.error(f"Sync pass failed: {e}")
        return 1

    logger.info(
        f"Sync completed at {result.commit_id}: "
        f"Created={result.records_created}, Updated={result.records_updated}, "
        f"FailedFiles={result.files_failed}"
    )
    if result.downloads:
        logger.info(
            f"Downloads: {result.downloads.downloaded} downloaded, "
            f"{result.downloads.failed} failed"
        )

    return 2 if result.status == SyncStatus.PARTIAL.value else 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run one registry mirror sync pass")
    parser.add_argument("--no-download", action="store_true", help="Only refresh the catalog")
    parser.add_argument("--verify", action="store_true", help="Re-hash downloaded archives afterwards")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    return asyncio.run(run_sync(download=not args.no_download, verify=args.verify))


if __name__ == "__main__":
    sys.exit(main())
