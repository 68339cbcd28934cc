"""
Exclusive advisory lock around a sync pass.

The index mirror and the sync baseline are single shared resources: two
passes running at once could both read the same baseline and interleave
pulls. The lock is a file lock, so it also excludes passes started from
other processes (cron, the API scheduler, a manual run).
"""

import contextlib
from pathlib import Path
from typing import AsyncIterator

from filelock import AsyncFileLock, Timeout

from core.exceptions import SyncLockError
import logging

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def sync_pass_lock(lock_path, timeout: float = 0.0) -> AsyncIterator[AsyncFileLock]:
    """
    Hold the pass lock for the duration of the block.

    Args:
        lock_path: Lock file location
        timeout: Seconds to wait for a running pass; 0 fails immediately.
            The wait polls without blocking the event loop.

    Raises:
        SyncLockError: Another pass holds the lock
    """
    path = Path(lock_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lock = AsyncFileLock(str(path))

    try:
        await lock.acquire(timeout=timeout)
    except Timeout as e:
        raise SyncLockError(
            "Another sync pass is in progress",
            context={"lock_path": str(path), "timeout": timeout},
            original_exception=e
        )

    logger.debug(f"Acquired sync lock {path}")
    try:
        yield lock
    finally:
        await lock.release()
        logger.debug(f"Released sync lock {path}")
