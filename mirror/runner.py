# ============================================================================
# File: mirror/runner.py
# Description: Sync pass orchestrator
# ============================================================================
"""
Sync Runner - drives one end-to-end pass over the index.

This module provides pass orchestration with:
- An exclusive lock so at most one pass is in flight
- Partial failure support (a malformed index file is reported and skipped)
- Crash consistency: the sync point is the last write of a pass
- Optional archive downloads and archive re-verification afterwards
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from core.exceptions import MalformedEntryError, MirrorError, RepositoryCorruptError
from mirror.index.parser import parse_index_file
from mirror.locks import sync_pass_lock
from models.base import SyncStatus
from schemas.sync import SyncResult, UpsertOutcome
import logging

logger = logging.getLogger(__name__)


class SyncRunner:
    """
    Sync pass orchestrator.

    Responsibilities:
    - Resolve the baseline from the catalog
    - Update the mirror and collect changed files
    - Parse changed files on a bounded pool and upsert their records
    - Advance the sync point only after every upsert committed
    - Feed pending archives to the download manager
    """

    def __init__(
        self,
        store,
        sync_engine,
        download_manager=None,
        lock_path=None,
        lock_timeout: float = 0.0,
        parse_workers: int = 4,
        download_batch_size: int = 500,
        download_enabled: bool = True,
        verify_downloads: bool = False,
        verify_batch_size: int = 1000
    ):
        self.store = store
        self.sync_engine = sync_engine
        self.download_manager = download_manager
        self.lock_path = lock_path
        self.lock_timeout = lock_timeout
        self.parse_workers = max(1, parse_workers)
        self.download_batch_size = download_batch_size
        self.download_enabled = download_enabled
        self.verify_downloads = verify_downloads
        self.verify_batch_size = verify_batch_size

    async def run(self) -> SyncResult:
        """
        Run one pass under the pass lock.

        Returns:
            SyncResult; status is "success", or "partial" when some index
            files were malformed (the sync point still advanced)

        Raises:
            SyncLockError: Another pass is running
            SyncTransportError / RepositoryCorruptError: Mirror update failed
            StorageWriteError: Catalog write failed; sync point not advanced
        """
        if self.lock_path is None:
            return await self._run_pass()

        async with sync_pass_lock(self.lock_path, timeout=self.lock_timeout):
            return await self._run_pass()

    async def _run_pass(self) -> SyncResult:
        baseline = await self.store.latest_sync_point()
        baseline_commit = baseline.commit_id if baseline else None
        run = await self.store.start_sync_run(baseline_commit)

        result = SyncResult(
            run_id=run.run_id,
            status=SyncStatus.RUNNING,
            baseline_commit=baseline_commit,
            started_at=run.started_at
        )

        logger.info(f"Starting sync pass {run.run_id} (baseline: {baseline_commit or 'none'})")

        try:
            # --------------------------------------------------
            # PHASE 1: INDEX SYNC
            # --------------------------------------------------
            changes = await self.sync_engine.sync(baseline_commit)
            result.commit_id = changes.commit_id
            result.full_import = changes.full_import
            result.files_changed = len(changes.changed_paths)

            # --------------------------------------------------
            # PHASE 2: PARSE + UPSERT
            # --------------------------------------------------
            await self._process_files(changes.changed_paths, result)

            # --------------------------------------------------
            # PHASE 3: ADVANCE SYNC POINT (last write of the pass)
            # --------------------------------------------------
            await self.store.record_sync(changes.commit_id, datetime.utcnow())

        except asyncio.CancelledError:
            logger.warning(f"Sync pass {run.run_id} cancelled; sync point not advanced")
            await self._finish_run(result, SyncStatus.CANCELLED, "cancelled")
            raise

        except MirrorError as e:
            logger.error(
                f"Sync pass failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            await self._finish_run(result, SyncStatus.FAILED, e.message)
            raise

        except Exception as e:
            logger.exception("Unexpected error in sync pass")
            await self._finish_run(result, SyncStatus.FAILED, str(e))
            raise

        # --------------------------------------------------
        # PHASE 4: DOWNLOADS (contained per archive)
        # --------------------------------------------------
        download_failed = False
        try:
            if self.download_manager is not None and self.download_enabled:
                result.downloads = await self.download_manager.download_pending(self.download_batch_size)

            if self.download_manager is not None and self.verify_downloads:
                result.verification = await self.download_manager.verify_downloaded(self.verify_batch_size)
        except MirrorError as e:
            # The sync point already advanced; archives are picked up next pass
            download_failed = True
            result.error_details.append({"phase": "download", **e.to_dict()})
            logger.error(
                f"Download phase failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )

        failed = result.files_failed > 0 or download_failed
        status = SyncStatus.PARTIAL if failed else SyncStatus.SUCCESS
        error_message = None
        if result.files_failed:
            error_message = f"{result.files_failed} index files failed"
        elif download_failed:
            error_message = result.error_details[-1]["message"]
        await self._finish_run(result, status, error_message)

        logger.info(
            f"Sync pass completed: {result.status} at {result.commit_id} - "
            f"Files: {result.files_processed}/{result.files_changed}, "
            f"Created: {result.records_created}, Updated: {result.records_updated}, "
            f"Failed files: {result.files_failed}"
        )
        return result

    async def _process_files(self, paths: List[str], result: SyncResult) -> None:
        """Parse in bounded chunks; upsert each chunk in path order"""
        chunk_size = self.parse_workers * 8
        semaphore = asyncio.Semaphore(self.parse_workers)

        async def parse_one(path: str) -> Tuple[str, Any]:
            async with semaphore:
                try:
                    records = await asyncio.to_thread(parse_index_file, self.sync_engine.path_for(path))
                    return path, records
                except MalformedEntryError as e:
                    return path, e
                except OSError as e:
                    raise RepositoryCorruptError(
                        f"Failed to read index file {path}",
                        context={"path": path},
                        original_exception=e
                    )

        for start in range(0, len(paths), chunk_size):
            chunk = paths[start:start + chunk_size]
            parsed = await asyncio.gather(*(parse_one(path) for path in chunk))

            for path, outcome in parsed:
                if isinstance(outcome, MalformedEntryError):
                    self._record_malformed(path, outcome, result)
                    continue

                outcomes = await self.store.upsert_many(outcome)
                result.files_processed += 1
                for upsert in outcomes:
                    if upsert == UpsertOutcome.CREATED:
                        result.records_created += 1
                    elif upsert == UpsertOutcome.UPDATED:
                        result.records_updated += 1
                    else:
                        result.records_unchanged += 1

    def _record_malformed(self, path: str, error: MalformedEntryError, result: SyncResult) -> None:
        result.files_failed += 1
        error_detail: Dict[str, Any] = {
            "phase": "parse",
            "path": path,
            **error.to_dict()
        }
        result.error_details.append(error_detail)
        logger.error(
            f"Skipping malformed index file {path} (line {error.line_number}): {error.message}",
            extra={"error_context": error_detail}
        )

    async def _finish_run(self, result: SyncResult, status: SyncStatus, error_message: Optional[str]) -> None:
        result.status = status.value
        result.completed_at = datetime.utcnow()
        downloads = result.downloads
        try:
            await self.store.complete_sync_run(
                result.run_id,
                status,
                commit_id=result.commit_id,
                files_changed=result.files_changed,
                files_failed=result.files_failed,
                records_created=result.records_created,
                records_updated=result.records_updated,
                records_unchanged=result.records_unchanged,
                downloads_succeeded=downloads.downloaded if downloads else 0,
                downloads_failed=downloads.failed if downloads else 0,
                error_message=error_message
            )
        except MirrorError as e:
            # The audit row is informational; never mask the pass outcome
            logger.error(f"Failed to close sync run {result.run_id}: {e.message}")
