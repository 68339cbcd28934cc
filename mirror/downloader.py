"""
Checksum-verified archive downloads.

An archive reaches its final path only after its SHA-256 matched the
catalog checksum: bytes are written to a temporary file next to the
target, then atomically renamed. The catalog is updated last, so a
crash at any point leaves either no archive or a verified archive with
``downloaded`` still false (re-downloaded and overwritten next pass).
"""

import asyncio
import hashlib
import os
import uuid
import weakref
from pathlib import Path
from typing import Iterable, List, Optional

import aiofiles

from core.exceptions import (
    ChecksumMismatchError,
    DownloadError,
    MirrorError,
    NotFoundError,
    RateLimitError,
    RetryableError,
)
from mirror.layout import archive_path, build_archive_url
from schemas.sync import DownloadOutcome, DownloadReport, DownloadResult, VerifyReport
import logging

logger = logging.getLogger(__name__)

_HASH_CHUNK_SIZE = 1024 * 1024


class DownloadManager:
    """
    Fetch, verify and store package archives.

    Attributes:
        store: Catalog store (mark_downloaded / mark_not_downloaded / pending_downloads)
        fetcher: Byte-fetch capability with ``async get(url) -> bytes``
        archive_root: Root directory of the archive layout
        url_template: Archive URL template
        concurrency: Maximum simultaneous downloads (default: 8)
        max_retries: Attempts per archive for transient failures (default: 3)
        retry_delay: Initial backoff delay in seconds (default: 1.0)
    """

    def __init__(
        self,
        store,
        fetcher,
        archive_root,
        url_template: str,
        extension: str = ".crate",
        concurrency: int = 8,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        self.store = store
        self.fetcher = fetcher
        self.archive_root = Path(archive_root)
        self.url_template = url_template
        self.extension = extension
        self.concurrency = max(1, concurrency)
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._key_locks = weakref.WeakValueDictionary()

    def archive_path_for(self, record) -> Path:
        return archive_path(self.archive_root, record.name, record.version, self.extension)

    def archive_url_for(self, record) -> str:
        return build_archive_url(self.url_template, record.name, record.version, record.checksum)

    async def download(self, record) -> DownloadResult:
        """
        Download one package version.

        Returns:
            DownloadResult with DOWNLOADED, or ALREADY_DOWNLOADED without
            fetching anything

        Raises:
            ChecksumMismatchError: Bytes did not match the checksum (discarded)
            DownloadError: Transport failed after retries, or the archive
                could not be written
            NotFoundError: Record vanished from the catalog
        """
        key = (record.name, record.version)
        key_lock = self._key_locks.get(key)
        if key_lock is None:
            key_lock = self._key_locks[key] = asyncio.Lock()

        async with key_lock:
            # The caller may hold a stale snapshot; the catalog row decides
            current = await self.store.get_package_version(record.name, record.version)
            if current is None:
                raise NotFoundError(
                    f"Package version {record.name}-{record.version} is not in the catalog",
                    context={"package_name": record.name, "version": record.version}
                )
            if current.downloaded:
                return DownloadResult(
                    name=current.name,
                    version=current.version,
                    outcome=DownloadOutcome.ALREADY_DOWNLOADED,
                    path=str(self.archive_path_for(current)),
                    size=current.size or 0
                )
            return await self._fetch_and_store(current)

    async def _fetch_and_store(self, record) -> DownloadResult:
        url = self.archive_url_for(record)
        data = await self._fetch_with_retry(url, record)

        digest = hashlib.sha256(data).hexdigest()
        expected = (record.checksum or "").lower()
        if digest != expected:
            logger.warning(
                f"Hash mismatch for {record.name}-{record.version}. "
                f"Got {digest}, expected {expected}"
            )
            raise ChecksumMismatchError(
                f"Checksum mismatch for {record.name}-{record.version}",
                context={
                    "package_name": record.name,
                    "version": record.version,
                    "url": url,
                    "expected": expected,
                    "actual": digest,
                    "bytes": len(data)
                }
            )

        target = self.archive_path_for(record)
        try:
            await self._write_atomically(target, data)
        except OSError as e:
            raise DownloadError(
                f"Failed to store archive for {record.name}-{record.version}",
                context={"package_name": record.name, "version": record.version, "path": str(target)},
                original_exception=e
            )

        await self.store.mark_downloaded(record.name, record.version, digest, len(data))
        logger.info(f"Downloaded {target.name} ({len(data)} bytes)")

        return DownloadResult(
            name=record.name,
            version=record.version,
            outcome=DownloadOutcome.DOWNLOADED,
            path=str(target),
            size=len(data)
        )

    async def _fetch_with_retry(self, url: str, record) -> bytes:
        """
        Fetch with exponential backoff for retryable transport errors.

        Raises:
            DownloadError: Non-retryable error, or retries exhausted
        """
        last_exception: Optional[MirrorError] = None

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"Request attempt {attempt + 1}/{self.max_retries} to {url}")
                return await self.fetcher.get(url)

            except RetryableError as e:
                last_exception = e
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    if isinstance(e, RateLimitError) and e.retry_after:
                        delay = max(delay, e.retry_after)
                    logger.warning(
                        f"{e.message} for {record.name}-{record.version}. "
                        f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                    )
                    await asyncio.sleep(delay)

            except MirrorError as e:
                raise DownloadError(
                    f"Failed to download {record.name}-{record.version}",
                    context={
                        "package_name": record.name,
                        "version": record.version,
                        "url": url,
                        "retry_count": attempt + 1
                    },
                    original_exception=e
                )

        raise DownloadError(
            f"Failed to download {record.name}-{record.version} after {self.max_retries} attempts",
            context={
                "package_name": record.name,
                "version": record.version,
                "url": url,
                "retry_count": self.max_retries
            },
            original_exception=last_exception
        )

    async def _write_atomically(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(data)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            os.replace(tmp_path, target)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    async def download_many(self, records: Iterable) -> DownloadReport:
        """
        Download records on a bounded worker pool.

        Failures are contained per record and reported; they never abort
        the batch.
        """
        unique = {}
        for record in records:
            unique.setdefault((record.name, record.version), record)
        records = list(unique.values())
        report = DownloadReport(attempted=len(records))
        if not records:
            return report

        semaphore = asyncio.Semaphore(self.concurrency)

        async def worker(record):
            async with semaphore:
                try:
                    return await self.download(record)
                except MirrorError as e:
                    return e

        results = await asyncio.gather(*(worker(record) for record in records))

        for record, result in zip(records, results):
            if isinstance(result, MirrorError):
                report.failed += 1
                report.errors.append(result.to_dict())
                logger.error(
                    f"Download failed for {record.name}-{record.version}: {result.message}",
                    extra={"error_context": result.to_dict()}
                )
            elif result.outcome == DownloadOutcome.ALREADY_DOWNLOADED:
                report.already_downloaded += 1
            else:
                report.downloaded += 1

        logger.info(
            f"Downloads complete: {report.downloaded} downloaded, "
            f"{report.already_downloaded} already present, {report.failed} failed"
        )
        return report

    async def download_pending(self, batch_size: int) -> DownloadReport:
        """Download up to ``batch_size`` pending catalog records"""
        pending = await self.store.pending_downloads(batch_size)
        logger.info(f"{len(pending)} archives pending download")
        return await self.download_many(pending)

    async def verify(self, record) -> bool:
        """
        Re-hash a downloaded archive on disk.

        A missing or corrupted archive resets the record to not downloaded
        so the next pass fetches it again.

        Returns:
            True if the archive is present and matches
        """
        path = self.archive_path_for(record)
        valid = False
        if path.is_file():
            digest = await asyncio.to_thread(_sha256_file, path)
            valid = digest == (record.checksum or "").lower()

        if not valid:
            logger.warning(f"Archive for {record.name}-{record.version} is missing or corrupt; resetting")
            await self.store.mark_not_downloaded(record.name, record.version)
        return valid

    async def verify_downloaded(self, limit: int) -> VerifyReport:
        """Verify up to ``limit`` downloaded archives"""
        records: List = await self.store.downloaded_versions(limit)
        report = VerifyReport()
        for record in records:
            report.checked += 1
            if await self.verify(record):
                report.valid += 1
            else:
                report.reset += 1
                report.reset_versions.append(f"{record.name}-{record.version}")
        logger.info(f"Verified {report.checked} archives: {report.valid} valid, {report.reset} reset")
        return report


def _sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()
