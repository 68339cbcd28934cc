"""
Unit tests for the download manager
"""

import asyncio
import hashlib
import pytest
from unittest.mock import AsyncMock
from core.exceptions import (
    ChecksumMismatchError,
    DownloadError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RemoteNotFoundError,
)
from mirror.downloader import DownloadManager
from schemas.index_entry import PackageVersionCreate
from schemas.sync import DownloadOutcome

ARCHIVE = b"\x1f\x8b pretend this is a gzipped tarball"
ARCHIVE_SHA256 = hashlib.sha256(ARCHIVE).hexdigest()
TEMPLATE = "https://dl.example.org/{crate}/{version}/download"


class FakeFetcher:
    """Replays a scripted sequence of bodies or exceptions"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.urls = []

    async def get(self, url):
        self.urls.append(url)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


async def add_version(store, name="foo", vers="1.0.0", cksum=ARCHIVE_SHA256, size=0, yanked=False):
    await store.upsert_package_version(
        PackageVersionCreate(name=name, version=vers, checksum=cksum, size=size, yanked=yanked)
    )
    return await store.get_package_version(name, vers)


def manager(store, fetcher, tmp_path, **kwargs) -> DownloadManager:
    kwargs.setdefault("retry_delay", 0)
    return DownloadManager(store, fetcher, tmp_path / "archives", TEMPLATE, **kwargs)


class TestDownload:
    """Test single archive downloads"""

    @pytest.mark.asyncio
    async def test_download_stores_verified_archive(self, store, tmp_path):
        record = await add_version(store)
        fetcher = FakeFetcher(ARCHIVE)
        downloads = manager(store, fetcher, tmp_path)

        result = await downloads.download(record)

        assert result.outcome == DownloadOutcome.DOWNLOADED
        target = tmp_path / "archives" / "3" / "f" / "foo" / "foo-1.0.0.crate"
        assert target.read_bytes() == ARCHIVE
        assert fetcher.urls == ["https://dl.example.org/foo/1.0.0/download"]

        row = await store.get_package_version("foo", "1.0.0")
        assert row.downloaded is True
        assert row.size == len(ARCHIVE)

    @pytest.mark.asyncio
    async def test_already_downloaded_fetches_nothing(self, store, tmp_path):
        snapshot = await add_version(store)
        await store.mark_downloaded("foo", "1.0.0", ARCHIVE_SHA256, len(ARCHIVE))
        fetcher = FakeFetcher(ARCHIVE)

        # The snapshot predates mark_downloaded; the catalog row wins
        result = await manager(store, fetcher, tmp_path).download(snapshot)

        assert snapshot.downloaded is False
        assert result.outcome == DownloadOutcome.ALREADY_DOWNLOADED
        assert result.size == len(ARCHIVE)
        assert fetcher.urls == []

    @pytest.mark.asyncio
    async def test_second_download_of_same_snapshot_is_a_no_op(self, store, tmp_path):
        snapshot = await add_version(store)
        fetcher = FakeFetcher(ARCHIVE)
        downloads = manager(store, fetcher, tmp_path)

        first = await downloads.download(snapshot)
        second = await downloads.download(snapshot)

        assert first.outcome == DownloadOutcome.DOWNLOADED
        assert second.outcome == DownloadOutcome.ALREADY_DOWNLOADED
        assert len(fetcher.urls) == 1

    @pytest.mark.asyncio
    async def test_concurrent_downloads_of_one_version_fetch_once(self, store, tmp_path):
        snapshot = await add_version(store)
        fetcher = FakeFetcher(ARCHIVE)
        downloads = manager(store, fetcher, tmp_path)

        results = await asyncio.gather(downloads.download(snapshot), downloads.download(snapshot))

        assert sorted(r.outcome.value for r in results) == sorted(
            [DownloadOutcome.DOWNLOADED.value, DownloadOutcome.ALREADY_DOWNLOADED.value]
        )
        assert len(fetcher.urls) == 1

    @pytest.mark.asyncio
    async def test_unknown_version_is_not_found(self, store, tmp_path):
        record = PackageVersionCreate(name="ghost", version="1.0.0", checksum=ARCHIVE_SHA256)
        fetcher = FakeFetcher(ARCHIVE)

        with pytest.raises(NotFoundError):
            await manager(store, fetcher, tmp_path).download(record)

        assert fetcher.urls == []

    @pytest.mark.asyncio
    async def test_checksum_mismatch_writes_nothing(self, store, tmp_path):
        record = await add_version(store, cksum="00" * 32)
        downloads = manager(store, FakeFetcher(ARCHIVE), tmp_path)

        with pytest.raises(ChecksumMismatchError) as exc_info:
            await downloads.download(record)

        assert exc_info.value.context["actual"] == ARCHIVE_SHA256
        assert not downloads.archive_path_for(record).exists()
        assert [p for p in tmp_path.rglob("*.tmp")] == []
        row = await store.get_package_version("foo", "1.0.0")
        assert row.downloaded is False

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, store, tmp_path):
        record = await add_version(store)
        fetcher = FakeFetcher(NetworkError("Server error 503"), ARCHIVE)

        result = await manager(store, fetcher, tmp_path, max_retries=3).download(record)

        assert result.outcome == DownloadOutcome.DOWNLOADED
        assert len(fetcher.urls) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self, store, tmp_path, monkeypatch):
        record = await add_version(store)
        sleep = AsyncMock()
        monkeypatch.setattr("mirror.downloader.asyncio.sleep", sleep)
        fetcher = FakeFetcher(RateLimitError("Rate limit exceeded", retry_after=3), ARCHIVE)

        await manager(store, fetcher, tmp_path).download(record)

        sleep.assert_awaited_once_with(3)

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, store, tmp_path):
        record = await add_version(store)
        fetcher = FakeFetcher(NetworkError("Server error 503"))

        with pytest.raises(DownloadError) as exc_info:
            await manager(store, fetcher, tmp_path, max_retries=3).download(record)

        assert len(fetcher.urls) == 3
        assert exc_info.value.context["retry_count"] == 3

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self, store, tmp_path):
        record = await add_version(store)
        fetcher = FakeFetcher(RemoteNotFoundError("Resource not found"))

        with pytest.raises(DownloadError) as exc_info:
            await manager(store, fetcher, tmp_path, max_retries=3).download(record)

        assert len(fetcher.urls) == 1
        assert isinstance(exc_info.value.original_exception, RemoteNotFoundError)


class TestDownloadMany:
    """Test batch downloads"""

    @pytest.mark.asyncio
    async def test_failures_are_contained(self, store, tmp_path):
        good = await add_version(store, vers="1.0.0")
        bad = await add_version(store, vers="1.0.1", cksum="ff" * 32)

        report = await manager(store, FakeFetcher(ARCHIVE), tmp_path, concurrency=2).download_many([good, bad])

        assert report.attempted == 2
        assert report.downloaded == 1
        assert report.failed == 1
        assert len(report.errors) == 1

    @pytest.mark.asyncio
    async def test_duplicate_records_are_fetched_once(self, store, tmp_path):
        record = await add_version(store)
        fetcher = FakeFetcher(ARCHIVE)

        report = await manager(store, fetcher, tmp_path, concurrency=2).download_many([record, record])

        assert report.attempted == 1
        assert report.downloaded == 1
        assert report.failed == 0
        assert len(fetcher.urls) == 1

    @pytest.mark.asyncio
    async def test_download_pending_skips_yanked(self, store, tmp_path):
        await add_version(store, vers="1.0.0")
        await add_version(store, vers="1.0.1", yanked=True)
        fetcher = FakeFetcher(ARCHIVE)

        report = await manager(store, fetcher, tmp_path).download_pending(10)

        assert report.downloaded == 1
        assert fetcher.urls == ["https://dl.example.org/foo/1.0.0/download"]
        assert await store.pending_downloads(10) == []

    @pytest.mark.asyncio
    async def test_empty_batch(self, store, tmp_path):
        report = await manager(store, FakeFetcher(ARCHIVE), tmp_path).download_many([])

        assert report.attempted == 0


class TestVerify:
    """Test re-verification of stored archives"""

    @pytest.mark.asyncio
    async def test_valid_archive(self, store, tmp_path):
        record = await add_version(store)
        downloads = manager(store, FakeFetcher(ARCHIVE), tmp_path)
        await downloads.download(record)

        report = await downloads.verify_downloaded(10)

        assert report.checked == 1
        assert report.valid == 1
        assert report.reset == 0

    @pytest.mark.asyncio
    async def test_corrupted_archive_is_reset(self, store, tmp_path):
        record = await add_version(store)
        downloads = manager(store, FakeFetcher(ARCHIVE), tmp_path)
        await downloads.download(record)
        downloads.archive_path_for(record).write_bytes(b"bit rot")

        report = await downloads.verify_downloaded(10)

        assert report.reset == 1
        assert report.reset_versions == ["foo-1.0.0"]
        row = await store.get_package_version("foo", "1.0.0")
        assert row.downloaded is False

    @pytest.mark.asyncio
    async def test_missing_archive_is_reset(self, store, tmp_path):
        record = await add_version(store)
        downloads = manager(store, FakeFetcher(ARCHIVE), tmp_path)
        await downloads.download(record)
        downloads.archive_path_for(record).unlink()

        assert await downloads.verify(await store.get_package_version("foo", "1.0.0")) is False
        assert await store.pending_downloads(10) != []
