"""
Unit tests for the catalog store
"""

import pytest
from datetime import datetime, timedelta
from sqlalchemy import text
from core.database import create_catalog_engine
from core.exceptions import NotFoundError, StorageInitError
from mirror.catalog import CatalogStore
from models.base import SyncStatus
from schemas.index_entry import PackageVersionCreate
from schemas.sync import UpsertOutcome


def version(name="foo", vers="1.0.0", cksum="abc123", size=100, yanked=False):
    return PackageVersionCreate(name=name, version=vers, checksum=cksum, size=size, yanked=yanked)


class TestUpsert:
    """Test package version upserts"""

    @pytest.mark.asyncio
    async def test_insert_creates_row(self, store):
        outcome = await store.upsert_package_version(version())

        assert outcome == UpsertOutcome.CREATED
        row = await store.get_package_version("foo", "1.0.0")
        assert row.checksum == "abc123"
        assert row.size == 100
        assert row.yanked is False
        assert row.downloaded is False

    @pytest.mark.asyncio
    async def test_identical_record_is_unchanged(self, store):
        await store.upsert_package_version(version())
        first = await store.get_package_version("foo", "1.0.0")

        outcome = await store.upsert_package_version(version())

        assert outcome == UpsertOutcome.UNCHANGED
        second = await store.get_package_version("foo", "1.0.0")
        assert second.last_update == first.last_update

    @pytest.mark.asyncio
    async def test_yank_flip_updates_row(self, store):
        await store.upsert_package_version(version())

        outcome = await store.upsert_package_version(version(yanked=True))

        assert outcome == UpsertOutcome.UPDATED
        row = await store.get_package_version("foo", "1.0.0")
        assert row.yanked is True

    @pytest.mark.asyncio
    async def test_checksum_change_resets_downloaded(self, store):
        await store.upsert_package_version(version())
        await store.mark_downloaded("foo", "1.0.0", "abc123", 100)

        outcome = await store.upsert_package_version(version(cksum="ffff"))

        assert outcome == UpsertOutcome.UPDATED
        row = await store.get_package_version("foo", "1.0.0")
        assert row.checksum == "ffff"
        assert row.downloaded is False

    @pytest.mark.asyncio
    async def test_yank_keeps_downloaded_flag(self, store):
        await store.upsert_package_version(version())
        await store.mark_downloaded("foo", "1.0.0", "abc123", 100)

        await store.upsert_package_version(version(yanked=True))

        row = await store.get_package_version("foo", "1.0.0")
        assert row.downloaded is True

    @pytest.mark.asyncio
    async def test_zero_size_keeps_known_size(self, store):
        await store.upsert_package_version(version(size=100))

        outcome = await store.upsert_package_version(version(size=0))

        assert outcome == UpsertOutcome.UNCHANGED
        row = await store.get_package_version("foo", "1.0.0")
        assert row.size == 100

    @pytest.mark.asyncio
    async def test_later_record_in_batch_wins(self, store):
        outcomes = await store.upsert_many([version(), version(yanked=True)])

        assert outcomes == [UpsertOutcome.CREATED, UpsertOutcome.UPDATED]
        row = await store.get_package_version("foo", "1.0.0")
        assert row.yanked is True

    @pytest.mark.asyncio
    async def test_empty_batch(self, store):
        assert await store.upsert_many([]) == []

    @pytest.mark.asyncio
    async def test_order_of_distinct_keys_does_not_matter(self, tmp_path):
        records = [version(vers="1.0.0"), version(vers="2.0.0", cksum="beef"), version(name="bar")]
        snapshots = []

        for label, batch in (("forward", records), ("reverse", list(reversed(records)))):
            engine = create_catalog_engine(f"sqlite+aiosqlite:///{tmp_path / label}.db")
            catalog = CatalogStore(engine)
            await catalog.initialize()
            await catalog.upsert_many(batch)
            items, _ = await catalog.list_package_versions(limit=10)
            snapshots.append(sorted((i.name, i.version, i.checksum, i.size, i.yanked) for i in items))
            await engine.dispose()

        assert snapshots[0] == snapshots[1]


class TestDownloadState:
    """Test download bookkeeping"""

    @pytest.mark.asyncio
    async def test_mark_downloaded(self, store):
        await store.upsert_package_version(version(size=0))

        await store.mark_downloaded("foo", "1.0.0", "abc123", 4096)

        row = await store.get_package_version("foo", "1.0.0")
        assert row.downloaded is True
        assert row.size == 4096

    @pytest.mark.asyncio
    async def test_mark_downloaded_unknown_version(self, store):
        with pytest.raises(NotFoundError):
            await store.mark_downloaded("nope", "0.1.0", "aa", 1)

    @pytest.mark.asyncio
    async def test_mark_not_downloaded(self, store):
        await store.upsert_package_version(version())
        await store.mark_downloaded("foo", "1.0.0", "abc123", 100)

        await store.mark_not_downloaded("foo", "1.0.0")

        row = await store.get_package_version("foo", "1.0.0")
        assert row.downloaded is False

    @pytest.mark.asyncio
    async def test_pending_downloads_excludes_yanked_and_downloaded(self, store):
        await store.upsert_many([
            version(vers="1.0.0"),
            version(vers="1.0.1", yanked=True),
            version(vers="1.0.2"),
        ])
        await store.mark_downloaded("foo", "1.0.2", "abc123", 100)

        pending = await store.pending_downloads(10)

        assert [(p.name, p.version) for p in pending] == [("foo", "1.0.0")]

    @pytest.mark.asyncio
    async def test_pending_downloads_oldest_first_and_limited(self, store):
        await store.upsert_package_version(version(vers="1.0.0"))
        await store.upsert_package_version(version(vers="1.0.1"))
        await store.upsert_package_version(version(vers="1.0.2"))

        pending = await store.pending_downloads(2)

        assert [p.version for p in pending] == ["1.0.0", "1.0.1"]

    @pytest.mark.asyncio
    async def test_downloaded_versions(self, store):
        await store.upsert_many([version(vers="1.0.0"), version(vers="1.0.1")])
        await store.mark_downloaded("foo", "1.0.1", "abc123", 100)

        downloaded = await store.downloaded_versions(10)

        assert [d.version for d in downloaded] == ["1.0.1"]


class TestSyncHistory:
    """Test sync points and the run audit trail"""

    @pytest.mark.asyncio
    async def test_no_sync_point_initially(self, store):
        assert await store.latest_sync_point() is None

    @pytest.mark.asyncio
    async def test_latest_sync_point_by_timestamp(self, store):
        now = datetime.utcnow()
        await store.record_sync("c1", now - timedelta(hours=1))
        await store.record_sync("c2", now)

        latest = await store.latest_sync_point()

        assert latest.commit_id == "c2"

    @pytest.mark.asyncio
    async def test_sync_run_lifecycle(self, store):
        run = await store.start_sync_run("c0")
        assert run.run_id

        await store.complete_sync_run(run.run_id, SyncStatus.SUCCESS, commit_id="c1", files_changed=3)

        latest = await store.latest_sync_run()
        assert latest.run_id == run.run_id
        assert latest.status == SyncStatus.SUCCESS
        assert latest.commit_id == "c1"
        assert latest.files_changed == 3
        assert latest.duration_seconds is not None

    @pytest.mark.asyncio
    async def test_complete_unknown_run(self, store):
        assert await store.complete_sync_run("missing", SyncStatus.FAILED) is None

    @pytest.mark.asyncio
    async def test_runs_do_not_move_sync_point(self, store):
        run = await store.start_sync_run(None)
        await store.complete_sync_run(run.run_id, SyncStatus.FAILED, commit_id="c9")

        assert await store.latest_sync_point() is None


class TestQueries:
    """Test listing and statistics"""

    @pytest.mark.asyncio
    async def test_list_with_filters_and_paging(self, store):
        await store.upsert_many([version(vers=f"1.0.{i}") for i in range(5)])
        await store.upsert_package_version(version(name="bar", yanked=True))

        items, total = await store.list_package_versions(name="foo", offset=2, limit=2)
        assert total == 5
        assert [i.version for i in items] == ["1.0.2", "1.0.3"]

        yanked, yanked_total = await store.list_package_versions(yanked=True)
        assert yanked_total == 1
        assert yanked[0].name == "bar"

    @pytest.mark.asyncio
    async def test_stats(self, store):
        await store.upsert_many([version(vers="1.0.0", size=100), version(vers="1.0.1", size=50, yanked=True)])
        await store.upsert_package_version(version(name="bar", size=10))
        await store.mark_downloaded("bar", "1.0.0", "abc123", 10)
        await store.record_sync("c1")

        stats = await store.stats()

        assert stats == {
            "total_versions": 3,
            "total_packages": 2,
            "yanked_versions": 1,
            "downloaded_versions": 1,
            "total_size_bytes": 160,
            "pending_downloads": 1,
            "sync_count": 1,
        }

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping() is True


class TestInitialize:
    """Test schema creation and validation"""

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, store):
        await store.upsert_package_version(version())

        await store.initialize()

        assert await store.get_package_version("foo", "1.0.0") is not None

    @pytest.mark.asyncio
    async def test_incompatible_schema(self, tmp_path):
        engine = create_catalog_engine(f"sqlite+aiosqlite:///{tmp_path / 'old.db'}")
        async with engine.begin() as conn:
            await conn.execute(text("CREATE TABLE package_versions (id INTEGER PRIMARY KEY, name TEXT)"))

        with pytest.raises(StorageInitError) as exc_info:
            await CatalogStore(engine).initialize()

        assert "package_versions" in exc_info.value.context["missing_columns"]
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_not_a_database(self, tmp_path):
        path = tmp_path / "garbage.db"
        path.write_bytes(b"this is definitely not sqlite" * 100)
        engine = create_catalog_engine(f"sqlite+aiosqlite:///{path}")

        with pytest.raises(StorageInitError):
            await CatalogStore(engine).initialize()

        await engine.dispose()
