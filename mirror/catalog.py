"""
Catalog store: the only component that touches the catalog tables.

Ensures:
- No duplicate rows on repeated runs (upsert keyed by name + version)
- Writes are serialized; each operation commits or rolls back as a unit
- The sync point only advances through record_sync
"""

import asyncio
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, func, inspect, text, case
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from core.database import create_session_maker
from core.exceptions import StorageInitError, StorageWriteError, NotFoundError
from models.base import Base, SyncStatus
from models.package_version import PackageVersion
from models.sync_record import SyncRecord
from models.sync_run import SyncRun
from schemas.index_entry import PackageVersionCreate
from schemas.sync import UpsertOutcome
import logging

logger = logging.getLogger(__name__)


class CatalogStore:
    """
    Persistent catalog of package versions and sync history.

    Every public operation opens its own session, so the store can be
    shared between concurrent download workers. Writes are funnelled
    through one asyncio lock (SQLite allows a single writer anyway).
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_maker = create_session_maker(engine)
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Create the schema if absent. Safe to call on every startup.

        Raises:
            StorageInitError: Backing file is not a database, or an existing
                table lacks columns this version needs
        """
        try:
            async with self.engine.begin() as conn:
                problems = await conn.run_sync(_schema_problems)
                if problems:
                    raise StorageInitError(
                        "Catalog has an incompatible schema",
                        context={"missing_columns": problems}
                    )
                await conn.run_sync(Base.metadata.create_all)
        except StorageInitError:
            raise
        except Exception as e:
            raise StorageInitError(
                "Failed to open catalog",
                context={"database_url": self.engine.url.render_as_string(hide_password=True)},
                original_exception=e
            )

        logger.info("Catalog schema ready")

    async def ping(self) -> bool:
        """Check catalog connectivity"""
        try:
            async with self.session_maker() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Catalog connection failed: {str(e)}")
            return False

    # ------------------------------------------------------------------
    # Package versions
    # ------------------------------------------------------------------

    async def upsert_package_version(self, record: PackageVersionCreate) -> UpsertOutcome:
        """Insert or update one record matched by (name, version)"""
        outcomes = await self.upsert_many([record])
        return outcomes[0]

    async def upsert_many(self, records: Iterable[PackageVersionCreate]) -> List[UpsertOutcome]:
        """
        Upsert records in order inside one transaction.

        A later record for the same (name, version) overwrites an earlier one.

        Returns:
            One outcome per record, in input order
        """
        records = list(records)
        if not records:
            return []

        async with self._write_lock:
            async with self.session_maker() as session:
                try:
                    outcomes = []
                    for record in records:
                        outcomes.append(await self._upsert(session, record))
                    await session.commit()
                except SQLAlchemyError as e:
                    await session.rollback()
                    raise StorageWriteError(
                        "Failed to upsert package versions",
                        context={
                            "operation": "UPSERT",
                            "table_name": PackageVersion.__tablename__,
                            "package_name": records[0].name,
                            "records": len(records)
                        },
                        original_exception=e
                    )

        counts = Counter(o.value for o in outcomes)
        logger.debug(f"Upserted {len(records)} versions of {records[0].name}: {dict(counts)}")
        return outcomes

    async def _upsert(self, session, record: PackageVersionCreate) -> UpsertOutcome:
        result = await session.execute(
            select(PackageVersion).where(
                PackageVersion.name == record.name,
                PackageVersion.version == record.version
            )
        )
        existing = result.scalar_one_or_none()
        now = datetime.utcnow()

        if existing is None:
            stmt = sqlite_insert(PackageVersion).values(
                name=record.name,
                version=record.version,
                size=record.size,
                checksum=record.checksum,
                yanked=record.yanked,
                downloaded=False,
                last_update=now
            )
            stmt = stmt.on_conflict_do_nothing(index_elements=["name", "version"])
            await session.execute(stmt)
            await session.flush()
            return UpsertOutcome.CREATED

        changed = False

        if existing.checksum != record.checksum:
            existing.checksum = record.checksum
            # The stored archive no longer matches the index
            existing.downloaded = False
            changed = True

        if existing.yanked != record.yanked:
            existing.yanked = record.yanked
            changed = True

        # A zero size means "unknown" in the index; keep the measured size
        if record.size and existing.size != record.size:
            existing.size = record.size
            changed = True

        if not changed:
            return UpsertOutcome.UNCHANGED

        existing.last_update = now
        await session.flush()
        return UpsertOutcome.UPDATED

    async def get_package_version(self, name: str, version: str) -> Optional[PackageVersion]:
        """Fetch one record or None"""
        async with self.session_maker() as session:
            result = await session.execute(
                select(PackageVersion).where(
                    PackageVersion.name == name,
                    PackageVersion.version == version
                )
            )
            return result.scalar_one_or_none()

    async def mark_downloaded(self, name: str, version: str, checksum: str, size: int) -> PackageVersion:
        """
        Record a verified archive.

        Raises:
            NotFoundError: No such (name, version)
        """
        return await self._update_download_state(
            name, version, downloaded=True, checksum=checksum, size=size
        )

    async def mark_not_downloaded(self, name: str, version: str) -> PackageVersion:
        """
        Reset the downloaded flag after the archive went missing or corrupt.

        Raises:
            NotFoundError: No such (name, version)
        """
        return await self._update_download_state(name, version, downloaded=False)

    async def _update_download_state(
        self,
        name: str,
        version: str,
        downloaded: bool,
        checksum: Optional[str] = None,
        size: Optional[int] = None
    ) -> PackageVersion:
        async with self._write_lock:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(PackageVersion).where(
                        PackageVersion.name == name,
                        PackageVersion.version == version
                    )
                )
                row = result.scalar_one_or_none()
                if row is None:
                    raise NotFoundError(
                        f"Package version {name}-{version} is not in the catalog",
                        context={"package_name": name, "version": version}
                    )

                row.downloaded = downloaded
                if checksum is not None:
                    row.checksum = checksum
                if size is not None:
                    row.size = size
                row.last_update = datetime.utcnow()

                try:
                    await session.commit()
                except SQLAlchemyError as e:
                    await session.rollback()
                    raise StorageWriteError(
                        "Failed to update download state",
                        context={
                            "operation": "UPDATE",
                            "table_name": PackageVersion.__tablename__,
                            "package_name": name,
                            "version": version
                        },
                        original_exception=e
                    )
                return row

    async def pending_downloads(self, limit: int) -> List[PackageVersion]:
        """Non-yanked, not yet downloaded records, oldest first"""
        async with self.session_maker() as session:
            result = await session.execute(
                select(PackageVersion)
                .where(
                    PackageVersion.yanked.is_(False),
                    PackageVersion.downloaded.is_(False)
                )
                .order_by(PackageVersion.last_update.asc(), PackageVersion.id.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def downloaded_versions(self, limit: int) -> List[PackageVersion]:
        """Downloaded records, least recently touched first"""
        async with self.session_maker() as session:
            result = await session.execute(
                select(PackageVersion)
                .where(PackageVersion.downloaded.is_(True))
                .order_by(PackageVersion.last_update.asc(), PackageVersion.id.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_package_versions(
        self,
        name: Optional[str] = None,
        yanked: Optional[bool] = None,
        downloaded: Optional[bool] = None,
        offset: int = 0,
        limit: int = 50
    ) -> Tuple[List[PackageVersion], int]:
        """Filtered, paginated listing ordered by name then id"""
        filters = []
        if name is not None:
            filters.append(PackageVersion.name == name)
        if yanked is not None:
            filters.append(PackageVersion.yanked.is_(yanked))
        if downloaded is not None:
            filters.append(PackageVersion.downloaded.is_(downloaded))

        async with self.session_maker() as session:
            count_query = select(func.count()).select_from(PackageVersion).where(*filters)
            total = (await session.execute(count_query)).scalar_one()

            query = (
                select(PackageVersion)
                .where(*filters)
                .order_by(PackageVersion.name.asc(), PackageVersion.id.asc())
                .offset(offset)
                .limit(limit)
            )
            items = list((await session.execute(query)).scalars().all())

        return items, total

    async def stats(self) -> Dict[str, int]:
        """Catalog totals"""
        async with self.session_maker() as session:
            row = (await session.execute(
                select(
                    func.count(PackageVersion.id),
                    func.count(func.distinct(PackageVersion.name)),
                    func.coalesce(func.sum(case((PackageVersion.yanked.is_(True), 1), else_=0)), 0),
                    func.coalesce(func.sum(case((PackageVersion.downloaded.is_(True), 1), else_=0)), 0),
                    func.coalesce(func.sum(PackageVersion.size), 0),
                )
            )).one()
            pending = (await session.execute(
                select(func.count()).select_from(PackageVersion).where(
                    PackageVersion.yanked.is_(False),
                    PackageVersion.downloaded.is_(False)
                )
            )).scalar_one()
            sync_count = (await session.execute(
                select(func.count()).select_from(SyncRecord)
            )).scalar_one()

        return {
            "total_versions": row[0],
            "total_packages": row[1],
            "yanked_versions": int(row[2]),
            "downloaded_versions": int(row[3]),
            "total_size_bytes": int(row[4]),
            "pending_downloads": pending,
            "sync_count": sync_count,
        }

    # ------------------------------------------------------------------
    # Sync history
    # ------------------------------------------------------------------

    async def latest_sync_point(self) -> Optional[SyncRecord]:
        """Most recent completed sync, or None before the first one"""
        async with self.session_maker() as session:
            result = await session.execute(
                select(SyncRecord)
                .order_by(SyncRecord.timestamp.desc(), SyncRecord.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def record_sync(self, commit_id: str, timestamp: Optional[datetime] = None) -> SyncRecord:
        """
        Append a sync point. Must be the last write of a pass.
        """
        record = SyncRecord(commit_id=commit_id, timestamp=timestamp or datetime.utcnow())

        async with self._write_lock:
            async with self.session_maker() as session:
                session.add(record)
                try:
                    await session.commit()
                except SQLAlchemyError as e:
                    await session.rollback()
                    raise StorageWriteError(
                        "Failed to record sync point",
                        context={
                            "operation": "INSERT",
                            "table_name": SyncRecord.__tablename__,
                            "commit_id": commit_id
                        },
                        original_exception=e
                    )

        logger.info(f"Sync point advanced to {commit_id}")
        return record

    # ------------------------------------------------------------------
    # Sync run audit
    # ------------------------------------------------------------------

    async def start_sync_run(self, baseline_commit: Optional[str] = None) -> SyncRun:
        """Create a RUNNING audit row"""
        run = SyncRun(
            status=SyncStatus.RUNNING,
            started_at=datetime.utcnow(),
            baseline_commit=baseline_commit
        )
        async with self._write_lock:
            async with self.session_maker() as session:
                session.add(run)
                try:
                    await session.commit()
                except SQLAlchemyError as e:
                    await session.rollback()
                    raise StorageWriteError(
                        "Failed to start sync run",
                        context={"operation": "INSERT", "table_name": SyncRun.__tablename__},
                        original_exception=e
                    )
        return run

    async def complete_sync_run(self, run_id: str, status: SyncStatus, **stats) -> Optional[SyncRun]:
        """Close an audit row with final status and statistics"""
        async with self._write_lock:
            async with self.session_maker() as session:
                result = await session.execute(select(SyncRun).where(SyncRun.run_id == run_id))
                run = result.scalar_one_or_none()
                if run is None:
                    logger.warning(f"Sync run {run_id} not found")
                    return None

                run.status = status
                run.completed_at = datetime.utcnow()
                run.duration_seconds = (run.completed_at - run.started_at).total_seconds()
                for field, value in stats.items():
                    setattr(run, field, value)

                try:
                    await session.commit()
                except SQLAlchemyError as e:
                    await session.rollback()
                    raise StorageWriteError(
                        "Failed to complete sync run",
                        context={"operation": "UPDATE", "table_name": SyncRun.__tablename__, "run_id": run_id},
                        original_exception=e
                    )
                return run

    async def latest_sync_run(self) -> Optional[SyncRun]:
        """Most recently started pass"""
        async with self.session_maker() as session:
            result = await session.execute(
                select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(1)
            )
            return result.scalar_one_or_none()


def _schema_problems(sync_conn) -> Dict[str, List[str]]:
    """Columns missing from tables that already exist"""
    inspector = inspect(sync_conn)
    existing_tables = set(inspector.get_table_names())
    problems = {}

    for table in Base.metadata.sorted_tables:
        if table.name not in existing_tables:
            continue
        present = {column["name"] for column in inspector.get_columns(table.name)}
        missing = [column.name for column in table.columns if column.name not in present]
        if missing:
            problems[table.name] = missing

    return problems
