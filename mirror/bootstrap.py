"""
Wire a SyncRunner from application settings.
"""

import contextlib
from pathlib import Path
from typing import AsyncIterator

from core.config import Settings, settings as default_settings
from core.database import create_catalog_engine
from core.exceptions import RepositoryCorruptError
from mirror.catalog import CatalogStore
from mirror.downloader import DownloadManager
from mirror.fetchers.http_fetcher import HttpFetcher
from mirror.index.git_repository import GitRepository
from mirror.index.sync_engine import IndexSyncEngine
from mirror.layout import resolve_archive_url_template
from mirror.runner import SyncRunner
import logging

logger = logging.getLogger(__name__)


class LazyDownloadManager(DownloadManager):
    """
    Download manager whose URL template may come from the index itself.

    The index's config.json only exists after the first clone, so the
    template is resolved when the first download batch starts.
    """

    def __init__(self, *args, configured_template=None, mirror_path=None, **kwargs):
        super().__init__(*args, url_template=configured_template or "", **kwargs)
        self.configured_template = configured_template
        self.mirror_path = mirror_path

    async def download_pending(self, batch_size: int):
        if not self.url_template:
            self.url_template = resolve_archive_url_template(self.configured_template, self.mirror_path)
            logger.info(f"Archive URL template: {self.url_template}")
        return await super().download_pending(batch_size)

    async def download(self, record):
        if not self.url_template and not record.downloaded:
            raise RepositoryCorruptError(
                "Archive URL template is unknown until the index has been synced",
                context={"path": str(self.mirror_path)}
            )
        return await super().download(record)


@contextlib.asynccontextmanager
async def open_sync_runner(config: Settings = None) -> AsyncIterator[SyncRunner]:
    """
    Build a fully wired runner and release its resources afterwards.

    The catalog schema is created (or checked) before the runner is
    handed out.
    """
    config = config or default_settings
    engine = create_catalog_engine(config.DATABASE_URL)
    fetcher = HttpFetcher(
        timeout=config.REQUEST_TIMEOUT,
        user_agent=config.USER_AGENT,
        token=config.REGISTRY_TOKEN
    )

    try:
        store = CatalogStore(engine)
        await store.initialize()

        mirror_path = Path(config.REGISTRY_PATH)
        sync_engine = IndexSyncEngine(
            repository=GitRepository(),
            index_url=config.INDEX_URL,
            mirror_path=mirror_path,
            update_index=config.UPDATE_INDEX
        )
        download_manager = LazyDownloadManager(
            store,
            fetcher,
            config.ARCHIVE_PATH,
            configured_template=config.ARCHIVE_URL_TEMPLATE,
            mirror_path=mirror_path,
            extension=config.ARCHIVE_EXTENSION,
            concurrency=config.DOWNLOAD_CONCURRENCY,
            max_retries=config.MAX_RETRIES,
            retry_delay=config.RETRY_DELAY
        )

        yield SyncRunner(
            store,
            sync_engine,
            download_manager=download_manager,
            lock_path=config.LOCK_PATH,
            lock_timeout=config.LOCK_TIMEOUT,
            parse_workers=config.PARSE_WORKERS,
            download_batch_size=config.DOWNLOAD_BATCH_SIZE,
            download_enabled=config.DOWNLOAD_ENABLED,
            verify_downloads=config.VERIFY_DOWNLOADS,
            verify_batch_size=config.VERIFY_BATCH_SIZE
        )
    finally:
        await fetcher.aclose()
        await engine.dispose()
