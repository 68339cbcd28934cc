"""
Registry index mirror.

Keeps a local clone of a git-backed package index, records every package
version it describes in the catalog, and downloads checksum-verified
archives for them.

Modules:
    catalog: CatalogStore, the persistence layer for versions and sync history
    index.parser: Index file to PackageVersionCreate records
    index.sync_engine: Clone/pull and changed-file detection
    index.git_repository: git CLI wrapper
    fetchers.http_fetcher: HTTP byte fetcher
    downloader: DownloadManager with atomic, verified writes
    runner: SyncRunner, one end-to-end pass
    scheduler: Periodic passes via APScheduler
    bootstrap: Wiring from settings

Usage:
    from mirror.bootstrap import open_sync_runner

    async with open_sync_runner() as runner:
        result = await runner.run()
"""

__all__ = [
    "CatalogStore",
    "DownloadManager",
    "IndexSyncEngine",
    "SyncRunner",
]
