"""
Catalog engine and session management with SQLAlchemy async
"""

from pathlib import Path
from sqlalchemy import event
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool
import logging

logger = logging.getLogger(__name__)


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def create_catalog_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine backing the catalog.

    For file-backed SQLite catalogs the parent directory is created and
    every connection is switched to WAL journaling.
    """
    url = make_url(database_url)
    is_sqlite = url.drivername.startswith("sqlite")

    if is_sqlite and url.database and url.database != ":memory:":
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(
        database_url,
        echo=echo,
        poolclass=NullPool,  # One short-lived connection per session
        future=True
    )

    if is_sqlite:
        event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)

    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory used by the catalog store"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


def sync_database_url(database_url: str) -> str:
    """Map an async driver URL to its synchronous counterpart (for Alembic)"""
    url = make_url(database_url)
    driver_map = {
        "sqlite+aiosqlite": "sqlite",
        "postgresql+asyncpg": "postgresql",
    }
    return url.set(drivername=driver_map.get(url.drivername, url.drivername)).render_as_string(hide_password=False)
