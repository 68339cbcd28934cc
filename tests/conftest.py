"""
Pytest configuration and fixtures
"""

import json
import shutil
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from core.database import create_catalog_engine
from core.exceptions import SyncTransportError
from mirror.catalog import CatalogStore
from mirror.index.sync_engine import IndexSyncEngine


def entry_line(name: str, vers: str, cksum: str, size: int = 0, yanked: bool = False, **extra) -> str:
    """One index line as the registry writes it"""
    payload = {"name": name, "vers": vers, "cksum": cksum, "yanked": yanked, **extra}
    if size:
        payload["size"] = size
    return json.dumps(payload)


def index_file(*lines: str) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


class FakeIndexRepository:
    """
    In-memory stand-in for the git-backed repository capability.

    ``upstream`` is a list of (commit_id, {path: bytes}) snapshots; the
    last one is what a clone or pull brings in.
    """

    def __init__(self):
        self.upstream: List[tuple] = []
        self.checked_out: Optional[str] = None
        self.known_commits = set()
        self.fail_next_fetch = False
        self.calls: List[str] = []

    def publish(self, commit_id: str, files: Dict[str, bytes]) -> None:
        self.upstream.append((commit_id, dict(files)))

    def squash_history(self) -> None:
        """Upstream rewrote history: only the newest commit survives"""
        self.upstream = self.upstream[-1:]
        self.known_commits = {self.upstream[-1][0]}

    def _snapshot(self, commit_id: str) -> Dict[str, bytes]:
        for cid, files in self.upstream:
            if cid == commit_id:
                return files
        raise KeyError(commit_id)

    def _checkout(self, destination: Path) -> None:
        commit_id, files = self.upstream[-1]
        for child in destination.iterdir():
            if child.name == ".git":
                continue
            if child.is_dir():
                shutil.rmtree(child)
            else:
                child.unlink()
        for rel, data in files.items():
            target = destination / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        self.checked_out = commit_id
        self.known_commits.update(cid for cid, _ in self.upstream)

    def _maybe_fail(self, url: str) -> None:
        if self.fail_next_fetch:
            self.fail_next_fetch = False
            raise SyncTransportError("Simulated network failure", context={"url": url})

    async def clone(self, url: str, destination: Path) -> None:
        self.calls.append("clone")
        self._maybe_fail(url)
        destination = Path(destination)
        (destination / ".git").mkdir(parents=True)
        self._checkout(destination)

    async def pull(self, destination: Path) -> None:
        self.calls.append("pull")
        self._maybe_fail(str(destination))
        self._checkout(Path(destination))

    async def head_revision(self, destination: Path) -> str:
        return self.checked_out

    async def has_commit(self, destination: Path, commit_id: str) -> bool:
        return commit_id in self.known_commits

    async def diff(self, destination: Path, from_commit: str, to_commit: str):
        if from_commit == to_commit:
            return set()
        old = self._snapshot(from_commit)
        new = self._snapshot(to_commit)
        return {
            path for path in set(old) | set(new)
            if old.get(path) != new.get(path)
        }

    async def list_files(self, destination: Path):
        return set(self._snapshot(self.checked_out))


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """File-backed SQLite catalog engine"""
    engine = create_catalog_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def store(test_engine) -> CatalogStore:
    """Initialized catalog store"""
    catalog = CatalogStore(test_engine)
    await catalog.initialize()
    return catalog


@pytest.fixture
def fake_repository():
    return FakeIndexRepository()


@pytest.fixture
def mirror_path(tmp_path) -> Path:
    return tmp_path / "index"


@pytest.fixture
def sync_engine(fake_repository, mirror_path) -> IndexSyncEngine:
    return IndexSyncEngine(
        repository=fake_repository,
        index_url="https://example.invalid/index.git",
        mirror_path=mirror_path
    )


@pytest.fixture
def foo_index() -> bytes:
    """Two versions of 'foo' as the registry writes them"""
    return index_file(
        entry_line("foo", "1.0.0", "abc123", size=100),
        entry_line("foo", "1.0.1", "def456", size=120),
    )


@pytest.fixture
def make_entry():
    return entry_line


@pytest.fixture
def make_index():
    return index_file
