"""
Index sync engine: keeps the local index mirror current and reports
which package files changed since a baseline revision.

States of the mirror:
    Absent  --clone-->  Present@C0
    Present@C_old  --pull-->  Present@C_new   (C_new may equal C_old)

Failures leave the state where it was; both transitions are retryable.
"""

from pathlib import Path
from typing import Iterable, List, Optional

from core.exceptions import RepositoryCorruptError
from schemas.sync import IndexChanges
import logging

logger = logging.getLogger(__name__)

# Registry configuration, not a package file
REGISTRY_CONFIG_FILE = "config.json"


def is_index_file(path: str) -> bool:
    """
    Whether a repository path holds package entries.

    Excludes the registry config and anything under a dot-directory
    (``.git``, ``.github``) or named like a dot-file.
    """
    parts = Path(path).parts
    if not parts:
        return False
    if len(parts) == 1 and parts[0] == REGISTRY_CONFIG_FILE:
        return False
    return not any(part.startswith(".") for part in parts)


class IndexSyncEngine:
    """
    Clone/pull the index repository and compute changed package files.

    Attributes:
        repository: Repository-fetch capability (clone/pull/head_revision/diff)
        index_url: Upstream index repository URL
        mirror_path: Local mirror directory
        update_index: Pull before diffing; when False the mirror is used as-is
    """

    def __init__(self, repository, index_url: str, mirror_path, update_index: bool = True):
        self.repository = repository
        self.index_url = index_url
        self.mirror_path = Path(mirror_path)
        self.update_index = update_index

    def is_present(self) -> bool:
        """Mirror has been cloned"""
        return (self.mirror_path / ".git").exists()

    async def update(self) -> str:
        """
        Clone if absent, pull if present.

        Returns:
            Commit id now checked out
        """
        if self.mirror_path.exists() and not self.is_present():
            raise RepositoryCorruptError(
                "Index mirror path exists but is not a git repository; remove it to re-clone",
                context={"path": str(self.mirror_path)}
            )

        if not self.update_index:
            if not self.is_present():
                raise RepositoryCorruptError(
                    "Index mirror is absent and index updates are disabled",
                    context={"path": str(self.mirror_path)}
                )
            logger.info("Index update disabled, using mirror as-is")
        elif not self.is_present():
            await self.repository.clone(self.index_url, self.mirror_path)
        else:
            await self.repository.pull(self.mirror_path)

        return await self.repository.head_revision(self.mirror_path)

    async def changed_files_since(self, baseline_commit: Optional[str], current_commit: str) -> IndexChanges:
        """
        Package files modified between the baseline and the current commit.

        An unknown baseline (first sync, or a baseline that upstream history
        no longer contains) means every package file is treated as changed.
        Deleted files are dropped since there is nothing left to parse.
        """
        full_import = baseline_commit is None
        if not full_import and not await self.repository.has_commit(self.mirror_path, baseline_commit):
            logger.warning(
                f"Baseline {baseline_commit} is not in the index history "
                f"(upstream rewritten?); falling back to a full import"
            )
            full_import = True

        if full_import:
            paths = await self.repository.list_files(self.mirror_path)
        else:
            paths = await self.repository.diff(self.mirror_path, baseline_commit, current_commit)

        changed = self._existing_index_files(paths)
        logger.info(
            f"{len(changed)} index files changed "
            f"({'full import' if full_import else f'since {baseline_commit}'})"
        )
        return IndexChanges(
            commit_id=current_commit,
            baseline_commit=baseline_commit,
            full_import=full_import,
            changed_paths=changed
        )

    async def sync(self, baseline_commit: Optional[str] = None) -> IndexChanges:
        """
        Update the mirror, then diff against ``baseline_commit``.

        Deterministic: the same upstream state and baseline always produce
        the same sorted path list.

        Raises:
            SyncTransportError: Clone/pull failed
            RepositoryCorruptError: Mirror is unreadable
        """
        current_commit = await self.update()
        return await self.changed_files_since(baseline_commit, current_commit)

    def path_for(self, relative_path: str) -> Path:
        """Absolute location of an index file"""
        return self.mirror_path / relative_path

    def _existing_index_files(self, paths: Iterable[str]) -> List[str]:
        changed = []
        for path in sorted(set(paths)):
            if not is_index_file(path):
                continue
            if not self.path_for(path).is_file():
                logger.debug(f"Skipping deleted index file {path}")
                continue
            changed.append(path)
        return changed
