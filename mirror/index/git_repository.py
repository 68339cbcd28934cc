"""
Git-backed repository-fetch capability for the index mirror.

Only four things are needed from git: clone if absent, pull if present,
report the checked-out revision, and list the files changed between two
revisions. Everything runs through the ``git`` executable.
"""

import asyncio
import os
import shutil
from pathlib import Path
from typing import List, Optional, Set

from core.exceptions import SyncTransportError, RepositoryCorruptError
import logging

logger = logging.getLogger(__name__)


class GitCommandError(Exception):
    """A git subprocess exited non-zero"""

    def __init__(self, args: List[str], returncode: int, stderr: str):
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"git {' '.join(args)} exited with {returncode}: {stderr.strip()}")


class GitRepository:
    """
    Thin async wrapper over the git CLI.

    Attributes:
        git_executable: Path or name of the git binary
        timeout: Seconds allowed for network operations (clone, fetch)
    """

    def __init__(self, git_executable: Optional[str] = None, timeout: float = 600.0):
        self.git_executable = git_executable or shutil.which("git") or "git"
        self.timeout = timeout

    async def _run(self, args: List[str], cwd: Optional[Path] = None, timeout: Optional[float] = None) -> str:
        env = dict(os.environ, GIT_TERMINAL_PROMPT="0", LC_ALL="C")
        process = await asyncio.create_subprocess_exec(
            self.git_executable,
            *args,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            process.kill()
            await process.wait()
            raise

        if process.returncode != 0:
            raise GitCommandError(args, process.returncode, stderr.decode("utf-8", "replace"))
        return stdout.decode("utf-8", "replace")

    async def clone(self, url: str, destination: Path) -> None:
        """
        Clone ``url`` into ``destination``.

        The clone goes to a sibling staging directory first, so a failed
        clone never leaves a half-populated mirror behind.

        Raises:
            SyncTransportError: Clone failed (network, disk)
        """
        destination = Path(destination)
        staging = destination.with_name(destination.name + ".partial")
        destination.parent.mkdir(parents=True, exist_ok=True)
        if staging.exists():
            shutil.rmtree(staging)

        logger.info(f"Cloning {url} into {destination}")
        try:
            await self._run(["clone", "--quiet", url, str(staging)], timeout=self.timeout)
            os.replace(staging, destination)
        except (GitCommandError, asyncio.TimeoutError, OSError) as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise SyncTransportError(
                f"Failed to clone {url}",
                context={"url": url, "path": str(destination)},
                original_exception=e
            )

    async def pull(self, destination: Path) -> None:
        """
        Bring the mirror to the upstream head.

        Fetches first and only then moves the working tree, so a failed
        fetch leaves the mirror at its previous revision. Resetting to
        FETCH_HEAD also copes with upstream history being squashed.

        Raises:
            SyncTransportError: Fetch failed
            RepositoryCorruptError: Working tree could not be updated
        """
        destination = Path(destination)
        logger.info(f"Pulling in {destination}")
        try:
            await self._run(["fetch", "--quiet", "origin"], cwd=destination, timeout=self.timeout)
        except (GitCommandError, asyncio.TimeoutError, OSError) as e:
            raise SyncTransportError(
                "Failed to fetch index updates",
                context={"path": str(destination)},
                original_exception=e
            )

        try:
            await self._run(["reset", "--quiet", "--hard", "FETCH_HEAD"], cwd=destination)
        except (GitCommandError, OSError) as e:
            raise RepositoryCorruptError(
                "Failed to update index working tree",
                context={"path": str(destination), "command": "reset"},
                original_exception=e
            )
        logger.info(f"{destination} is up to date")

    async def head_revision(self, destination: Path) -> str:
        """
        Commit id currently checked out.

        Raises:
            RepositoryCorruptError: Mirror is unreadable
        """
        try:
            output = await self._run(["rev-parse", "HEAD"], cwd=Path(destination))
        except (GitCommandError, OSError) as e:
            raise RepositoryCorruptError(
                "Failed to read index head revision",
                context={"path": str(destination), "command": "rev-parse"},
                original_exception=e
            )
        return output.strip()

    async def has_commit(self, destination: Path, commit_id: str) -> bool:
        """Whether ``commit_id`` exists in the mirror"""
        try:
            await self._run(["cat-file", "-e", f"{commit_id}^{{commit}}"], cwd=Path(destination))
            return True
        except GitCommandError:
            return False

    async def diff(self, destination: Path, from_commit: str, to_commit: str) -> Set[str]:
        """
        Paths changed between two revisions (added, modified or deleted).

        Raises:
            RepositoryCorruptError: Diff could not be computed
        """
        if from_commit == to_commit:
            return set()
        try:
            output = await self._run(
                ["diff", "--name-only", "--no-renames", "-z", from_commit, to_commit],
                cwd=Path(destination)
            )
        except (GitCommandError, OSError) as e:
            raise RepositoryCorruptError(
                "Failed to diff index revisions",
                context={"path": str(destination), "from_commit": from_commit, "to_commit": to_commit},
                original_exception=e
            )
        return {path for path in output.split("\0") if path}

    async def list_files(self, destination: Path) -> Set[str]:
        """
        Every tracked path at the checked-out revision.

        Raises:
            RepositoryCorruptError: Listing failed
        """
        try:
            output = await self._run(["ls-files", "-z"], cwd=Path(destination))
        except (GitCommandError, OSError) as e:
            raise RepositoryCorruptError(
                "Failed to list index files",
                context={"path": str(destination), "command": "ls-files"},
                original_exception=e
            )
        return {path for path in output.split("\0") if path}
