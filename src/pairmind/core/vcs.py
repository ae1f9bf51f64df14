"""Read-only git access for the historical context layer.

Everything here shells out to the ``git`` binary.  Failures raise
``GitError``; the context analyzer turns that into "no historical
context available" rather than failing the snapshot.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
from pathlib import Path

from .models import CommitInfo, GitContext

log = logging.getLogger(__name__)

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"


class GitError(Exception):
    """A git command failed or git is unavailable."""


def _git_run(repo_dir: Path, *args: str) -> subprocess.CompletedProcess:
    """Run a git command in the repo directory."""
    return subprocess.run(
        ["git", *args],
        cwd=str(repo_dir),
        capture_output=True,
        text=True,
        timeout=60,
    )


class GitClient:
    """Queries one working tree."""

    def __init__(self, repo_dir: str | Path, *, max_commits: int = 10) -> None:
        self.repo_dir = Path(repo_dir)
        self.max_commits = max_commits

    async def _run(self, *args: str) -> str:
        try:
            result = await asyncio.to_thread(_git_run, self.repo_dir, *args)
        except (OSError, subprocess.SubprocessError) as exc:
            raise GitError(f"git {args[0]} failed: {exc}") from exc
        if result.returncode != 0:
            raise GitError(f"git {args[0]} failed: {result.stderr.strip()}")
        return result.stdout

    async def current_branch(self) -> str:
        return (await self._run("rev-parse", "--abbrev-ref", "HEAD")).strip()

    async def recent_commits(self, limit: int | None = None) -> list[CommitInfo]:
        fmt = _FIELD_SEP.join(["%H", "%s", "%an", "%aI"]) + _RECORD_SEP
        try:
            out = await self._run("log", f"--max-count={limit or self.max_commits}", f"--pretty=format:{fmt}")
        except GitError as exc:
            # A fresh repository has no HEAD yet.
            if "does not have any commits" in str(exc):
                return []
            raise
        commits: list[CommitInfo] = []
        for record in out.split(_RECORD_SEP):
            record = record.strip("\n")
            if not record:
                continue
            parts = record.split(_FIELD_SEP)
            if len(parts) < 4:
                continue
            commits.append(CommitInfo(hash=parts[0], message=parts[1], author=parts[2], date=parts[3]))
        return commits

    async def uncommitted_changes(self) -> list[str]:
        """Modified, added and deleted paths (untracked files are excluded)."""
        out = await self._run("status", "--porcelain")
        paths: list[str] = []
        for line in out.splitlines():
            if len(line) < 4 or line.startswith("??"):
                continue
            path = line[3:]
            if " -> " in path:
                path = path.split(" -> ", 1)[1]
            paths.append(path.strip('"'))
        return paths

    async def recently_changed_files(self, commits: int = 5) -> list[str]:
        out = await self._run("log", f"--max-count={commits}", "--name-only", "--pretty=format:")
        seen: dict[str, None] = {}
        for line in out.splitlines():
            if line.strip():
                seen.setdefault(line.strip(), None)
        return list(seen)

    async def staged_diff(self) -> str:
        return await self._run("diff", "--cached")

    async def remote_url(self) -> str | None:
        try:
            return (await self._run("config", "--get", "remote.origin.url")).strip() or None
        except GitError:
            return None

    async def context(self) -> GitContext:
        """Branch, last commits and uncommitted paths in one model."""
        branch = await self.current_branch()
        commits = await self.recent_commits()
        changes = await self.uncommitted_changes()
        return GitContext(
            current_branch=branch,
            recent_commits=commits,
            uncommitted_changes=changes,
            remote_url=await self.remote_url(),
        )
