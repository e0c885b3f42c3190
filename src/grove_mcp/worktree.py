"""Git worktree provisioning for sessions."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .errors import ProvisioningError
from .runtime.utils import sanitize_environment

logger = logging.getLogger(__name__)

_GIT_IDENTITY = {"user.name": "Claude Agent", "user.email": "claude@agent.local"}
_README = "# Claude Agent Workspace\n\nThis is the base repository for Claude agents.\n"


@dataclass(slots=True)
class GitResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class WorktreeProvisioner(Protocol):
    async def provision(self, session_id: str, name: str) -> tuple[str, Path]:
        ...

    async def deprovision(self, path: Path) -> None:
        ...


def branch_name(name: str, *, now_ms: int | None = None) -> str:
    """Derive ``agent/<slug>-<epoch ms>`` from a session name."""

    slug = re.sub(r"\s+", "-", name.strip().lower())
    slug = re.sub(r"[^a-z0-9._/-]", "", slug).strip("-./") or "session"
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"agent/{slug}-{stamp}"


async def run_git(*args: str, cwd: Path) -> GitResult:
    cmd = ["git", *args]
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
    except OSError as exc:
        raise ProvisioningError(f"Unable to run git: {exc}") from exc
    stdout_bytes, stderr_bytes = await process.communicate()
    return GitResult(
        args=tuple(cmd),
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout_bytes.decode("utf-8", errors="replace"),
        stderr=stderr_bytes.decode("utf-8", errors="replace"),
    )


class GitWorktreeProvisioner:
    """Create one branch + worktree per session inside a shared base repository."""

    def __init__(self, base_repo: Path, worktrees_dir: Path | None = None) -> None:
        self._base_repo = Path(base_repo)
        self._worktrees_dir = Path(worktrees_dir) if worktrees_dir else self._base_repo / ".worktrees"
        self._last_stamp = 0

    @property
    def base_repo(self) -> Path:
        return self._base_repo

    @property
    def worktrees_dir(self) -> Path:
        return self._worktrees_dir

    async def _git(self, *args: str, cwd: Path | None = None) -> GitResult:
        result = await run_git(*args, cwd=cwd or self._base_repo)
        if not result.ok:
            raise ProvisioningError(
                f"git {' '.join(args[:2])} failed: {result.stderr.strip() or result.returncode}"
            )
        return result

    async def ensure_repository(self) -> None:
        """Initialise the base repository with an initial commit if missing."""

        if not (self._base_repo / ".git").exists():
            logger.info("Initializing base repository", extra={"path": str(self._base_repo)})
            self._base_repo.mkdir(parents=True, exist_ok=True)
            await self._git("init")
            for key, value in _GIT_IDENTITY.items():
                await self._git("config", key, value)
            (self._base_repo / "README.md").write_text(_README, encoding="utf-8")
            await self._git("add", "README.md")
            await self._git("commit", "-m", "Initial commit")
        self._worktrees_dir.mkdir(parents=True, exist_ok=True)

    def next_branch(self, name: str) -> str:
        """Return a branch name whose stamp is strictly later than any handed out before."""

        stamp = max(int(time.time() * 1000), self._last_stamp + 1)
        self._last_stamp = stamp
        return branch_name(name, now_ms=stamp)

    async def provision(self, session_id: str, name: str) -> tuple[str, Path]:
        path = (self._worktrees_dir / session_id).resolve()
        if path.exists():
            raise ProvisioningError(f"Worktree path already exists: {path}")
        branch = self.next_branch(name)
        self._worktrees_dir.mkdir(parents=True, exist_ok=True)
        try:
            await self._git("worktree", "add", "-b", branch, str(path))
        except ProvisioningError as exc:
            logger.error(
                "Failed to create worktree",
                extra={"session_id": session_id, "branch": branch, "error": str(exc)},
            )
            raise ProvisioningError("Failed to create worktree") from exc
        logger.debug("Created worktree", extra={"session_id": session_id, "path": str(path)})
        return branch, path

    async def deprovision(self, path: Path) -> None:
        await self._git("worktree", "remove", str(path), "--force")
        logger.info("Removed worktree", extra={"path": str(path)})


async def git_log(path: Path, limit: int = 20) -> list[dict[str, str]]:
    """Recent commits of a worktree; empty when the path is gone or has no history."""

    try:
        result = await run_git(
            "log", f"-n{limit}", "--pretty=format:%h%x1f%s%x1f%aI%x1f%an", cwd=Path(path)
        )
    except (ProvisioningError, OSError) as exc:
        logger.warning("Failed to get git log", extra={"worktree_path": str(path), "error": str(exc)})
        return []
    if not result.ok:
        logger.warning(
            "Failed to get git log",
            extra={"worktree_path": str(path), "error": result.stderr.strip()},
        )
        return []

    commits: list[dict[str, str]] = []
    for line in result.stdout.splitlines():
        parts = line.split("\x1f")
        if len(parts) == 4:
            commits.append({"hash": parts[0][:7], "message": parts[1], "time": parts[2], "author": parts[3]})
    return commits


__all__ = [
    "GitResult",
    "GitWorktreeProvisioner",
    "WorktreeProvisioner",
    "branch_name",
    "git_log",
    "run_git",
]
