from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

import pytest

from grove_mcp import worktree as worktree_module
from grove_mcp.errors import ProvisioningError
from grove_mcp.worktree import GitWorktreeProvisioner, branch_name, git_log, run_git

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def test_branch_name_slugifies() -> None:
    assert branch_name("Fix Login Bug!", now_ms=1700000000000) == "agent/fix-login-bug-1700000000000"
    assert branch_name("   ", now_ms=5) == "agent/session-5"


def test_next_branch_is_unique_within_one_millisecond(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(worktree_module.time, "time", lambda: 1700000000.0)
    provisioner = GitWorktreeProvisioner(tmp_path / "repo")

    names = [provisioner.next_branch("Same Name") for _ in range(3)]

    assert names == [
        "agent/same-name-1700000000000",
        "agent/same-name-1700000000001",
        "agent/same-name-1700000000002",
    ]


@requires_git
def test_same_name_provisions_distinct_branches(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(worktree_module.time, "time", lambda: 1700000000.0)
    provisioner = GitWorktreeProvisioner(tmp_path / "repo")

    async def scenario():
        await provisioner.ensure_repository()
        first = await provisioner.provision("first", "twin")
        second = await provisioner.provision("second", "twin")
        return first, second

    (first_branch, first_path), (second_branch, second_path) = asyncio.run(scenario())

    assert first_branch != second_branch
    assert first_path.exists()
    assert second_path.exists()


@requires_git
def test_provision_and_deprovision(tmp_path: Path) -> None:
    provisioner = GitWorktreeProvisioner(tmp_path / "repo")

    async def scenario():
        await provisioner.ensure_repository()
        branch, path = await provisioner.provision("abc123", "Add feature")
        branches = await run_git("branch", "--list", branch, cwd=provisioner.base_repo)
        commits = await git_log(path)
        await provisioner.deprovision(path)
        return branch, path, branches, commits

    branch, path, branches, commits = asyncio.run(scenario())

    assert branch.startswith("agent/add-feature-")
    assert path == (tmp_path / "repo" / ".worktrees" / "abc123").resolve()
    assert branch in branches.stdout
    assert commits[0]["message"] == "Initial commit"
    assert commits[0]["author"] == "Claude Agent"
    assert not path.exists()


@requires_git
def test_provision_refuses_existing_path(tmp_path: Path) -> None:
    provisioner = GitWorktreeProvisioner(tmp_path / "repo", tmp_path / "trees")
    (tmp_path / "trees" / "taken").mkdir(parents=True)

    async def scenario():
        await provisioner.ensure_repository()
        await provisioner.provision("taken", "whatever")

    with pytest.raises(ProvisioningError):
        asyncio.run(scenario())


@requires_git
def test_deprovision_unknown_path_fails(tmp_path: Path) -> None:
    provisioner = GitWorktreeProvisioner(tmp_path / "repo")

    async def scenario():
        await provisioner.ensure_repository()
        await provisioner.deprovision(tmp_path / "nowhere")

    with pytest.raises(ProvisioningError):
        asyncio.run(scenario())


def test_git_log_of_missing_directory_is_empty(tmp_path: Path) -> None:
    assert asyncio.run(git_log(tmp_path / "missing")) == []
