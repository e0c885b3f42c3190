"""File access helpers scoped to a session worktree."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from .errors import FileAccessError

SKIPPED_NAMES = frozenset({".git", "node_modules"})


@dataclass(slots=True)
class FileNode:
    path: str
    name: str
    type: Literal["file", "folder"]
    children: list["FileNode"] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"path": self.path, "name": self.name, "type": self.type}
        if self.type == "folder":
            payload["children"] = [child.to_dict() for child in self.children]
        return payload


def resolve_inside(root: Path, relative: str) -> Path:
    """Resolve ``relative`` under ``root``, refusing paths that escape it."""

    base = root.resolve()
    target = (base / relative).resolve()
    if target != base and base not in target.parents:
        raise FileAccessError(f"Path '{relative}' is outside the session worktree")
    return target


def walk_tree(root: Path, relative: Path = Path("")) -> list[FileNode]:
    directory = root / relative
    try:
        entries = sorted(directory.iterdir(), key=lambda entry: (not entry.is_dir(), entry.name))
    except OSError as exc:
        raise FileAccessError(f"Unable to list {directory}: {exc}") from exc

    nodes: list[FileNode] = []
    for entry in entries:
        if entry.name in SKIPPED_NAMES:
            continue
        rel = relative / entry.name
        if entry.is_dir() and not entry.is_symlink():
            nodes.append(FileNode(path=rel.as_posix(), name=entry.name, type="folder", children=walk_tree(root, rel)))
        else:
            nodes.append(FileNode(path=rel.as_posix(), name=entry.name, type="file"))
    return nodes


async def list_files(worktree: Path) -> list[FileNode]:
    return await asyncio.to_thread(walk_tree, Path(worktree))


async def read_file(worktree: Path, relative: str) -> str:
    target = resolve_inside(Path(worktree), relative)
    try:
        return await asyncio.to_thread(target.read_text, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise FileAccessError(f"Unable to read {relative}: {exc}") from exc


async def write_file(worktree: Path, relative: str, content: str) -> None:
    target = resolve_inside(Path(worktree), relative)
    if target == Path(worktree).resolve():
        raise FileAccessError("Refusing to overwrite the worktree root")

    def _write() -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    try:
        await asyncio.to_thread(_write)
    except OSError as exc:
        raise FileAccessError(f"Unable to write {relative}: {exc}") from exc


__all__ = ["FileNode", "list_files", "read_file", "resolve_inside", "walk_tree", "write_file"]
