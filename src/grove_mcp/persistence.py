"""Snapshot persistence for the session registry.

Storage layout::

    <state file>   {"timestamp": "<iso8601>", "sessions": [<Session>, ...]}

The file is replaced atomically on every save. Loading rewrites sessions that
were ``active`` to ``paused``: their runtime invocation did not survive the
restart, but the continuation token is kept so they can be resumed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable

from pydantic import BaseModel, Field, ValidationError

from .session.models import Session, utcnow

logger = logging.getLogger(__name__)


class Snapshot(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    sessions: list[Session] = Field(default_factory=list)


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write ``content`` to a temp file beside ``path`` and rename it into place."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                pass


def reconcile(sessions: Iterable[Session]) -> list[Session]:
    """Demote sessions that were mid-invocation when the snapshot was taken."""

    restored: list[Session] = []
    for session in sessions:
        if session.status == "active":
            session = session.model_copy(update={"status": "paused"})
        restored.append(session)
    return restored


class SnapshotStore:
    """Read and write the single snapshot file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def write(self, sessions: Iterable[Session], *, timestamp: datetime | None = None) -> Snapshot:
        snapshot = Snapshot(timestamp=timestamp or utcnow(), sessions=list(sessions))
        atomic_write_text(self._path, snapshot.model_dump_json(indent=2))
        return snapshot

    def read(self) -> Snapshot | None:
        """Return the stored snapshot, or ``None`` when absent or unreadable."""

        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No existing state file found, starting fresh", extra={"path": str(self._path)})
            return None
        except OSError as exc:
            logger.error("Failed to read state file", extra={"path": str(self._path), "error": str(exc)})
            return None

        try:
            return Snapshot.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.error(
                "Failed to load state; treating snapshot as absent",
                extra={"path": str(self._path), "error": str(exc)},
            )
            return None


class PersistenceManager:
    """Save registry snapshots on a timer and after status transitions."""

    def __init__(
        self,
        store: SnapshotStore,
        source: Callable[[], list[Session]],
        *,
        interval: float = 30.0,
    ) -> None:
        self._store = store
        self._source = source
        self._interval = interval
        self._lock = asyncio.Lock()
        self._autosave_task: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[bool]] = set()

    @property
    def store(self) -> SnapshotStore:
        return self._store

    @property
    def autosave_running(self) -> bool:
        return self._autosave_task is not None and not self._autosave_task.done()

    def load(self) -> list[Session]:
        snapshot = self._store.read()
        if snapshot is None:
            return []
        sessions = reconcile(snapshot.sessions)
        for session in sessions:
            logger.info(
                "Restored session",
                extra={
                    "session_id": session.id,
                    "session_name": session.name,
                    "status": session.status,
                    "branch": session.branch,
                    "message_count": len(session.messages),
                    "can_resume": session.status == "paused" and session.can_resume,
                },
            )
        logger.info(
            "State loaded successfully",
            extra={"session_count": len(sessions), "state_timestamp": snapshot.timestamp.isoformat()},
        )
        return sessions

    async def save(self) -> bool:
        """Write a snapshot now; failures are logged and reported as ``False``."""

        async with self._lock:
            sessions = self._source()
            try:
                await asyncio.to_thread(self._store.write, sessions)
            except Exception as exc:
                logger.error("Failed to save state", extra={"error": str(exc), "path": str(self._store.path)})
                return False
            logger.debug("State saved successfully", extra={"session_count": len(sessions)})
            return True

    def save_soon(self) -> None:
        """Schedule a save without waiting for it."""

        task = asyncio.get_running_loop().create_task(self.save())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for every scheduled save to finish."""

        while self._pending:
            await asyncio.gather(*list(self._pending))

    def start_autosave(self) -> None:
        if self.autosave_running:
            return
        self._autosave_task = asyncio.get_running_loop().create_task(self._autosave_loop())
        logger.debug("Auto-save started", extra={"interval_s": self._interval})

    async def stop_autosave(self) -> None:
        task, self._autosave_task = self._autosave_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Auto-save stopped")

    async def _autosave_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.save()


__all__ = ["PersistenceManager", "Snapshot", "SnapshotStore", "atomic_write_text", "reconcile"]
