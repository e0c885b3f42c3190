"""In-memory session registry."""

from __future__ import annotations

import threading
from typing import Callable, Iterable, TypeVar

from ..errors import NotFoundError, ProvisioningError
from .models import Session

T = TypeVar("T")


class SessionRegistry:
    """Own the live Session objects and serialize every mutation.

    Callers never receive the stored objects; reads return deep copies and
    writes go through :meth:`update`, which applies a mutator under the
    registry lock so concurrent appends and status transitions cannot lose
    each other's changes.

    Identifiers, branches and worktree paths are remembered after removal and
    can never be registered again during the lifetime of the process.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()
        self._used_ids: set[str] = set()
        self._used_branches: set[str] = set()
        self._used_paths: set[str] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def is_used(self, *, session_id: str | None = None, branch: str | None = None, path: str | None = None) -> bool:
        with self._lock:
            return (
                (session_id is not None and session_id in self._used_ids)
                or (branch is not None and branch in self._used_branches)
                or (path is not None and path in self._used_paths)
            )

    def register(self, session: Session) -> Session:
        with self._lock:
            if self.is_used(session_id=session.id, branch=session.branch, path=session.worktree_path):
                raise ProvisioningError(
                    f"Session identity already used: id={session.id} branch={session.branch} "
                    f"path={session.worktree_path}"
                )
            self._remember(session)
            self._sessions[session.id] = session.model_copy(deep=True)
            return session.model_copy(deep=True)

    def restore(self, sessions: Iterable[Session]) -> int:
        """Place previously persisted sessions into the registry verbatim.

        Sessions whose id is already live are skipped; the live copy wins.
        """

        count = 0
        with self._lock:
            for session in sessions:
                if session.id in self._sessions:
                    continue
                self._remember(session)
                self._sessions[session.id] = session.model_copy(deep=True)
                count += 1
        return count

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session is not None else None

    def require(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is None:
            raise NotFoundError(f"Session '{session_id}' not found")
        return session

    def update(self, session_id: str, mutator: Callable[[Session], T]) -> T:
        """Apply ``mutator`` to the stored session as one logical update."""

        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError(f"Session '{session_id}' not found")
            result = mutator(session)
            session.touch()
            return result

    def remove(self, session_id: str) -> Session:
        with self._lock:
            try:
                return self._sessions.pop(session_id)
            except KeyError as exc:
                raise NotFoundError(f"Session '{session_id}' not found") from exc

    def list(self) -> list[Session]:
        with self._lock:
            return [session.model_copy(deep=True) for session in self._sessions.values()]

    def snapshot(self) -> list[Session]:
        """Read-only copy of every session, used by persistence."""

        return self.list()

    def _remember(self, session: Session) -> None:
        self._used_ids.add(session.id)
        self._used_branches.add(session.branch)
        self._used_paths.add(session.worktree_path)


__all__ = ["SessionRegistry"]
