"""Session lifecycle controller."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from .catalog import SessionCatalog
from .errors import (
    GroveError,
    NotFoundError,
    ProvisioningError,
    ResumeStateError,
    RuntimeInvocationError,
    SessionBusyError,
)
from .events import (
    EventBus,
    EventSink,
    InterventionNeeded,
    RuntimeMessageEvent,
    SessionCompleted,
    SessionCreated,
    SessionDeleted,
    SessionErrored,
    SessionInit,
    SessionMessage,
    SessionStatusChanged,
)
from .persistence import PersistenceManager, SnapshotStore
from .runtime import InvocationRequest, RuntimeInvoker, RuntimeMessage
from .runtime.utils import preview
from .session import Session, SessionRegistry, SessionStatus, entry_for, make_entry
from .session.models import utcnow
from .worktree import WorktreeProvisioner

logger = logging.getLogger(__name__)

MAX_TURNS_REASON = "Max turns reached"


def default_session_name(session_id: str, *, now: datetime | None = None) -> str:
    day = (now or utcnow()).date().isoformat()
    return f"session-{day}-{session_id[:8]}"


@dataclass(slots=True)
class InvocationHandle:
    """Cancellation handle for the one in-flight invocation of a session."""

    session_id: str
    task: asyncio.Task[None]
    resumed: bool = False
    started_at: datetime = field(default_factory=utcnow)

    @property
    def done(self) -> bool:
        return self.task.done()

    def cancel(self) -> bool:
        return self.task.cancel()


class LifecycleController:
    """Create, drive, and retire sessions.

    Every session runs independently; the controller only guarantees that a
    single session never has more than one runtime invocation in flight. All
    session state lives in the :class:`SessionRegistry`, and every change to
    it goes through ``registry.update`` so concurrent message handling and
    control commands apply as whole updates.
    """

    def __init__(
        self,
        *,
        provisioner: WorktreeProvisioner,
        invoker: RuntimeInvoker,
        events: EventSink | None = None,
        store: SnapshotStore | None = None,
        catalog: SessionCatalog | None = None,
        registry: SessionRegistry | None = None,
        autosave_interval: float = 30.0,
        max_turns: int = 10,
        model: str | None = None,
        debug_mode: bool = False,
    ) -> None:
        self._provisioner = provisioner
        self._invoker = invoker
        self._events: EventSink = events if events is not None else EventBus()
        self._catalog = catalog
        self._registry = registry or SessionRegistry()
        self._persistence = (
            PersistenceManager(store, self._registry.snapshot, interval=autosave_interval)
            if store is not None
            else None
        )
        self._handles: dict[str, InvocationHandle] = {}
        self._max_turns = max_turns
        self._model = model
        self._debug_mode = debug_mode
        self._started = False
        self._restored = False
        self._start_lock = asyncio.Lock()

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def events(self) -> EventSink:
        return self._events

    @property
    def persistence(self) -> PersistenceManager | None:
        return self._persistence

    @property
    def debug_mode(self) -> bool:
        return self._debug_mode

    @property
    def started(self) -> bool:
        return self._started

    def set_debug_mode(self, enabled: bool) -> None:
        old = self._debug_mode
        self._debug_mode = enabled
        logger.info("Debug mode changed", extra={"old_debug_mode": old, "new_debug_mode": enabled})

    # -- startup / shutdown -------------------------------------------------

    def restore(self) -> int:
        """Load the snapshot into the registry once; later calls are no-ops."""

        if self._restored:
            return 0
        self._restored = True
        if self._persistence is None:
            return 0
        return self._registry.restore(self._persistence.load())

    async def start(self) -> None:
        """Prepare the base repository, restore the snapshot, start autosave."""

        async with self._start_lock:
            if self._started:
                return
            ensure_repository = getattr(self._provisioner, "ensure_repository", None)
            if callable(ensure_repository):
                await ensure_repository()
            restored = self.restore()
            if self._persistence is not None:
                self._persistence.start_autosave()
            self._started = True
        logger.info(
            "Lifecycle controller ready",
            extra={"existing_sessions": len(self._registry), "restored": restored, "debug_mode": self._debug_mode},
        )

    async def shutdown(self) -> None:
        logger.info("Shutting down lifecycle controller")
        for session_id in list(self._handles):
            logger.info("Stopping invocation for session", extra={"session_id": session_id})
            await self._cancel_invocation(session_id)
        if self._persistence is not None:
            await self._persistence.stop_autosave()
            await self._persistence.flush()
            await self._persistence.save()
        self._started = False
        logger.info("Lifecycle controller shutdown complete")

    # -- queries ------------------------------------------------------------

    def list_sessions(self, *, include_archived: bool = True) -> list[Session]:
        sessions = self._registry.list()
        if include_archived:
            return sessions
        return [session for session in sessions if not session.archived]

    def get_session(self, session_id: str) -> Session | None:
        return self._registry.get(session_id)

    def is_running(self, session_id: str) -> bool:
        handle = self._handles.get(session_id)
        return handle is not None and not handle.done

    async def wait_for_invocation(self, session_id: str) -> None:
        """Block until the session's in-flight invocation, if any, has finished."""

        handle = self._handles.get(session_id)
        if handle is not None and not handle.done:
            await asyncio.wait({handle.task})

    # -- operations ---------------------------------------------------------

    async def create_session(self, name: str | None, task: str) -> Session:
        session_id = str(uuid4())
        session_name = name or default_session_name(session_id)

        try:
            branch, worktree_path = await self._provisioner.provision(session_id, session_name)
        except ProvisioningError:
            raise
        except Exception as exc:
            raise ProvisioningError(f"Failed to create worktree: {exc}") from exc

        workspace = self._catalog.get_current_workspace() if self._catalog is not None else None
        project = self._catalog.get_current_project() if self._catalog is not None else None

        session = self._registry.register(
            Session(
                id=session_id,
                name=session_name,
                branch=branch,
                worktree_path=str(worktree_path),
                task=task,
                workspace_id=workspace.id if workspace else None,
                project_id=project.id if project else None,
            )
        )

        if self._catalog is not None and workspace is not None and project is not None:
            try:
                self._catalog.add_session_to_project(workspace.id, project.id, session_id)
            except Exception as exc:
                logger.warning(
                    "Failed to attach session to project",
                    extra={"session_id": session_id, "project_id": project.id, "error": str(exc)},
                )

        logger.info(
            "Session created",
            extra={
                "session_id": session_id[:8],
                "session_name": session_name,
                "branch": branch,
                "task_preview": preview(task),
                "workspace": workspace.name if workspace else None,
                "project": project.name if project else None,
            },
        )
        self._events.publish(
            SessionCreated(session_id, name=session_name, branch=branch, worktree_path=str(worktree_path))
        )
        self._schedule_save()

        self._launch(session_id, self._request(task, worktree_path))
        return session

    async def pause_session(self, session_id: str) -> bool:
        session = self._registry.require(session_id)
        if session.status != "active":
            logger.debug("Pause ignored", extra={"session_id": session_id, "status": session.status})
            return False
        await self._cancel_invocation(session_id)
        if self._registry.require(session_id).status != "active":
            return False
        self._transition(session_id, "paused")
        return True

    async def resume_session(self, session_id: str, prompt: str | None = None) -> bool:
        session = self._registry.require(session_id)
        if self.is_running(session_id):
            raise SessionBusyError(f"Session '{session_id}' already has an invocation in flight")
        if not session.external_session_id:
            raise ResumeStateError("No runtime session ID to resume")
        worktree_path = Path(session.worktree_path)
        if not worktree_path.is_dir():
            logger.error(
                "Worktree path does not exist",
                extra={"session_id": session_id[:8], "worktree_path": session.worktree_path},
            )
            raise ProvisioningError("Session worktree no longer exists. Cannot resume.")

        logger.info(
            "Resuming runtime session",
            extra={"session_id": session_id[:8], "external_session_id": session.external_session_id},
        )

        def _clear_intervention(current: Session) -> None:
            current.needs_intervention = False

        self._registry.update(session_id, _clear_intervention)
        self._transition(session_id, "active")
        request = InvocationRequest.for_resume(
            session.external_session_id,
            worktree_path,
            prompt,
            max_turns=self._max_turns,
            model=self._model,
            env=self._runtime_env(),
        )
        self._launch(session_id, request, resumed=True)
        return True

    async def resume_restored(self, session_id: str, prompt: str | None = None) -> bool:
        """Resume a session restored from the snapshot, reporting failure as ``False``."""

        try:
            return await self.resume_session(session_id, prompt)
        except GroveError as exc:
            logger.error(
                "Failed to resume restored session",
                extra={"session_id": session_id, "error": str(exc), "kind": exc.kind},
            )
            return False

    async def stop_session(self, session_id: str) -> None:
        self._registry.require(session_id)
        await self._cancel_invocation(session_id)
        self._transition(session_id, "completed")

    def archive_session(self, session_id: str) -> Session:
        return self._set_archived(session_id, True)

    def unarchive_session(self, session_id: str) -> Session:
        return self._set_archived(session_id, False)

    async def delete_session(self, session_id: str) -> None:
        session = self._registry.require(session_id)
        await self._cancel_invocation(session_id)

        try:
            await self._provisioner.deprovision(Path(session.worktree_path))
        except Exception as exc:
            logger.error(
                "Failed to remove worktree",
                extra={"session_id": session_id, "worktree_path": session.worktree_path, "error": str(exc)},
            )

        self._registry.remove(session_id)
        logger.info("Session deleted", extra={"session_id": session_id, "session_name": session.name})
        self._events.publish(SessionDeleted(session_id))
        self._schedule_save()

    # -- internals ----------------------------------------------------------

    def _runtime_env(self) -> dict[str, str]:
        return {"ANTHROPIC_LOG": "debug"} if self._debug_mode else {}

    def _request(self, prompt: str, cwd: Path) -> InvocationRequest:
        return InvocationRequest(
            prompt=prompt,
            cwd=Path(cwd),
            max_turns=self._max_turns,
            model=self._model,
            env=self._runtime_env(),
        )

    def _schedule_save(self) -> None:
        if self._persistence is not None:
            self._persistence.save_soon()

    def _set_archived(self, session_id: str, archived: bool) -> Session:
        def _apply(session: Session) -> Session:
            session.archived = archived
            return session.model_copy(deep=True)

        session = self._registry.update(session_id, _apply)
        logger.info(
            "Session archived" if archived else "Session unarchived",
            extra={"session_id": session_id, "session_name": session.name},
        )
        self._schedule_save()
        return session

    def _transition(self, session_id: str, status: SessionStatus) -> None:
        def _apply(session: Session) -> tuple[SessionStatus, str]:
            old = session.status
            session.status = status
            return old, session.name

        old_status, name = self._registry.update(session_id, _apply)
        logger.info(
            "Session status updated",
            extra={
                "session_id": session_id,
                "old_status": old_status,
                "new_status": status,
                "session_name": name,
            },
        )
        if old_status != status:
            self._events.publish(SessionStatusChanged(session_id, old_status=old_status, status=status))
        self._schedule_save()

    def _launch(self, session_id: str, request: InvocationRequest, *, resumed: bool = False) -> None:
        task = asyncio.get_running_loop().create_task(
            self._drive(session_id, request), name=f"grove-session-{session_id[:8]}"
        )
        self._handles[session_id] = InvocationHandle(session_id=session_id, task=task, resumed=resumed)

    async def _cancel_invocation(self, session_id: str) -> bool:
        handle = self._handles.get(session_id)
        if handle is None or handle.done:
            return False
        handle.cancel()
        await asyncio.wait({handle.task})
        return True

    async def _drive(self, session_id: str, request: InvocationRequest) -> None:
        action = "resume" if request.resume else "start"
        logger.info(
            "Starting runtime invocation",
            extra={"session_id": session_id[:8], "action": action, "prompt": preview(request.prompt, 50)},
        )
        try:
            finished = False
            async with aclosing(self._invoker.invoke(request)) as stream:
                async for message in stream:
                    if self._handle_message(session_id, message):
                        finished = True
                        break
            if not finished:
                raise RuntimeInvocationError("Runtime ended without producing a result")
        except asyncio.CancelledError:
            logger.info("Runtime invocation cancelled", extra={"session_id": session_id[:8]})
            raise
        except GroveError as exc:
            self._fail(session_id, action, exc)
        except Exception as exc:
            logger.exception("Unexpected runtime failure", extra={"session_id": session_id[:8]})
            self._fail(session_id, action, RuntimeInvocationError(str(exc)))
        finally:
            handle = self._handles.get(session_id)
            if handle is not None and handle.task is asyncio.current_task():
                del self._handles[session_id]

    def _fail(self, session_id: str, action: str, exc: GroveError) -> None:
        error = f"Failed to {action} Claude: {exc}"
        logger.error(
            "Runtime invocation failed",
            extra={"session_id": session_id[:8], "error": str(exc), "kind": exc.kind},
        )
        entry = make_entry("error", error)

        def _apply(session: Session) -> None:
            session.messages.append(entry)

        try:
            self._registry.update(session_id, _apply)
        except NotFoundError:
            return
        self._events.publish(SessionMessage(session_id, message=entry))
        self._events.publish(SessionErrored(session_id, error=error, kind=exc.kind))
        self._transition(session_id, "error")

    def _handle_message(self, session_id: str, message: RuntimeMessage) -> bool:
        """Fold one runtime message into the session; ``True`` ends the invocation."""

        entry = entry_for(message)

        def _apply(session: Session) -> tuple[bool, float]:
            assigned = session.assign_external_session_id(message.session_id)
            if entry is not None:
                session.messages.append(entry)
            if message.is_result:
                session.add_usage(cost=message.cost_usd, tokens=message.total_tokens)
                if message.subtype == "error_max_turns":
                    session.needs_intervention = True
                elif message.subtype == "success" and not message.is_error:
                    session.progress = 100
            return assigned, session.cost

        try:
            assigned, cost = self._registry.update(session_id, _apply)
        except NotFoundError:
            return True

        logger.debug(
            "Runtime message received",
            extra={"session_id": session_id, "kind": message.kind, "subtype": message.subtype, "cost": message.cost_usd},
        )
        if assigned:
            logger.info(
                "Runtime session ID assigned",
                extra={"session_id": session_id, "external_session_id": message.session_id},
            )
        if entry is not None:
            self._events.publish(SessionMessage(session_id, message=entry))
        self._events.publish(RuntimeMessageEvent(session_id, message=message))

        if message.kind == "system" and message.subtype == "init":
            payload = message.payload or {}
            self._events.publish(
                SessionInit(session_id, tools=list(payload.get("tools", [])), mcp_servers=list(payload.get("mcp_servers", [])))
            )
            return False
        if not message.is_result:
            return False

        if message.subtype == "error_max_turns":
            logger.warning(
                "Session needs intervention - max turns reached",
                extra={"session_id": session_id, "turns": message.num_turns, "cost": cost},
            )
            self._events.publish(InterventionNeeded(session_id, reason=MAX_TURNS_REASON))
        elif message.subtype == "success" and not message.is_error:
            logger.info("Session completed successfully", extra={"session_id": session_id, "cost": cost})
            self._events.publish(SessionCompleted(session_id, result=message.result))
            self._transition(session_id, "completed")
        else:
            error = message.result or f"Runtime reported {message.subtype or 'an error'}"
            self._events.publish(SessionErrored(session_id, error=error, kind="runtime_result_error"))
            self._transition(session_id, "error")
        return True


__all__ = ["InvocationHandle", "LifecycleController", "MAX_TURNS_REASON", "default_session_name"]
