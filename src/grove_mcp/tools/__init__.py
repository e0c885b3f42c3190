"""Tool registration for Grove MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fastmcp import Context, FastMCP

from .. import files
from ..catalog import WorkspaceCatalog
from ..controller import LifecycleController
from ..errors import CatalogError
from ..session import Session
from ..storage import ChromaStore
from ..worktree import git_log

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    create_session: Any
    pause_session: Any
    resume_session: Any
    stop_session: Any
    archive_session: Any
    unarchive_session: Any
    delete_session: Any
    list_sessions: Any
    get_session: Any
    recent_events: Any
    set_debug_mode: Any
    list_session_files: Any
    read_session_file: Any
    write_session_file: Any
    session_git_log: Any
    session_history: Any
    query_events: Any
    list_workspaces: Any
    create_workspace: Any
    create_project: Any
    set_active_workspace: Any
    set_active_project: Any


def register_tools(
    server: FastMCP,
    *,
    controller: LifecycleController,
    chroma_store: ChromaStore | None,
    catalog: WorkspaceCatalog | None,
) -> ToolHandles:
    """Register Grove's MCP tools on the server."""

    def _payload(session: Session, *, include_messages: bool = True) -> dict[str, Any]:
        data = session.model_dump(mode="json")
        if not include_messages:
            data["message_count"] = len(data.pop("messages"))
        data["running"] = controller.is_running(session.id)
        data["can_resume"] = session.can_resume and not data["running"]
        return data

    async def _create_session(
        task: str,
        name: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Provision a worktree and start a runtime invocation for ``task``."""

        session = await controller.create_session(name, task)
        _emit_log(
            context,
            "info",
            "Created session",
            extra={"session_id": session.id, "branch": session.branch},
        )
        return _payload(session)

    async def _pause_session(session_id: str, context: Context | None = None) -> dict[str, Any]:
        paused = await controller.pause_session(session_id)
        _emit_log(context, "info", "Pause requested", extra={"session_id": session_id, "paused": paused})
        return {"session_id": session_id, "paused": paused}

    async def _resume_session(
        session_id: str,
        prompt: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        resumed = await controller.resume_session(session_id, prompt)
        _emit_log(context, "info", "Resumed session", extra={"session_id": session_id})
        return {"session_id": session_id, "resumed": resumed}

    async def _stop_session(session_id: str, context: Context | None = None) -> dict[str, Any]:
        await controller.stop_session(session_id)
        _emit_log(context, "info", "Stopped session", extra={"session_id": session_id})
        return {"session_id": session_id, "status": "completed"}

    async def _archive_session(session_id: str, context: Context | None = None) -> dict[str, Any]:
        return _payload(controller.archive_session(session_id), include_messages=False)

    async def _unarchive_session(session_id: str, context: Context | None = None) -> dict[str, Any]:
        return _payload(controller.unarchive_session(session_id), include_messages=False)

    async def _delete_session(session_id: str, context: Context | None = None) -> dict[str, Any]:
        await controller.delete_session(session_id)
        _emit_log(context, "warning", "Deleted session", extra={"session_id": session_id})
        return {"session_id": session_id, "deleted": True}

    async def _list_sessions(
        include_archived: bool = True,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        sessions = controller.list_sessions(include_archived=include_archived)
        _emit_log(context, "debug", "Listing sessions", extra={"count": len(sessions)})
        return [_payload(session, include_messages=False) for session in sessions]

    async def _get_session(session_id: str, context: Context | None = None) -> dict[str, Any] | None:
        session = controller.get_session(session_id)
        return _payload(session) if session is not None else None

    def _recent_events(
        session_id: str | None = None,
        limit: int = 50,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        recent = getattr(controller.events, "recent", None)
        if not callable(recent):
            return []
        return [event.to_dict() for event in recent(session_id, limit)]

    def _set_debug_mode(enabled: bool, context: Context | None = None) -> dict[str, Any]:
        controller.set_debug_mode(enabled)
        return {"debug_mode": controller.debug_mode}

    tool_create = server.tool(
        name="create_session",
        description=(
            "Create an isolated agent session: provisions a git worktree and branch, then "
            "starts a Claude invocation on the task. Returns the session record."
        ),
    )(_create_session)
    tool_pause = server.tool(
        name="pause_session",
        description="Cancel the running invocation of an active session and mark it paused.",
    )(_pause_session)
    tool_resume = server.tool(
        name="resume_session",
        description="Continue a paused session with an optional prompt (defaults to a continue instruction).",
    )(_resume_session)
    tool_stop = server.tool(
        name="stop_session",
        description="Cancel any running invocation and mark the session completed.",
    )(_stop_session)
    tool_archive = server.tool(name="archive_session", description="Hide a session from default listings.")(
        _archive_session
    )
    tool_unarchive = server.tool(name="unarchive_session", description="Restore an archived session.")(
        _unarchive_session
    )
    tool_delete = server.tool(
        name="delete_session",
        description="Cancel, remove the worktree, and forget a session.",
    )(_delete_session)
    tool_list = server.tool(name="list_sessions", description="List sessions without transcripts.")(
        _list_sessions
    )
    tool_get = server.tool(name="get_session", description="Fetch one session including its transcript.")(
        _get_session
    )
    tool_recent = server.tool(
        name="recent_events",
        description="Return recent lifecycle events, optionally for one session.",
    )(_recent_events)
    tool_debug = server.tool(
        name="set_debug_mode",
        description="Toggle verbose runtime logging for subsequent invocations.",
    )(_set_debug_mode)

    def _require_worktree(session_id: str) -> Path:
        return Path(controller.registry.require(session_id).worktree_path)

    async def _list_session_files(session_id: str, context: Context | None = None) -> dict[str, Any]:
        worktree = _require_worktree(session_id)
        nodes = await files.list_files(worktree)
        return {"session_id": session_id, "files": [node.to_dict() for node in nodes]}

    async def _read_session_file(session_id: str, path: str, context: Context | None = None) -> dict[str, Any]:
        worktree = _require_worktree(session_id)
        return {"session_id": session_id, "path": path, "content": await files.read_file(worktree, path)}

    async def _write_session_file(
        session_id: str,
        path: str,
        content: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        worktree = _require_worktree(session_id)
        await files.write_file(worktree, path, content)
        _emit_log(context, "info", "Saved session file", extra={"session_id": session_id, "path": path})
        return {"session_id": session_id, "path": path, "saved": True}

    async def _session_git_log(session_id: str, limit: int = 20, context: Context | None = None) -> dict[str, Any]:
        worktree = _require_worktree(session_id)
        return {"session_id": session_id, "commits": await git_log(worktree, limit)}

    tool_files = server.tool(name="list_session_files", description="List the files of a session worktree.")(
        _list_session_files
    )
    tool_read = server.tool(name="read_session_file", description="Read a file from a session worktree.")(
        _read_session_file
    )
    tool_write = server.tool(name="write_session_file", description="Write a file inside a session worktree.")(
        _write_session_file
    )
    tool_git_log = server.tool(name="session_git_log", description="Recent commits on the session branch.")(
        _session_git_log
    )

    def _require_chroma() -> ChromaStore:
        if chroma_store is None:
            raise RuntimeError("Chroma store is unavailable; enable the event journal before using this tool")
        return chroma_store

    def _session_history(
        session_id: str,
        detail_level: str = "brief",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Summarize journaled events for a session."""

        events = _require_chroma().fetch_session_events(session_id)
        timeline = [
            {
                "sequence": event.metadata.get("sequence"),
                "event_type": event.event_type,
                "timestamp": event.timestamp.isoformat(),
                "metadata": event.metadata,
            }
            for event in events
        ]
        summary: dict[str, Any] = {
            "session_id": session_id,
            "event_count": len(events),
            "latest_event": timeline[-1] if timeline else None,
        }
        if detail_level == "full":
            summary["timeline"] = timeline
        else:
            summary["timeline_preview"] = timeline[-5:]
        return summary

    def _query_events(
        query: str,
        session_id: str | None = None,
        limit: int = 10,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Keyword search across journaled events."""

        filters = {"session_id": session_id} if session_id else None
        matches = _require_chroma().search_events(query, filters=filters, limit=limit)
        _emit_log(context, "debug", "Query events", extra={"query": query, "results": len(matches)})
        return {
            "matches": [
                {
                    "event_id": event.id,
                    "session_id": event.session_id,
                    "event_type": event.event_type,
                    "timestamp": event.timestamp.isoformat(),
                    "excerpt": event.document[:200],
                }
                for event in matches
            ]
        }

    tool_history = server.tool(
        name="session_history",
        description="Summarize journaled lifecycle events for a session (detail_level=full for all).",
    )(_session_history)
    tool_query = server.tool(
        name="query_events",
        description="Search journaled lifecycle events by keyword.",
    )(_query_events)

    def _require_catalog() -> WorkspaceCatalog:
        if catalog is None:
            raise CatalogError("Workspace catalog is not configured")
        return catalog

    def _list_workspaces(context: Context | None = None) -> dict[str, Any]:
        store = _require_catalog()
        current = store.get_current_workspace()
        project = store.get_current_project()
        return {
            "active_workspace_id": current.id if current else None,
            "active_project_id": project.id if project else None,
            "workspaces": [workspace.model_dump(mode="json") for workspace in store.list_workspaces()],
        }

    def _create_workspace(name: str, description: str | None = None, context: Context | None = None) -> dict[str, Any]:
        return _require_catalog().create_workspace(name, description).model_dump(mode="json")

    def _create_project(
        name: str,
        path: str,
        description: str | None = None,
        workspace_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        store = _require_catalog()
        if workspace_id is None:
            current = store.get_current_workspace()
            if current is None:
                raise CatalogError("No active workspace")
            workspace_id = current.id
        return store.create_project(workspace_id, name, path, description).model_dump(mode="json")

    def _set_active_workspace(workspace_id: str, context: Context | None = None) -> dict[str, Any]:
        return _require_catalog().set_active_workspace(workspace_id).model_dump(mode="json")

    def _set_active_project(project_id: str, context: Context | None = None) -> dict[str, Any]:
        return _require_catalog().set_active_project(project_id).model_dump(mode="json")

    tool_workspaces = server.tool(name="list_workspaces", description="List workspaces and the active selection.")(
        _list_workspaces
    )
    tool_new_workspace = server.tool(name="create_workspace", description="Create and activate a workspace.")(
        _create_workspace
    )
    tool_new_project = server.tool(
        name="create_project",
        description="Register a project directory in a workspace (defaults to the active one).",
    )(_create_project)
    tool_active_workspace = server.tool(name="set_active_workspace", description="Switch the active workspace.")(
        _set_active_workspace
    )
    tool_active_project = server.tool(
        name="set_active_project",
        description="Switch the active project; new sessions are attached to it.",
    )(_set_active_project)

    return ToolHandles(
        create_session=tool_create,
        pause_session=tool_pause,
        resume_session=tool_resume,
        stop_session=tool_stop,
        archive_session=tool_archive,
        unarchive_session=tool_unarchive,
        delete_session=tool_delete,
        list_sessions=tool_list,
        get_session=tool_get,
        recent_events=tool_recent,
        set_debug_mode=tool_debug,
        list_session_files=tool_files,
        read_session_file=tool_read,
        write_session_file=tool_write,
        session_git_log=tool_git_log,
        session_history=tool_history,
        query_events=tool_query,
        list_workspaces=tool_workspaces,
        create_workspace=tool_new_workspace,
        create_project=tool_new_project,
        set_active_workspace=tool_active_workspace,
        set_active_project=tool_active_project,
    )


__all__ = ["register_tools", "ToolHandles"]


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
