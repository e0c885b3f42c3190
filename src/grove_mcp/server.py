"""FastMCP server bootstrap for Grove."""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .catalog import WorkspaceCatalog
from .config import GroveSettings, get_settings
from .controller import LifecycleController
from .errors import CatalogError, RuntimeNotFoundError
from .events import EventBus
from .persistence import SnapshotStore
from .runtime import RuntimeInvoker, build_invoker
from .storage import ChromaEventRecorder, ChromaStore, ChromaUnavailableError
from .tools import register_tools
from .worktree import GitWorktreeProvisioner, WorktreeProvisioner


def configure_logging(level: str) -> None:
    """Configure root logging for the Grove server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[GroveSettings] = None,
    invoker: RuntimeInvoker | None = None,
    provisioner: WorktreeProvisioner | None = None,
    chroma_store: ChromaStore | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server, lifecycle controller, and status resource."""

    settings = settings or get_settings()

    runtime_metadata: dict[str, Any] = {
        "strategy": settings.invocation_strategy,
        "available": False,
        "executable": None,
        "model": settings.claude_model,
        "max_turns": settings.max_turns,
        "error": None,
    }
    if invoker is None:
        invoker = build_invoker(
            settings.invocation_strategy,
            executable=settings.claude_path,
            batch_timeout=settings.batch_timeout,
        )
        try:
            runtime_metadata["executable"] = str(invoker.executable)
            runtime_metadata["available"] = True
        except RuntimeNotFoundError as exc:
            runtime_metadata["error"] = str(exc)
    else:
        runtime_metadata["available"] = True
        runtime_metadata["strategy"] = type(invoker).__name__

    events = EventBus()

    chroma_metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": "grove_events",
        "error": None,
    }
    try:
        chroma_store = chroma_store or ChromaStore(settings.chroma_persist_path)
        chroma_store.ping()
        chroma_metadata["available"] = True
        chroma_metadata["collection"] = chroma_store.collection_name
        events.subscribe(ChromaEventRecorder(chroma_store))
    except ChromaUnavailableError as exc:
        chroma_metadata["error"] = str(exc)
        chroma_store = None

    catalog: WorkspaceCatalog | None = WorkspaceCatalog(settings.workspaces_path)
    catalog_error: str | None = None
    try:
        catalog.initialize(default_project_path=settings.base_repo_path)
    except CatalogError as exc:
        catalog_error = str(exc)
        catalog = None

    provisioner = provisioner or GitWorktreeProvisioner(
        settings.base_repo_path, settings.resolved_worktrees_path
    )
    controller = LifecycleController(
        provisioner=provisioner,
        invoker=invoker,
        events=events,
        store=SnapshotStore(settings.resolved_state_file),
        catalog=catalog,
        autosave_interval=settings.autosave_interval,
        max_turns=settings.max_turns,
        model=settings.claude_model,
        debug_mode=settings.debug_mode,
    )
    # Sessions from the previous run are visible before the first request.
    controller.restore()

    @asynccontextmanager
    async def lifespan(_server: FastMCP):
        """Prepare the repository and autosave on startup, save state on shutdown."""

        await controller.start()
        try:
            yield {"controller": controller}
        finally:
            await controller.shutdown()

    server = FastMCP(
        name="Grove MCP",
        version=__version__,
        instructions=(
            "Grove runs Claude agent sessions, each on its own git branch and worktree. "
            "Use the provided tools to create, pause, resume, stop, and inspect sessions."
        ),
        lifespan=lifespan,
    )

    handles = register_tools(
        server,
        controller=controller,
        chroma_store=chroma_store,
        catalog=catalog,
    )

    @server.resource(
        "resource://grove/status",
        name="grove_status",
        title="Grove MCP Status",
        description="Provides the current runtime status for the Grove MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing sessions, runtime, and storage."""

        sessions = controller.list_sessions()
        status_counts: dict[str, int] = {}
        for session in sessions:
            status_counts[session.status] = status_counts.get(session.status, 0) + 1

        persistence = controller.persistence
        workspace = catalog.get_current_workspace() if catalog is not None else None
        project = catalog.get_current_project() if catalog is not None else None

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "debug_mode": controller.debug_mode,
            "runtime": runtime_metadata,
            "sessions": {
                "count": len(sessions),
                "status_counts": status_counts,
                "archived": sum(1 for session in sessions if session.archived),
                "running": [session.id for session in sessions if controller.is_running(session.id)],
                "needs_intervention": [session.id for session in sessions if session.needs_intervention],
                "total_cost": round(sum(session.cost for session in sessions), 6),
            },
            "storage": {
                "state_file": str(settings.resolved_state_file),
                "autosave_running": persistence.autosave_running if persistence else False,
                "chroma": chroma_metadata,
            },
            "catalog": {
                "available": catalog is not None,
                "error": catalog_error,
                "active_workspace": workspace.name if workspace else None,
                "active_project": project.name if project else None,
            },
            "recent_events": [event.to_dict() for event in events.recent(limit=10)],
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload, default=str)

    setattr(server, "controller", controller)
    setattr(server, "events", events)
    setattr(server, "catalog", catalog)
    setattr(server, "runtime_metadata", runtime_metadata)
    setattr(server, "chroma_store", chroma_store)
    setattr(server, "chroma_metadata", chroma_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Grove MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    server = create_server(settings)
    logger.info(
        "Launching Grove MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "runtime_available": getattr(server, "runtime_metadata", {}).get("available"),
            "chroma_available": getattr(server, "chroma_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
