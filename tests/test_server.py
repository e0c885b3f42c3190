from __future__ import annotations

import asyncio
import json
from pathlib import Path
from types import SimpleNamespace

import pytest

from grove_mcp import server as server_module
from grove_mcp.config import GroveSettings
from grove_mcp.persistence import SnapshotStore
from grove_mcp.runtime import FakeRuntimeInvoker
from grove_mcp.session import Session
from grove_mcp.storage import ChromaUnavailableError

from conftest import StubProvisioner, result_message


class StubFastMCP:
    def __init__(self, *args, **kwargs) -> None:
        self.kwargs = kwargs
        self.tools: dict[str, object] = {}
        self.resources: dict[str, object] = {}

    def tool(self, *args, **kwargs):
        def decorator(fn):
            self.tools[kwargs.get("name", fn.__name__)] = fn
            return SimpleNamespace(fn=fn, name=kwargs.get("name"))

        return decorator

    def resource(self, uri, **kwargs):
        def decorator(fn):
            self.resources[uri] = fn
            return fn

        return decorator

    def run(self) -> None:  # pragma: no cover - not used in tests
        return None


class UnavailableChromaStore:
    def __init__(self, *_, **__) -> None:
        pass

    def ping(self) -> bool:
        raise ChromaUnavailableError("chromadb package is not installed")


class RecordingChromaStore:
    collection_name = "grove_events"

    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    def ping(self) -> bool:
        return True

    def record_event(self, *, session_id, event_type, body, metadata):
        self.events.append((session_id, event_type))


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> GroveSettings:
    monkeypatch.setenv("GROVE_BASE_REPO_PATH", str(tmp_path / "repo"))
    monkeypatch.setenv("GROVE_WORKSPACES_PATH", str(tmp_path / "catalog"))
    monkeypatch.setenv("CHROMA_PERSIST_PATH", str(tmp_path / "chroma"))
    monkeypatch.setattr(server_module, "FastMCP", StubFastMCP)
    return GroveSettings()


def test_create_server_without_chroma(settings: GroveSettings, tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(server_module, "ChromaStore", UnavailableChromaStore)

    server = server_module.create_server(
        settings,
        invoker=FakeRuntimeInvoker(),
        provisioner=StubProvisioner(tmp_path / "worktrees"),
    )

    assert server.kwargs["name"] == "Grove MCP"
    assert "create_session" in server.tools
    assert server.chroma_store is None
    assert server.chroma_metadata["available"] is False
    assert "not installed" in server.chroma_metadata["error"]
    assert server.catalog.get_current_workspace().name == "Development Workspace"

    payload = json.loads(server.resources["resource://grove/status"](SimpleNamespace(request_id="req-1")))
    assert payload["sessions"]["count"] == 0
    assert payload["storage"]["chroma"]["available"] is False
    assert payload["storage"]["state_file"] == str(tmp_path / "repo" / "agent-state.json")
    assert payload["catalog"]["active_workspace"] == "Development Workspace"
    assert payload["request_id"] == "req-1"


def test_status_reflects_sessions_and_journal(settings: GroveSettings, tmp_path: Path) -> None:
    chroma = RecordingChromaStore()
    server = server_module.create_server(
        settings,
        invoker=FakeRuntimeInvoker([[result_message(cost=0.5)]]),
        provisioner=StubProvisioner(tmp_path / "worktrees"),
        chroma_store=chroma,
    )
    controller = server.controller

    async def scenario():
        created = await server.tool_handles.create_session.fn(task="Status check")
        await controller.wait_for_invocation(created["id"])
        await controller.shutdown()
        return created

    created = asyncio.run(scenario())
    payload = json.loads(server.resources["resource://grove/status"](SimpleNamespace()))

    assert payload["sessions"]["status_counts"] == {"completed": 1}
    assert payload["sessions"]["total_cost"] == pytest.approx(0.5)
    assert payload["runtime"]["available"] is True
    assert payload["storage"]["chroma"]["available"] is True
    assert payload["recent_events"][-1]["event_type"] == "status_changed"
    assert (created["id"], "session_created") in chroma.events
    assert (created["id"], "completed") in chroma.events
    assert not any(event_type == "runtime_message" for _, event_type in chroma.events)


def test_missing_claude_is_reported(settings: GroveSettings, tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(server_module, "ChromaStore", UnavailableChromaStore)
    settings.claude_path = str(tmp_path / "no-claude")

    server = server_module.create_server(settings, provisioner=StubProvisioner(tmp_path / "worktrees"))

    assert server.runtime_metadata["available"] is False
    assert server.runtime_metadata["strategy"] == "stream"
    assert "not found" in server.runtime_metadata["error"]


def test_status_lists_restored_sessions_before_any_tool_call(
    settings: GroveSettings, tmp_path: Path, monkeypatch
) -> None:
    monkeypatch.setattr(server_module, "ChromaStore", UnavailableChromaStore)
    SnapshotStore(settings.resolved_state_file).write(
        [
            Session(
                id="s-1",
                name="carried-over",
                branch="agent/carried-over-1",
                worktree_path=str(tmp_path / "worktrees" / "s-1"),
                task="Survive a restart",
                status="active",
                cost=0.3,
            )
        ]
    )

    server = server_module.create_server(
        settings,
        invoker=FakeRuntimeInvoker(),
        provisioner=StubProvisioner(tmp_path / "worktrees"),
    )
    payload = json.loads(server.resources["resource://grove/status"](SimpleNamespace()))

    assert payload["sessions"]["count"] == 1
    assert payload["sessions"]["status_counts"] == {"paused": 1}
    assert payload["sessions"]["total_cost"] == pytest.approx(0.3)
    assert payload["storage"]["autosave_running"] is False


def test_lifespan_starts_autosave_and_saves_on_exit(settings: GroveSettings, tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(server_module, "ChromaStore", UnavailableChromaStore)
    server = server_module.create_server(
        settings,
        invoker=FakeRuntimeInvoker([[result_message()]]),
        provisioner=StubProvisioner(tmp_path / "worktrees"),
    )
    controller = server.controller

    async def scenario():
        async with server.kwargs["lifespan"](server) as state:
            running = server.controller.persistence.autosave_running
            created = await server.tool_handles.create_session.fn(task="Inside the lifespan")
            await controller.wait_for_invocation(created["id"])
        return state, running, created

    state, running, created = asyncio.run(scenario())
    snapshot = SnapshotStore(settings.resolved_state_file).read()

    assert state == {"controller": controller}
    assert running is True
    assert controller.started is False
    assert controller.persistence.autosave_running is False
    assert [session.id for session in snapshot.sessions] == [created["id"]]
    assert snapshot.sessions[0].status == "completed"
