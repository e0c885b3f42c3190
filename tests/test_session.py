from __future__ import annotations

import threading

import pytest

from grove_mcp.errors import NotFoundError, ProvisioningError
from grove_mcp.runtime import normalize_message
from grove_mcp.session import Session, SessionRegistry, entry_for, make_entry, truncate
from grove_mcp.session.journal import ASSISTANT_PREVIEW_LIMIT, next_message_id

from conftest import assistant_message, init_message, result_message


def make_session(session_id: str = "s-1", **overrides) -> Session:
    fields = {
        "id": session_id,
        "name": f"name-{session_id}",
        "branch": f"agent/{session_id}-1",
        "worktree_path": f"/tmp/worktrees/{session_id}",
        "task": "Do the thing",
    }
    fields.update(overrides)
    return Session(**fields)


def test_session_defaults() -> None:
    session = make_session()
    assert session.status == "active"
    assert session.archived is False
    assert session.progress == 0
    assert session.messages == []
    assert session.can_resume is False


def test_external_session_id_is_write_once() -> None:
    session = make_session()
    assert session.assign_external_session_id(None) is False
    assert session.assign_external_session_id("first") is True
    assert session.assign_external_session_id("second") is False
    assert session.external_session_id == "first"


def test_usage_only_grows() -> None:
    session = make_session()
    session.add_usage(cost=0.5, tokens=10)
    session.add_usage(cost=None, tokens=None)
    session.add_usage(cost=0.0, tokens=0)
    assert session.cost == pytest.approx(0.5)
    assert session.tokens_used == 10


def test_progress_is_clamped() -> None:
    assert make_session(progress=150).progress == 100
    assert make_session(progress=-3).progress == 0


def test_registry_returns_copies() -> None:
    registry = SessionRegistry()
    registry.register(make_session())

    copy = registry.require("s-1")
    copy.status = "error"
    copy.messages.append(make_entry("info", "local only"))

    stored = registry.require("s-1")
    assert stored.status == "active"
    assert stored.messages == []


def test_registry_refuses_reused_identity() -> None:
    registry = SessionRegistry()
    registry.register(make_session("s-1"))
    registry.remove("s-1")

    with pytest.raises(ProvisioningError):
        registry.register(make_session("s-1", branch="agent/other-1", worktree_path="/tmp/other"))
    with pytest.raises(ProvisioningError):
        registry.register(make_session("s-2", branch="agent/s-1-1", worktree_path="/tmp/other"))
    with pytest.raises(ProvisioningError):
        registry.register(make_session("s-3", worktree_path="/tmp/worktrees/s-1"))
    assert len(registry) == 0


def test_registry_update_is_atomic_under_threads() -> None:
    registry = SessionRegistry()
    registry.register(make_session())

    def append(n: int) -> None:
        for i in range(50):
            registry.update("s-1", lambda s: s.messages.append(make_entry("info", f"{n}-{i}")))

    threads = [threading.Thread(target=append, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(registry.require("s-1").messages) == 200


def test_registry_update_refreshes_updated_at() -> None:
    registry = SessionRegistry()
    created = registry.register(make_session())

    result = registry.update("s-1", lambda s: setattr(s, "archived", True) or "ok")

    assert result == "ok"
    assert registry.require("s-1").updated_at >= created.updated_at


def test_registry_missing_session() -> None:
    registry = SessionRegistry()
    assert registry.get("nope") is None
    assert "nope" not in registry
    with pytest.raises(NotFoundError):
        registry.require("nope")
    with pytest.raises(NotFoundError):
        registry.update("nope", lambda s: None)
    with pytest.raises(NotFoundError):
        registry.remove("nope")


def test_restore_remembers_identities() -> None:
    registry = SessionRegistry()
    assert registry.restore([make_session("a"), make_session("b")]) == 2
    assert registry.is_used(branch="agent/a-1")
    assert [s.id for s in registry.snapshot()] == ["a", "b"]


def test_restore_skips_live_sessions() -> None:
    registry = SessionRegistry()
    registry.register(make_session("a", status="active", progress=40))

    restored = registry.restore([make_session("a", status="paused"), make_session("b", status="paused")])

    assert restored == 1
    assert registry.require("a").status == "active"
    assert registry.require("a").progress == 40
    assert registry.require("b").status == "paused"


def test_entry_for_truncates_assistant_text() -> None:
    long_text = "x" * (ASSISTANT_PREVIEW_LIMIT + 20)
    entry = entry_for(normalize_message(assistant_message(long_text)))

    assert entry is not None
    assert entry.type == "assistant"
    assert entry.content == "x" * ASSISTANT_PREVIEW_LIMIT + "..."


def test_entry_for_user_result_and_system() -> None:
    user = normalize_message({"type": "user", "message": {"content": "tool output"}})
    assert entry_for(user).content == "tool output"

    assert entry_for(normalize_message(result_message(result=None))).content == "Task completed"
    assert entry_for(normalize_message(init_message())) is None


def test_truncate_keeps_short_text() -> None:
    assert truncate("short") == "short"


def test_message_ids_increase_within_a_millisecond() -> None:
    ids = [next_message_id() for _ in range(5)]
    assert len(set(ids)) == 5
