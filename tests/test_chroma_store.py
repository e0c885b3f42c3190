from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from grove_mcp.events import EventBus, RuntimeMessageEvent, SessionCreated, SessionMessage, SessionStatusChanged
from grove_mcp.runtime import normalize_message
from grove_mcp.session import TerminalMessage
from grove_mcp.storage import ChromaEventRecorder, ChromaStore, ChromaUnavailableError

from conftest import result_message


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        filtered = self.records
        if where:
            for key, value in where.items():
                filtered = [record for record in filtered if record.metadata.get(key) == value]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


def make_store(tmp_path: Path) -> ChromaStore:
    return ChromaStore(
        tmp_path,
        client_factory=lambda: StubClient(),
        clock=lambda: datetime.fromisoformat("2025-01-01T00:00:00+00:00"),
    )


def test_record_and_fetch_events(tmp_path: Path) -> None:
    store = make_store(tmp_path)

    event = store.record_event(
        session_id="session-1",
        event_type="status_changed",
        body={"status": "paused"},
        metadata={"status": "paused", "reason": None},
    )

    assert event.session_id == "session-1"
    assert event.metadata["sequence"] == 1
    assert "reason" not in event.metadata

    events = store.fetch_session_events("session-1")
    assert len(events) == 1
    assert events[0].metadata["status"] == "paused"
    assert events[0].document == '{"status": "paused"}'


def test_sequence_increments_per_session(tmp_path: Path) -> None:
    store = make_store(tmp_path)

    store.record_event(session_id="session-2", event_type="a", body="A")
    store.record_event(session_id="session-3", event_type="a", body="A")
    store.record_event(session_id="session-2", event_type="b", body="B")

    sequences = [event.metadata["sequence"] for event in store.fetch_session_events("session-2")]
    assert sequences == [1, 2]


def test_search_filters(tmp_path: Path) -> None:
    store = make_store(tmp_path)

    store.record_event(session_id="sess", event_type="errored", body="Invalid auth token", metadata={"tags": ["auth"]})
    store.record_event(session_id="sess", event_type="completed", body="Fixed logging")
    store.record_event(session_id="other", event_type="errored", body="auth again")

    results = store.search_events("auth", filters={"session_id": "sess"})
    assert len(results) == 1
    assert "auth" in results[0].document
    assert len(store.search_events("AUTH", limit=1)) == 1


def test_unavailable_client_surfaces_error(tmp_path: Path) -> None:
    def broken_factory():
        raise ChromaUnavailableError("no chroma here")

    store = ChromaStore(tmp_path, client_factory=broken_factory)
    with pytest.raises(ChromaUnavailableError):
        store.ping()


def test_recorder_journals_lifecycle_events(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    bus = EventBus()
    bus.subscribe(ChromaEventRecorder(store))

    bus.publish(SessionCreated("s-1", name="demo", branch="agent/demo-1", worktree_path="/tmp/s-1"))
    bus.publish(RuntimeMessageEvent("s-1", message=normalize_message(result_message())))
    bus.publish(SessionMessage("s-1", message=TerminalMessage(id=1, type="assistant", content="done")))
    bus.publish(SessionStatusChanged("s-1", old_status="active", status="completed"))

    events = store.fetch_session_events("s-1")
    assert [event.event_type for event in events] == ["session_created", "status_changed"]
    assert events[0].metadata["branch"] == "agent/demo-1"
    assert events[1].metadata["old_status"] == "active"
    assert events[1].metadata["status"] == "completed"


def test_recorder_can_include_runtime_messages(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    recorder = ChromaEventRecorder(store, include_runtime=True)

    recorder(RuntimeMessageEvent("s-1", message=normalize_message(result_message())))

    assert [event.event_type for event in store.fetch_session_events("s-1")] == ["runtime_message"]


def test_recorder_skips_transcript_entries_by_default(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    entry = TerminalMessage(id=1, type="assistant", content="Working on it")

    ChromaEventRecorder(store)(SessionMessage("s-1", message=entry))
    assert store.fetch_session_events("s-1") == []

    ChromaEventRecorder(store, include_messages=True)(SessionMessage("s-1", message=entry))
    events = store.fetch_session_events("s-1")
    assert [event.event_type for event in events] == ["message_appended"]
    assert "Working on it" in events[0].document
