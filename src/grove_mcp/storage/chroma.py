"""Chroma-backed journal of session lifecycle events."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from ..events import SessionEvent

logger = logging.getLogger(__name__)

_SCALARS = (str, int, float, bool)


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by Grove."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by Grove."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class ChromaEvent:
    """Represents a stored event in Chroma."""

    id: str
    session_id: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


def _flatten_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Chroma only stores scalar metadata; drop ``None`` and stringify the rest."""

    flat: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        flat[key] = value if isinstance(value, _SCALARS) else json.dumps(value, default=str)
    return flat


class ChromaStore:
    """Persist session events in a Chroma collection for later search."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "grove_events",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install grove-mcp with the journal extra"
            ) from exc

        try:
            return chromadb.PersistentClient(path=str(self._path))
        except Exception as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(f"Unable to open Chroma at {self._path}: {exc}") from exc

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            self._collection = self._client_factory().get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[ChromaEvent]:
        events: list[ChromaEvent] = []
        for event_id, document, metadata in zip(
            result.get("ids", []), result.get("documents", []), result.get("metadatas", [])
        ):
            timestamp_raw = metadata.get("timestamp")
            events.append(
                ChromaEvent(
                    id=event_id,
                    session_id=metadata.get("session_id", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=(
                        datetime.fromisoformat(timestamp_raw)
                        if isinstance(timestamp_raw, str)
                        else self._clock()
                    ),
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        session_id: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> ChromaEvent:
        with self._lock:
            collection = self._ensure_collection()
            self._counters[session_id] += 1
            sequence = self._counters[session_id]
            event_id = f"{session_id}:{uuid.uuid4().hex}"
            timestamp = self._clock()
            document = body if isinstance(body, str) else json.dumps(body, default=str)
            record_metadata = _flatten_metadata(
                {
                    **(metadata or {}),
                    "session_id": session_id,
                    "event_type": event_type,
                    "timestamp": timestamp.isoformat(),
                    "sequence": sequence,
                }
            )
            collection.add(documents=[document], metadatas=[record_metadata], ids=[event_id])

        return ChromaEvent(
            id=event_id,
            session_id=session_id,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def fetch_session_events(self, session_id: str, *, limit: int | None = None) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        return self._convert_result(collection.get(where={"session_id": session_id}, limit=limit))

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[ChromaEvent]:
        """Keyword search over stored documents and string metadata."""

        collection = self._ensure_collection()
        events = self._convert_result(collection.get(where=filters or None))
        if query:
            needle = query.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[:limit] if limit else events


class ChromaEventRecorder:
    """Event-bus subscriber that journals lifecycle events into Chroma.

    Raw runtime messages (``include_runtime``) and per-entry transcript events
    (``include_messages``) are skipped unless enabled.
    """

    def __init__(
        self,
        store: ChromaStore,
        *,
        include_runtime: bool = False,
        include_messages: bool = False,
    ) -> None:
        self._store = store
        self._include_runtime = include_runtime
        self._include_messages = include_messages

    def __call__(self, event: SessionEvent) -> None:
        if event.event_type == "runtime_message" and not self._include_runtime:
            return
        if event.event_type == "message_appended" and not self._include_messages:
            return
        payload = event.to_dict()
        metadata: dict[str, Any] = {}
        for key in ("status", "old_status", "reason", "kind", "branch"):
            if key in payload:
                metadata[key] = payload[key]
        self._store.record_event(
            session_id=event.session_id,
            event_type=event.event_type,
            body=payload,
            metadata=metadata,
        )


__all__ = ["ChromaEvent", "ChromaEventRecorder", "ChromaStore", "ChromaUnavailableError"]
