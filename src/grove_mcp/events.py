"""Typed lifecycle events and the in-process fan-out sink."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol

from .runtime.messages import RuntimeMessage
from .session.models import SessionStatus, TerminalMessage, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionEvent:
    session_id: str
    at: datetime = field(default_factory=utcnow, kw_only=True)

    event_type = "session_event"

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["at"] = self.at.isoformat()
        payload["event_type"] = self.event_type
        return payload


@dataclass(frozen=True, slots=True)
class SessionCreated(SessionEvent):
    name: str
    branch: str
    worktree_path: str

    event_type = "session_created"


@dataclass(frozen=True, slots=True)
class SessionStatusChanged(SessionEvent):
    old_status: SessionStatus
    status: SessionStatus

    event_type = "status_changed"


@dataclass(frozen=True, slots=True)
class SessionMessage(SessionEvent):
    message: TerminalMessage

    event_type = "message_appended"

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "session_id": self.session_id,
            "at": self.at.isoformat(),
            "message": self.message.model_dump(mode="json"),
        }


@dataclass(frozen=True, slots=True)
class RuntimeMessageEvent(SessionEvent):
    message: RuntimeMessage

    event_type = "runtime_message"

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "session_id": self.session_id,
            "at": self.at.isoformat(),
            "message": self.message.model_dump(mode="json"),
        }


@dataclass(frozen=True, slots=True)
class SessionInit(SessionEvent):
    tools: list[str]
    mcp_servers: list[Any]

    event_type = "session_init"


@dataclass(frozen=True, slots=True)
class SessionCompleted(SessionEvent):
    result: str | None

    event_type = "completed"


@dataclass(frozen=True, slots=True)
class InterventionNeeded(SessionEvent):
    reason: str

    event_type = "intervention_needed"


@dataclass(frozen=True, slots=True)
class SessionErrored(SessionEvent):
    error: str
    kind: str = "error"

    event_type = "errored"


@dataclass(frozen=True, slots=True)
class SessionDeleted(SessionEvent):
    event_type = "session_deleted"


class EventSink(Protocol):
    """Publish point the lifecycle controller writes to."""

    def publish(self, event: SessionEvent) -> None:
        ...


Subscriber = Callable[[SessionEvent], None]


class EventBus:
    """Synchronous fan-out to subscribers with a bounded replay buffer.

    Subscribers are called in registration order on the publishing thread; a
    failing subscriber is logged and does not affect the others.
    """

    def __init__(self, history: int = 500) -> None:
        self._subscribers: list[Subscriber] = []
        self._recent: deque[SessionEvent] = deque(maxlen=history)
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, event: SessionEvent) -> None:
        with self._lock:
            self._recent.append(event)
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Event subscriber failed",
                    extra={"event_type": event.event_type, "session_id": event.session_id},
                )

    def recent(self, session_id: str | None = None, limit: int | None = None) -> list[SessionEvent]:
        with self._lock:
            events = [
                event for event in self._recent if session_id is None or event.session_id == session_id
            ]
        return events[-limit:] if limit else events


__all__ = [
    "EventBus",
    "EventSink",
    "InterventionNeeded",
    "RuntimeMessageEvent",
    "SessionCompleted",
    "SessionCreated",
    "SessionDeleted",
    "SessionErrored",
    "SessionEvent",
    "SessionInit",
    "SessionMessage",
    "SessionStatusChanged",
    "Subscriber",
]
