"""Transcript entries derived from runtime messages."""

from __future__ import annotations

import itertools
import threading
import time

from ..runtime.messages import RuntimeMessage
from .models import MessageType, TerminalMessage, utcnow

ASSISTANT_PREVIEW_LIMIT = 500

_counter = itertools.count()
_counter_lock = threading.Lock()


def next_message_id() -> int:
    """Millisecond clock scaled up with a process-local tiebreaker."""

    with _counter_lock:
        tick = next(_counter) % 1000
    return int(time.time() * 1000) * 1000 + tick


def truncate(content: str, limit: int = ASSISTANT_PREVIEW_LIMIT) -> str:
    if len(content) <= limit:
        return content
    return content[:limit] + "..."


def make_entry(kind: MessageType, content: str) -> TerminalMessage:
    return TerminalMessage(id=next_message_id(), type=kind, content=content, timestamp=utcnow())


def entry_for(message: RuntimeMessage) -> TerminalMessage | None:
    """Return the transcript entry for ``message``, if it has one.

    System messages and assistant/user messages without text blocks produce
    nothing; results always produce an entry.
    """

    if message.kind == "assistant":
        text = message.text()
        return make_entry("assistant", truncate(text)) if text else None
    if message.kind == "user":
        text = message.text()
        return make_entry("user", text) if text else None
    if message.kind == "result":
        return make_entry("assistant", message.result or "Task completed")
    return None


__all__ = ["ASSISTANT_PREVIEW_LIMIT", "entry_for", "make_entry", "next_message_id", "truncate"]
