"""Session entities, registry, and transcript journal."""

from .journal import entry_for, make_entry, truncate
from .models import MessageType, Session, SessionStatus, TerminalMessage
from .registry import SessionRegistry

__all__ = [
    "MessageType",
    "Session",
    "SessionRegistry",
    "SessionStatus",
    "TerminalMessage",
    "entry_for",
    "make_entry",
    "truncate",
]
