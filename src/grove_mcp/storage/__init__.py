"""Event journal storage for Grove MCP."""

from .chroma import ChromaEvent, ChromaEventRecorder, ChromaStore, ChromaUnavailableError

__all__ = [
    "ChromaEvent",
    "ChromaEventRecorder",
    "ChromaStore",
    "ChromaUnavailableError",
]
