"""Error taxonomy shared across Grove components."""

from __future__ import annotations


class GroveError(RuntimeError):
    """Base class for errors surfaced to Grove callers."""

    kind = "grove_error"


class ProvisioningError(GroveError):
    """Raised when a worktree or branch cannot be created or accessed."""

    kind = "provisioning_error"


class RuntimeInvocationError(GroveError):
    """Raised when the external agent runtime fails to execute."""

    kind = "runtime_invocation_error"


class RuntimeNotFoundError(RuntimeInvocationError):
    """Raised when the runtime executable cannot be located."""

    kind = "runtime_not_found"


class ParseError(GroveError):
    """Raised when runtime output cannot be normalized."""

    kind = "parse_error"


class NotFoundError(GroveError):
    """Raised when an operation references an unknown session."""

    kind = "not_found"


class ResumeStateError(GroveError):
    """Raised when a session cannot be resumed from its current state."""

    kind = "resume_state_error"


class SessionBusyError(GroveError):
    """Raised when a session already has an invocation in flight."""

    kind = "session_busy"


class CatalogError(GroveError):
    """Raised for workspace or project catalog failures."""

    kind = "catalog_error"


class FileAccessError(GroveError):
    """Raised when a session file cannot be listed, read, or written."""

    kind = "file_access_error"


__all__ = [
    "CatalogError",
    "FileAccessError",
    "GroveError",
    "NotFoundError",
    "ParseError",
    "ProvisioningError",
    "ResumeStateError",
    "RuntimeInvocationError",
    "RuntimeNotFoundError",
    "SessionBusyError",
]
