"""Session entity models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field, field_validator

SessionStatus = Literal["active", "paused", "completed", "error"]
MessageType = Literal["assistant", "user", "error", "info", "success", "warning"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TerminalMessage(BaseModel):
    """One transcript entry shown to observers of a session."""

    id: int = Field(..., description="Monotonic-ish identifier; collisions are tolerated.")
    type: MessageType = Field(..., description="Display category of the entry.")
    content: str = Field(..., description="Entry text, truncated for assistant output.")
    timestamp: datetime = Field(default_factory=utcnow)


class Session(BaseModel):
    """An isolated unit of agent work bound to its own branch and worktree."""

    id: str = Field(..., description="Opaque identifier assigned at creation.")
    name: str = Field(..., description="Display label.")
    branch: str = Field(..., description="Git branch checked out in the worktree.")
    worktree_path: str = Field(..., description="Absolute path of the session worktree.")
    status: SessionStatus = Field(default="active")
    archived: bool = Field(default=False, description="Visibility flag, orthogonal to status.")
    progress: int = Field(default=0, description="Coarse completion signal from 0 to 100.")
    needs_intervention: bool = Field(
        default=False,
        description="Set when the runtime halts on a condition requiring a human decision.",
    )
    external_session_id: str | None = Field(
        default=None,
        description="Continuation token issued by the runtime; write-once.",
    )
    tokens_used: int = Field(default=0)
    cost: float = Field(default=0.0)
    messages: list[TerminalMessage] = Field(default_factory=list)
    task: str = Field(..., description="Instruction that seeded the session.")
    workspace_id: str | None = Field(default=None)
    project_id: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("progress")
    @classmethod
    def _clamp_progress(cls, value: int) -> int:
        return max(0, min(100, value))

    def touch(self) -> None:
        self.updated_at = utcnow()

    def assign_external_session_id(self, token: str | None) -> bool:
        """Store the runtime continuation token unless one is already set."""

        if not token or self.external_session_id:
            return False
        self.external_session_id = token
        return True

    def add_usage(self, *, cost: float | None = None, tokens: int | None = None) -> None:
        if cost and cost > 0:
            self.cost += cost
        if tokens and tokens > 0:
            self.tokens_used += tokens

    @property
    def can_resume(self) -> bool:
        return self.status != "active" and bool(self.external_session_id)


__all__ = ["MessageType", "Session", "SessionStatus", "TerminalMessage", "utcnow"]
