"""Normalized message type produced by runtime invocations."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from ..errors import ParseError

MessageKind = Literal["system", "assistant", "user", "result"]

_KINDS = {"system", "assistant", "user", "result"}


class RuntimeMessage(BaseModel):
    """Uniform view over the heterogeneous messages emitted by the runtime."""

    kind: MessageKind
    subtype: str | None = None
    payload: dict[str, Any] | None = None
    session_id: str | None = None
    result: str | None = None
    cost_usd: float | None = Field(default=None, ge=0)
    duration_ms: int | None = None
    duration_api_ms: int | None = None
    num_turns: int | None = None
    usage: dict[str, Any] | None = None
    is_error: bool = False

    @property
    def is_result(self) -> bool:
        return self.kind == "result"

    @property
    def total_tokens(self) -> int:
        if not self.usage:
            return 0
        total = 0
        for key in ("input_tokens", "output_tokens"):
            value = self.usage.get(key)
            if isinstance(value, int) and value > 0:
                total += value
        return total

    def text(self) -> str:
        """Join the text blocks of an assistant or user message."""

        if not self.payload:
            return ""
        message = self.payload.get("message")
        content = message.get("content") if isinstance(message, dict) else message
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "\n".join(
                block.get("text", "")
                for block in content
                if isinstance(block, dict) and block.get("type") == "text"
            )
        return ""


def normalize_message(raw: Any) -> RuntimeMessage:
    """Convert one raw runtime payload into a :class:`RuntimeMessage`.

    Raises :class:`ParseError` when the payload is not an object, carries no
    recognised ``type``, or has fields of the wrong shape.
    """

    if not isinstance(raw, dict):
        raise ParseError(f"Expected a JSON object from the runtime, got {type(raw).__name__}")

    kind = raw.get("type")
    if kind not in _KINDS:
        raise ParseError(f"Unexpected runtime message type: {kind!r}")

    fields: dict[str, Any] = {
        "kind": kind,
        "subtype": raw.get("subtype"),
        "session_id": raw.get("session_id"),
    }
    if kind == "system":
        fields["payload"] = {
            "tools": raw.get("tools") or [],
            "mcp_servers": raw.get("mcp_servers") or [],
        }
    elif kind in {"assistant", "user"}:
        fields["payload"] = {"message": raw.get("message")}
    else:
        cost = raw.get("total_cost_usd", raw.get("cost_usd"))
        fields.update(
            {
                "result": raw.get("result"),
                "cost_usd": cost,
                "duration_ms": raw.get("duration_ms"),
                "duration_api_ms": raw.get("duration_api_ms"),
                "num_turns": raw.get("num_turns"),
                "usage": raw.get("usage"),
                "is_error": bool(raw.get("is_error", False)),
            }
        )

    try:
        return RuntimeMessage.model_validate(fields)
    except ValidationError as exc:
        raise ParseError(f"Malformed runtime {kind} message: {exc}") from exc


__all__ = ["MessageKind", "RuntimeMessage", "normalize_message"]
