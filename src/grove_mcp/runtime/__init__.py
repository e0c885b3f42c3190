"""Claude runtime invocation and message normalization."""

from .invokers import (
    DEFAULT_CONTINUE_PROMPT,
    HOLD,
    BatchInvoker,
    ClaudeCLIInvoker,
    FakeRuntimeInvoker,
    InvocationRequest,
    RuntimeInvoker,
    StreamingInvoker,
    build_invoker,
)
from .messages import RuntimeMessage, normalize_message

__all__ = [
    "BatchInvoker",
    "ClaudeCLIInvoker",
    "DEFAULT_CONTINUE_PROMPT",
    "FakeRuntimeInvoker",
    "HOLD",
    "InvocationRequest",
    "RuntimeInvoker",
    "RuntimeMessage",
    "StreamingInvoker",
    "build_invoker",
    "normalize_message",
]
