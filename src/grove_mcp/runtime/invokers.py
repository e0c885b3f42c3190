"""Async invocation strategies for the Claude CLI runtime."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Protocol, Sequence

from ..errors import ParseError, RuntimeInvocationError, RuntimeNotFoundError
from .messages import RuntimeMessage, normalize_message
from .utils import sanitize_environment

logger = logging.getLogger(__name__)

DEFAULT_CONTINUE_PROMPT = "Please continue with the task."
_STREAM_LIMIT = 16 * 1024 * 1024
_TERMINATE_GRACE = 5.0


@dataclass(slots=True)
class InvocationRequest:
    """Everything needed to make one call into the runtime."""

    prompt: str
    cwd: Path
    resume: str | None = None
    max_turns: int = 10
    model: str | None = None
    env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def for_resume(
        cls,
        token: str,
        cwd: Path,
        prompt: str | None = None,
        **kwargs: Any,
    ) -> "InvocationRequest":
        """Build a continuation request; the runtime rejects empty prompts."""

        return cls(prompt=prompt or DEFAULT_CONTINUE_PROMPT, cwd=cwd, resume=token, **kwargs)


class RuntimeInvoker(Protocol):
    """Invoke the runtime once, yielding normalized messages until a result."""

    def invoke(self, request: InvocationRequest) -> AsyncIterator[RuntimeMessage]:
        ...


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=_TERMINATE_GRACE)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()


class ClaudeCLIInvoker:
    """Shared process handling for both invocation strategies."""

    output_format = "json"

    def __init__(self, executable: Path | str | None = None) -> None:
        self._explicit = Path(executable) if executable else None
        self._executable_path: Path | None = None

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            if explicit.exists() and explicit.is_file():
                return explicit
            raise RuntimeNotFoundError(f"Claude executable not found at {explicit}")

        binary = shutil.which("claude")
        if binary is None:
            raise RuntimeNotFoundError("Claude CLI executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        if self._executable_path is None:
            self._executable_path = self._resolve_executable(self._explicit)
        return self._executable_path

    def build_args(self, request: InvocationRequest) -> list[str]:
        args = [
            str(self.executable),
            "-p",
            request.prompt,
            "--output-format",
            self.output_format,
            "--max-turns",
            str(request.max_turns),
        ]
        if self.output_format == "stream-json":
            args.append("--verbose")
        if request.model:
            args.extend(["--model", request.model])
        if request.resume:
            args.extend(["--resume", request.resume])
        return args

    async def _spawn(self, request: InvocationRequest) -> asyncio.subprocess.Process:
        args = self.build_args(request)
        logger.debug(
            "Spawning runtime",
            extra={"cwd": str(request.cwd), "resume": request.resume, "format": self.output_format},
        )
        try:
            return await asyncio.create_subprocess_exec(
                *args,
                cwd=str(request.cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(request.env),
                limit=_STREAM_LIMIT,
            )
        except OSError as exc:
            raise RuntimeInvocationError(f"Failed to start runtime: {exc}") from exc


class StreamingInvoker(ClaudeCLIInvoker):
    """Consume ``stream-json`` output line by line.

    Cancelling the consuming task terminates the subprocess immediately; there
    is no implicit timeout.
    """

    output_format = "stream-json"

    async def invoke(self, request: InvocationRequest) -> AsyncIterator[RuntimeMessage]:
        process = await self._spawn(request)
        assert process.stdout is not None and process.stderr is not None
        stderr_task = asyncio.ensure_future(process.stderr.read())
        try:
            async for raw_line in process.stdout:
                line = raw_line.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError as exc:
                    raise ParseError(f"Runtime emitted invalid JSON: {line[:200]}") from exc
                message = normalize_message(payload)
                yield message
                if message.is_result:
                    return

            returncode = await process.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace").strip()
            raise RuntimeInvocationError(
                stderr or f"Runtime exited with code {returncode} before producing a result"
            )
        finally:
            stderr_task.cancel()
            await _terminate(process)


class BatchInvoker(ClaudeCLIInvoker):
    """Run the CLI to completion and take its final JSON payload.

    Cancellation can only kill the process; a hung runtime is killed after
    ``timeout`` seconds and reported as a failed invocation.
    """

    output_format = "json"

    def __init__(self, executable: Path | str | None = None, *, timeout: float = 300.0) -> None:
        super().__init__(executable)
        self._timeout = timeout

    @property
    def timeout(self) -> float:
        return self._timeout

    async def invoke(self, request: InvocationRequest) -> AsyncIterator[RuntimeMessage]:
        process = await self._spawn(request)
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise RuntimeInvocationError(
                f"Runtime did not finish within {self._timeout:g}s"
            ) from exc
        finally:
            await _terminate(process)

        stdout = stdout_bytes.decode("utf-8", errors="replace").strip()
        stderr = stderr_bytes.decode("utf-8", errors="replace").strip()
        if not stdout:
            if process.returncode:
                raise RuntimeInvocationError(
                    stderr or f"Runtime exited with code {process.returncode}"
                )
            raise ParseError("Runtime produced no output")

        yield parse_batch_output(stdout)


def parse_batch_output(stdout: str) -> RuntimeMessage:
    """Normalize a batch response; arrays are reduced to their last element."""

    try:
        payload = json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Runtime emitted invalid JSON: {stdout[:200]}") from exc
    if isinstance(payload, list):
        if not payload:
            raise ParseError("Runtime returned an empty message array")
        payload = payload[-1]
    return normalize_message(payload)


HOLD = object()


class FakeRuntimeInvoker:
    """Test double that replays scripted runtime output.

    Each invocation consumes one script. Script items are raw payload dicts,
    :class:`RuntimeMessage` instances, exceptions to raise, or :data:`HOLD`
    to block until the invocation is cancelled.
    """

    def __init__(self, scripts: Iterable[Sequence[Any]] | None = None) -> None:
        self._scripts = [list(script) for script in (scripts or [])]
        self._requests: list[InvocationRequest] = []
        self.cancelled = 0

    def add_script(self, script: Sequence[Any]) -> None:
        self._scripts.append(list(script))

    @property
    def requests(self) -> list[InvocationRequest]:
        return self._requests

    async def invoke(self, request: InvocationRequest) -> AsyncIterator[RuntimeMessage]:
        self._requests.append(request)
        script = self._scripts.pop(0) if self._scripts else []
        try:
            for item in script:
                await asyncio.sleep(0)
                if item is HOLD:
                    await asyncio.Event().wait()
                elif isinstance(item, BaseException):
                    raise item
                elif isinstance(item, RuntimeMessage):
                    yield item
                else:
                    yield normalize_message(item)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise


def build_invoker(
    strategy: str,
    *,
    executable: Path | str | None = None,
    batch_timeout: float = 300.0,
) -> ClaudeCLIInvoker:
    """Return the invoker for the configured strategy."""

    if strategy == "batch":
        return BatchInvoker(executable, timeout=batch_timeout)
    if strategy == "stream":
        return StreamingInvoker(executable)
    raise ValueError(f"Unknown invocation strategy '{strategy}'")


__all__ = [
    "BatchInvoker",
    "ClaudeCLIInvoker",
    "DEFAULT_CONTINUE_PROMPT",
    "FakeRuntimeInvoker",
    "HOLD",
    "InvocationRequest",
    "RuntimeInvoker",
    "StreamingInvoker",
    "build_invoker",
    "parse_batch_output",
]
