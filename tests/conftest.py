from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from grove_mcp.errors import ProvisioningError


def init_message(session_id: str = "claude-1") -> dict[str, Any]:
    return {
        "type": "system",
        "subtype": "init",
        "session_id": session_id,
        "tools": ["Read", "Edit"],
        "mcp_servers": [],
    }


def assistant_message(text: str, session_id: str = "claude-1") -> dict[str, Any]:
    return {
        "type": "assistant",
        "session_id": session_id,
        "message": {"role": "assistant", "content": [{"type": "text", "text": text}]},
    }


def result_message(
    subtype: str = "success",
    *,
    cost: float = 0.01,
    session_id: str = "claude-1",
    result: str | None = "done",
) -> dict[str, Any]:
    return {
        "type": "result",
        "subtype": subtype,
        "session_id": session_id,
        "is_error": subtype != "success",
        "result": result,
        "total_cost_usd": cost,
        "duration_ms": 1200,
        "duration_api_ms": 900,
        "num_turns": 3,
        "usage": {"input_tokens": 10, "output_tokens": 5},
    }


class StubProvisioner:
    """Creates plain directories instead of git worktrees."""

    def __init__(
        self,
        root: Path,
        *,
        fail: BaseException | None = None,
        fail_deprovision: bool = False,
    ) -> None:
        self.root = root
        self.fail = fail
        self.fail_deprovision = fail_deprovision
        self.provisioned: list[tuple[str, str]] = []
        self.deprovisioned: list[Path] = []

    async def provision(self, session_id: str, name: str) -> tuple[str, Path]:
        if self.fail is not None:
            raise self.fail
        path = self.root / session_id
        path.mkdir(parents=True)
        branch = f"agent/{name}-{len(self.provisioned)}"
        self.provisioned.append((session_id, branch))
        return branch, path

    async def deprovision(self, path: Path) -> None:
        self.deprovisioned.append(path)
        if self.fail_deprovision:
            raise ProvisioningError("worktree remove failed")


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[Any] = []

    def publish(self, event: Any) -> None:
        self.events.append(event)

    def types(self, session_id: str | None = None) -> list[str]:
        return [
            event.event_type
            for event in self.events
            if session_id is None or event.session_id == session_id
        ]

    def of_type(self, event_type: str) -> list[Any]:
        return [event for event in self.events if event.event_type == event_type]


@pytest.fixture
def provisioner(tmp_path: Path) -> StubProvisioner:
    return StubProvisioner(tmp_path / "worktrees")
