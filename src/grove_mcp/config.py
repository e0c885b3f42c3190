"""Configuration management for Grove MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GroveSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    base_repo_path: Path = Field(default=Path("./repo"), validation_alias="GROVE_BASE_REPO_PATH")
    worktrees_path: Path | None = Field(default=None, validation_alias="GROVE_WORKTREES_PATH")
    state_file: Path | None = Field(default=None, validation_alias="GROVE_STATE_FILE")
    autosave_interval: float = Field(default=30.0, validation_alias="GROVE_AUTOSAVE_INTERVAL")
    workspaces_path: Path = Field(
        default=Path("./.ai-agent-manager"), validation_alias="GROVE_WORKSPACES_PATH"
    )
    claude_path: str | None = Field(default=None, validation_alias="CLAUDE_PATH")
    claude_model: str | None = Field(default=None, validation_alias="ANTHROPIC_MODEL")
    max_turns: int = Field(default=10, validation_alias="GROVE_MAX_TURNS")
    invocation_strategy: str = Field(default="stream", validation_alias="GROVE_INVOCATION_STRATEGY")
    batch_timeout: float = Field(default=300.0, validation_alias="GROVE_BATCH_TIMEOUT")
    debug_mode: bool = Field(default=False, validation_alias="GROVE_DEBUG")
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    log_level: str = Field(default="INFO", validation_alias="GROVE_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "GROVE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("invocation_strategy")
    @classmethod
    def _normalize_strategy(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"stream", "batch"}:
            raise ValueError("GROVE_INVOCATION_STRATEGY must be 'stream' or 'batch'")
        return normalized

    @field_validator("autosave_interval", "batch_timeout")
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("GROVE_AUTOSAVE_INTERVAL and GROVE_BATCH_TIMEOUT must be > 0")
        return value

    @field_validator("max_turns")
    @classmethod
    def _validate_max_turns(cls, value: int) -> int:
        if value < 1:
            raise ValueError("GROVE_MAX_TURNS must be >= 1")
        return value

    @property
    def resolved_worktrees_path(self) -> Path:
        return self.worktrees_path or self.base_repo_path / ".worktrees"

    @property
    def resolved_state_file(self) -> Path:
        return self.state_file or self.base_repo_path / "agent-state.json"


@lru_cache(maxsize=1)
def get_settings() -> GroveSettings:
    """Return cached settings instance."""

    settings = GroveSettings()
    settings.base_repo_path = settings.base_repo_path.expanduser().resolve()
    if settings.worktrees_path is not None:
        settings.worktrees_path = settings.worktrees_path.expanduser().resolve()
    if settings.state_file is not None:
        settings.state_file = settings.state_file.expanduser().resolve()
    settings.workspaces_path = settings.workspaces_path.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    return settings


__all__ = ["GroveSettings", "get_settings"]
