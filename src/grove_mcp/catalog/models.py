"""Workspace and project catalog models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from ..session.models import utcnow


class ProjectSettings(BaseModel):
    exclude_paths: list[str] = Field(default_factory=list)
    custom_prompts: dict[str, str] = Field(default_factory=dict)
    env_vars: dict[str, str] = Field(default_factory=dict)


class Project(BaseModel):
    """A directory tracked inside a workspace, with the sessions attached to it."""

    id: str
    name: str
    path: str = Field(..., description="Absolute path to the project directory.")
    description: str | None = None
    sessions: list[str] = Field(default_factory=list)
    settings: ProjectSettings | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WorkspaceSettings(BaseModel):
    default_model: str | None = None
    default_branch: str | None = None
    auto_save: bool = True
    theme: Literal["light", "dark", "system"] = "dark"


class Workspace(BaseModel):
    id: str
    name: str
    description: str | None = None
    projects: list[Project] = Field(default_factory=list)
    settings: WorkspaceSettings = Field(default_factory=WorkspaceSettings)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Workspace name must not be empty")
        return normalized

    def find_project(self, project_id: str) -> Project | None:
        return next((project for project in self.projects if project.id == project_id), None)


class RecentProject(BaseModel):
    workspace_id: str
    project_id: str
    last_accessed: datetime = Field(default_factory=utcnow)


class CatalogState(BaseModel):
    active_workspace_id: str | None = None
    active_project_id: str | None = None
    recent_projects: list[RecentProject] = Field(default_factory=list)


__all__ = [
    "CatalogState",
    "Project",
    "ProjectSettings",
    "RecentProject",
    "Workspace",
    "WorkspaceSettings",
]
