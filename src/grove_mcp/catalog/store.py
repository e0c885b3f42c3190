"""YAML-backed workspace/project catalog."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

import yaml
from pydantic import BaseModel, ValidationError

from ..errors import CatalogError
from ..persistence import atomic_write_text
from ..session.models import utcnow
from .models import CatalogState, Project, RecentProject, Workspace

logger = logging.getLogger(__name__)

_STATE_FILE = "workspace-state.yaml"
_RECENT_LIMIT = 10


class SessionCatalog(Protocol):
    """The slice of the catalog the lifecycle controller depends on."""

    def get_current_workspace(self) -> Workspace | None:
        ...

    def get_current_project(self) -> Project | None:
        ...

    def add_session_to_project(self, workspace_id: str, project_id: str, session_id: str) -> None:
        ...


class WorkspaceCatalog:
    """Stores workspaces as ``workspace-<id>.yaml`` files in one directory."""

    def __init__(self, directory: Path) -> None:
        self._dir = Path(directory)
        self._state = CatalogState()
        self._current: Workspace | None = None

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def state(self) -> CatalogState:
        return self._state

    def initialize(self, *, default_project_path: Path | None = None) -> None:
        """Load persisted state; optionally seed a development workspace."""

        self._dir.mkdir(parents=True, exist_ok=True)
        document = self._read_yaml(self._dir / _STATE_FILE)
        if document:
            self._state = self._validate(CatalogState, document, self._dir / _STATE_FILE)
        if self._state.active_workspace_id:
            try:
                self.load_workspace(self._state.active_workspace_id)
            except CatalogError as exc:
                logger.warning("Active workspace unavailable", extra={"error": str(exc)})
                self._state.active_workspace_id = None
                self._state.active_project_id = None
        elif default_project_path is not None:
            workspace = self.create_workspace("Development Workspace", "Default workspace for development")
            self.create_project(
                workspace.id,
                default_project_path.name,
                default_project_path,
                "Current development project",
            )
        logger.info(
            "Workspace catalog initialized",
            extra={
                "directory": str(self._dir),
                "active_workspace": self._current.name if self._current else None,
            },
        )

    def _workspace_path(self, workspace_id: str) -> Path:
        return self._dir / f"workspace-{workspace_id}.yaml"

    @staticmethod
    def _read_yaml(path: Path) -> Any:
        try:
            return yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except yaml.YAMLError as exc:
            raise CatalogError(f"Failed to parse YAML in {path}: {exc}") from exc

    @staticmethod
    def _validate(model: type[BaseModel], document: Any, path: Path) -> Any:
        try:
            return model.model_validate(document)
        except ValidationError as exc:
            raise CatalogError(f"Catalog validation error in {path}: {exc}") from exc

    def _write(self, path: Path, model: BaseModel) -> None:
        atomic_write_text(path, yaml.safe_dump(model.model_dump(mode="json"), sort_keys=False))

    def _save_state(self) -> None:
        self._write(self._dir / _STATE_FILE, self._state)

    def _save_workspace(self, workspace: Workspace) -> None:
        self._write(self._workspace_path(workspace.id), workspace)
        if self._current is not None and self._current.id == workspace.id:
            self._current = workspace

    def create_workspace(self, name: str, description: str | None = None) -> Workspace:
        workspace_id = str(uuid4())
        workspace = self._validate(
            Workspace,
            {"id": workspace_id, "name": name, "description": description},
            self._workspace_path(workspace_id),
        )
        self._save_workspace(workspace)
        self.set_active_workspace(workspace.id)
        logger.info("Created workspace", extra={"workspace_id": workspace.id, "workspace_name": workspace.name})
        return workspace

    def load_workspace(self, workspace_id: str) -> Workspace:
        path = self._workspace_path(workspace_id)
        document = self._read_yaml(path)
        if document is None:
            raise CatalogError(f"Workspace {workspace_id} not found")
        workspace = self._validate(Workspace, document, path)
        if self._state.active_workspace_id == workspace_id:
            self._current = workspace
        return workspace

    def set_active_workspace(self, workspace_id: str) -> Workspace:
        workspace = self.load_workspace(workspace_id)
        if self._state.active_workspace_id != workspace_id:
            self._state.active_project_id = None
        self._state.active_workspace_id = workspace_id
        self._current = workspace
        self._save_state()
        return workspace

    def list_workspaces(self) -> list[Workspace]:
        workspaces: list[Workspace] = []
        for path in sorted(self._dir.glob("workspace-*.yaml")):
            if path.name == _STATE_FILE:
                continue
            try:
                workspaces.append(self._validate(Workspace, self._read_yaml(path), path))
            except CatalogError as exc:
                logger.error("Skipping unreadable workspace", extra={"path": str(path), "error": str(exc)})
        return sorted(workspaces, key=lambda workspace: workspace.updated_at, reverse=True)

    def delete_workspace(self, workspace_id: str) -> None:
        path = self._workspace_path(workspace_id)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise CatalogError(f"Workspace {workspace_id} not found") from exc
        if self._state.active_workspace_id == workspace_id:
            self._state.active_workspace_id = None
            self._state.active_project_id = None
            self._current = None
            self._save_state()
        logger.info("Deleted workspace", extra={"workspace_id": workspace_id})

    def create_project(
        self,
        workspace_id: str,
        name: str,
        project_path: Path | str,
        description: str | None = None,
    ) -> Project:
        workspace = self.load_workspace(workspace_id)
        project = Project(
            id=str(uuid4()),
            name=name,
            path=str(Path(project_path).expanduser().resolve()),
            description=description,
        )
        workspace.projects.append(project)
        workspace.updated_at = utcnow()
        self._save_workspace(workspace)
        logger.info(
            "Created project",
            extra={"workspace_id": workspace_id, "project_id": project.id, "path": project.path},
        )
        return project

    def get_project(self, workspace_id: str, project_id: str) -> Project | None:
        return self.load_workspace(workspace_id).find_project(project_id)

    def update_project(self, workspace_id: str, project_id: str, updates: dict[str, Any]) -> Project:
        workspace = self.load_workspace(workspace_id)
        project = workspace.find_project(project_id)
        if project is None:
            raise CatalogError(f"Project {project_id} not found in workspace {workspace_id}")
        protected = {"id", "created_at"}
        merged = {**project.model_dump(), **{k: v for k, v in updates.items() if k not in protected}}
        merged["updated_at"] = utcnow()
        updated = self._validate(Project, merged, self._workspace_path(workspace_id))
        workspace.projects = [updated if item.id == project_id else item for item in workspace.projects]
        workspace.updated_at = utcnow()
        self._save_workspace(workspace)
        return updated

    def delete_project(self, workspace_id: str, project_id: str) -> None:
        workspace = self.load_workspace(workspace_id)
        workspace.projects = [project for project in workspace.projects if project.id != project_id]
        workspace.updated_at = utcnow()
        self._save_workspace(workspace)
        if self._state.active_project_id == project_id:
            self._state.active_project_id = None
            self._save_state()
        logger.info("Deleted project", extra={"workspace_id": workspace_id, "project_id": project_id})

    def add_session_to_project(self, workspace_id: str, project_id: str, session_id: str) -> None:
        workspace = self.load_workspace(workspace_id)
        project = workspace.find_project(project_id)
        if project is None:
            raise CatalogError(f"Project {project_id} not found in workspace {workspace_id}")
        if session_id in project.sessions:
            return
        project.sessions.append(session_id)
        project.updated_at = workspace.updated_at = utcnow()
        self._save_workspace(workspace)

    def get_current_workspace(self) -> Workspace | None:
        return self._current

    def get_current_project(self) -> Project | None:
        if self._current is None or not self._state.active_project_id:
            return None
        return self._current.find_project(self._state.active_project_id)

    def set_active_project(self, project_id: str) -> Project:
        if self._current is None:
            raise CatalogError("No active workspace")
        project = self._current.find_project(project_id)
        if project is None:
            raise CatalogError(f"Project {project_id} not found in current workspace")

        workspace_id = self._current.id
        self._state.active_project_id = project_id
        recent = [
            entry
            for entry in self._state.recent_projects
            if not (entry.workspace_id == workspace_id and entry.project_id == project_id)
        ]
        recent.insert(0, RecentProject(workspace_id=workspace_id, project_id=project_id))
        self._state.recent_projects = recent[:_RECENT_LIMIT]
        self._save_state()
        return project


__all__ = ["SessionCatalog", "WorkspaceCatalog"]
