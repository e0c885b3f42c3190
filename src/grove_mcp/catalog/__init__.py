"""Workspace/project catalog."""

from .models import CatalogState, Project, ProjectSettings, RecentProject, Workspace, WorkspaceSettings
from .store import SessionCatalog, WorkspaceCatalog

__all__ = [
    "CatalogState",
    "Project",
    "ProjectSettings",
    "RecentProject",
    "SessionCatalog",
    "Workspace",
    "WorkspaceCatalog",
    "WorkspaceSettings",
]
