"""Registry of watched projects.

Pure data: the registry answers lookups and never talks to the network or
the database. The engine rebuilds entries from project rows.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, replace

from ...models import Project
from ...models.enums import DisplayPolicy, FetchMode, ItemKind


@dataclass(frozen=True)
class WatchedProject:
    """User configuration of one watched repository."""

    id: uuid.UUID
    full_name: str
    display_name: str
    enabled: bool = True
    fetch_mode: FetchMode = FetchMode.INCREMENTAL
    track_pull_requests: bool = True
    track_issues: bool = True
    pr_visibility: DisplayPolicy = DisplayPolicy.ALL
    issue_visibility: DisplayPolicy = DisplayPolicy.ALL

    def __str__(self) -> str:
        """Return human-readable string representation."""
        return self.full_name

    @classmethod
    def from_model(cls, project: Project) -> "WatchedProject":
        """Build an entry from a project row."""
        return cls(
            id=project.id,
            full_name=project.full_name,
            display_name=project.display_name,
            enabled=project.enabled,
            fetch_mode=project.fetch_mode,
            track_pull_requests=project.track_pull_requests,
            track_issues=project.track_issues,
            pr_visibility=project.pr_visibility,
            issue_visibility=project.issue_visibility,
        )

    def visibility_for(self, kind: ItemKind) -> DisplayPolicy:
        """Get the display policy for an item kind."""
        if kind is ItemKind.PULL_REQUEST:
            return self.pr_visibility
        return self.issue_visibility


class ProjectRegistry:
    """Lookup table of watched projects, in configuration order."""

    def __init__(self, projects: Iterable[WatchedProject] = ()):
        self._projects: dict[uuid.UUID, WatchedProject] = {
            project.id: project for project in projects
        }

    def __len__(self) -> int:
        return len(self._projects)

    def __contains__(self, project_id: object) -> bool:
        return project_id in self._projects

    def all(self) -> list[WatchedProject]:
        """Every registered project."""
        return list(self._projects.values())

    def enabled(self) -> list[WatchedProject]:
        """Projects that take part in sweeps."""
        return [project for project in self._projects.values() if project.enabled]

    def get(self, project_id: uuid.UUID) -> WatchedProject | None:
        """Look up a project by id."""
        return self._projects.get(project_id)

    def get_by_full_name(self, full_name: str) -> WatchedProject | None:
        """Look up a project by ``owner/name``, ignoring case."""
        wanted = full_name.lower()
        for project in self._projects.values():
            if project.full_name.lower() == wanted:
                return project
        return None

    def put(self, project: WatchedProject) -> None:
        """Add or replace an entry."""
        self._projects[project.id] = project

    def set_enabled(self, project_id: uuid.UUID, enabled: bool) -> WatchedProject:
        """Replace an entry with its enabled flag changed.

        Raises:
            KeyError: If the project is unknown
        """
        updated = replace(self._projects[project_id], enabled=enabled)
        self._projects[project_id] = updated
        return updated
