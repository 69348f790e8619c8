"""SILO context store: one markdown file per issue under the project."""

from __future__ import annotations

from pathlib import Path

from autobuild.adapters.beads import validate_issue_id


class FileSiloStore:
    def __init__(self, silo_dir: str = "_SILO") -> None:
        self._silo_dir = silo_dir

    def path_for(self, project_path: str, issue_id: str) -> Path:
        validate_issue_id(issue_id)
        return Path(project_path) / self._silo_dir / f"{issue_id}.md"

    async def read(self, project_path: str, issue_id: str) -> str | None:
        path = self.path_for(project_path, issue_id)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    async def write(self, project_path: str, issue_id: str, content: str) -> None:
        path = self.path_for(project_path, issue_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
