"""SILO progress notes: per-issue context carried across agent invocations."""

from __future__ import annotations

import logging

from autobuild.adapters.base import SiloStore
from autobuild.protocol.models import Issue, SiloProgress, utc_now_iso

logger = logging.getLogger(__name__)


class SiloNotes:
    """Reads and appends to an issue's progress note.

    Store failures are logged and otherwise ignored; a missing note only
    means the next prompt starts without history.
    """

    def __init__(self, store: SiloStore, project_path: str) -> None:
        self._store = store
        self._project_path = project_path

    async def read(self, issue_id: str) -> str | None:
        try:
            return await self._store.read(self._project_path, issue_id)
        except Exception as exc:
            logger.warning("Could not read SILO note for %s: %s", issue_id, exc)
            return None

    async def record(
        self,
        issue: Issue,
        done: list[str],
        upcoming: list[str],
        step: str,
    ) -> SiloProgress | None:
        previous = await self.read(issue.id)
        history = SiloProgress.from_markdown(issue.id, previous).what_was_done if previous else []
        progress = SiloProgress(
            issue_id=issue.id,
            issue_title=issue.title,
            issue_description=issue.description,
            what_was_done=history + done,
            whats_next=upcoming,
            current_step=step,
            last_updated=utc_now_iso(),
        )
        try:
            await self._store.write(self._project_path, issue.id, progress.to_markdown())
        except Exception as exc:
            logger.warning("Could not write SILO note for %s: %s", issue.id, exc)
            return None
        return progress
