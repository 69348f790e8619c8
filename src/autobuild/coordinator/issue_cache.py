"""Read-through cache of issue snapshots keyed by id."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from autobuild.protocol.models import Issue

logger = logging.getLogger(__name__)

IssueLoader = Callable[[], Awaitable[list[Issue]]]


class IssueCache:
    """Last-known issue snapshots so phases don't re-fetch mid-run.

    ``resolve`` consults the cache first and falls back to one full
    listing through *loader* on a miss, caching everything it returns.
    """

    def __init__(self, loader: IssueLoader | None = None) -> None:
        self._issues: dict[str, Issue] = {}
        self._loader = loader

    def put(self, issue: Issue) -> None:
        self._issues[issue.id] = issue

    def get(self, issue_id: str) -> Issue | None:
        return self._issues.get(issue_id)

    def forget(self, issue_id: str) -> None:
        self._issues.pop(issue_id, None)

    def __contains__(self, issue_id: object) -> bool:
        return issue_id in self._issues

    def __len__(self) -> int:
        return len(self._issues)

    async def refresh(self) -> list[Issue]:
        if self._loader is None:
            return list(self._issues.values())
        issues = await self._loader()
        for issue in issues:
            self.put(issue)
        return issues

    async def resolve(self, issue_id: str) -> Issue | None:
        cached = self._issues.get(issue_id)
        if cached is not None:
            return cached
        try:
            await self.refresh()
        except Exception as exc:
            logger.warning("Issue listing failed while resolving %s: %s", issue_id, exc)
            return None
        return self._issues.get(issue_id)
