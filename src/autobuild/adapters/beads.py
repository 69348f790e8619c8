"""Issue tracker adapter over the beads (``bd``) CLI."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Any

from autobuild.adapters.base import clean_env
from autobuild.errors import InvalidIssueIdError, TrackerError
from autobuild.protocol.models import Issue

logger = logging.getLogger(__name__)

ISSUE_ID_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9\-\.]*$")
_CREATED_RE = re.compile(r"Created issue:?\s*([a-zA-Z0-9][a-zA-Z0-9\-\.]*)")
ALLOWED_STATUSES = ("open", "in_progress", "blocked", "closed", "deferred")
ALLOWED_TYPES = ("bug", "feature", "task", "epic", "chore", "merge-request", "molecule")
MAX_PRIORITY = 4

_UPDATE_FLAGS = {"title": "--title", "status": "--status", "priority": "-p", "assignee": "--assignee"}


def validate_issue_id(issue_id: str) -> None:
    if not issue_id or len(issue_id) > 100:
        raise InvalidIssueIdError(issue_id, "must be 1-100 characters")
    if not ISSUE_ID_RE.match(issue_id):
        raise InvalidIssueIdError(issue_id, "contains invalid characters")


def sanitize_text(text: str) -> str:
    """Blank out characters that could enable substitution or break CLI parsing."""
    return "".join(" " if c in "`$\n\r" else c for c in text)


class BeadsTracker:
    """Lists, creates, updates and closes issues through ``bd``."""

    def __init__(self, binary: str = "bd", timeout_seconds: float = 60.0) -> None:
        self._binary = binary
        self._timeout = timeout_seconds

    async def list(self, project_path: str) -> list[Issue]:
        output = await self._run(project_path, ["export"])
        issues: list[Issue] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            try:
                raw = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping unparseable bd export line: %s", line[:200])
                continue
            if isinstance(raw, dict) and raw.get("id"):
                issues.append(Issue.from_dict(raw))
        return issues

    async def create(
        self,
        project_path: str,
        title: str,
        issue_type: str,
        priority: int,
        description: str,
    ) -> str:
        if issue_type not in ALLOWED_TYPES:
            raise TrackerError(f"Invalid issue type: {issue_type}. Allowed: {ALLOWED_TYPES}")
        if not 0 <= priority <= MAX_PRIORITY:
            raise TrackerError(f"Invalid priority: must be 0-{MAX_PRIORITY}")
        args = ["create", sanitize_text(title), "-t", issue_type, "-p", str(priority)]
        if description.strip():
            args.extend(["-d", sanitize_text(description)])
        output = await self._run(project_path, args)
        issue_id = parse_created_id(output)
        if not issue_id:
            raise TrackerError("No issue ID returned by bd create")
        return issue_id

    async def update(self, project_path: str, issue_id: str, fields: dict[str, Any]) -> None:
        validate_issue_id(issue_id)
        args = ["update", issue_id]
        for key, value in fields.items():
            flag = _UPDATE_FLAGS.get(key)
            if flag is None:
                raise TrackerError(f"Unsupported update field: {key}")
            if key == "status" and value not in ALLOWED_STATUSES:
                raise TrackerError(f"Invalid status: {value}. Allowed: {ALLOWED_STATUSES}")
            if key == "priority" and not 0 <= int(value) <= MAX_PRIORITY:
                raise TrackerError(f"Invalid priority: must be 0-{MAX_PRIORITY}")
            args.extend([flag, sanitize_text(str(value))])
        await self._run(project_path, args)

    async def close(self, project_path: str, issue_id: str, reason: str) -> None:
        validate_issue_id(issue_id)
        await self._run(project_path, ["close", issue_id, "--reason", sanitize_text(reason)])

    async def _run(self, project_path: str, args: list[str]) -> str:
        if not (Path(project_path) / ".beads").is_dir():
            raise TrackerError(
                "Issue tracking is not set up for this project. Run 'bd init' to initialize."
            )
        try:
            proc = await asyncio.create_subprocess_exec(
                self._binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=project_path,
                env=clean_env(),
            )
        except FileNotFoundError as exc:
            raise TrackerError(f"The '{self._binary}' command is not installed.") from exc
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise TrackerError(f"{self._binary} {args[0]} timed out after {self._timeout}s", retryable=True) from exc

        out = (stdout or b"").decode("utf-8", errors="replace")
        err = (stderr or b"").decode("utf-8", errors="replace").strip()
        if proc.returncode != 0 and err:
            raise TrackerError(f"{self._binary} {args[0]} failed: {err}")
        return out


def parse_created_id(output: str) -> str | None:
    """Pull the new issue id out of ``bd create`` output.

    Prefers the ``Created issue: <id>`` line; otherwise the last token of
    the last non-empty line.
    """
    announced = _CREATED_RE.search(output)
    if announced:
        return announced.group(1)
    for line in reversed(output.strip().splitlines()):
        line = line.strip()
        if not line:
            continue
        match = re.search(r"([a-zA-Z0-9][a-zA-Z0-9\-\.]*)\s*$", line)
        if match and ISSUE_ID_RE.match(match.group(1)):
            return match.group(1)
    return None
