"""Commit finished work with git."""

from __future__ import annotations

import asyncio

from autobuild.adapters.base import clean_env
from autobuild.errors import CommitError


class GitCommitter:
    def __init__(self, binary: str = "git") -> None:
        self._binary = binary

    async def commit(self, project_path: str, message: str, issue_id: str) -> None:
        code, _, err = await self._git(project_path, "add", "-A")
        if code != 0:
            raise CommitError(f"Failed to stage changes: {err}")

        full_message = f"{message}\n\nIssue: {issue_id}"
        code, out, err = await self._git(project_path, "commit", "-m", full_message)
        # "nothing to commit" is not an error
        if code != 0 and "nothing to commit" not in (out + err):
            raise CommitError(f"Failed to commit: {err or out}")

    async def _git(self, cwd: str, *args: str) -> tuple[int, str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=clean_env(),
            )
        except FileNotFoundError as exc:
            raise CommitError(f"'{self._binary}' not found on PATH") from exc
        stdout, stderr = await proc.communicate()
        return (
            proc.returncode or 0,
            (stdout or b"").decode("utf-8", errors="replace"),
            (stderr or b"").decode("utf-8", errors="replace").strip(),
        )
