"""Interfaces to the orchestrator's external collaborators.

The coordinator only ever talks to these protocols; the concrete
subprocess-backed implementations live beside this module and are
wired together by ``autobuild.adapters.registry``.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Any, Protocol

from autobuild.protocol.models import Issue, StreamChunk, VerificationResult

# Env vars that interfere with nested agent processes (e.g. running from
# within another agent session would make the CLI refuse to launch).
STRIP_ENV_VARS = {
    "CLAUDECODE", "CLAUDE_CODE_ENTRYPOINT", "CLAUDE_REPL",
    "CLAUDE_CODE_PACKAGE_DIR",
}


def clean_env() -> dict[str, str]:
    return {k: v for k, v in os.environ.items() if k not in STRIP_ENV_VARS}


class IssueTracker(Protocol):
    async def list(self, project_path: str) -> list[Issue]: ...

    async def create(
        self,
        project_path: str,
        title: str,
        issue_type: str,
        priority: int,
        description: str,
    ) -> str: ...

    async def update(self, project_path: str, issue_id: str, fields: dict[str, Any]) -> None: ...

    async def close(self, project_path: str, issue_id: str, reason: str) -> None: ...


class AgentProcess(Protocol):
    async def start(self, cwd: str, session_id: str, permission_mode: str, safe_mode: bool) -> None: ...

    async def send(self, session_id: str, text: str) -> None: ...

    async def terminate(self, session_id: str) -> None: ...

    def subscribe(self, session_id: str) -> asyncio.Queue[StreamChunk]: ...

    def unsubscribe(self, session_id: str) -> None: ...


class VerificationRunner(Protocol):
    async def run(
        self,
        project_path: str,
        run_lint: bool,
        run_tests: bool,
        run_build: bool,
    ) -> VerificationResult: ...


class VcsCommitter(Protocol):
    async def commit(self, project_path: str, message: str, issue_id: str) -> None: ...


class SiloStore(Protocol):
    async def read(self, project_path: str, issue_id: str) -> str | None: ...

    async def write(self, project_path: str, issue_id: str, content: str) -> None: ...


@dataclass(slots=True)
class Collaborators:
    tracker: IssueTracker
    agent: AgentProcess
    verifier: VerificationRunner
    vcs: VcsCommitter
    silo: SiloStore
