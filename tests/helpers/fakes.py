"""In-memory stand-ins for the orchestrator's external collaborators."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from autobuild.adapters.base import Collaborators
from autobuild.config.schema import AgentConfig, AutoBuildYamlConfig, ProjectConfig
from autobuild.coordinator.loop import AutoBuildCoordinator
from autobuild.errors import AgentStartError, CommitError, TrackerError
from autobuild.protocol.models import (
    BuildSettings,
    CheckResult,
    ChunkType,
    Issue,
    StreamChunk,
    VerificationResult,
)


class FakeTracker:
    def __init__(self, issues: list[Issue] | None = None) -> None:
        self.issues: dict[str, Issue] = {i.id: i for i in issues or []}
        self.created: list[dict[str, Any]] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.closed: list[tuple[str, str]] = []
        self.list_calls = 0
        self.fail_list = False
        self.fail_update = False
        self.fail_create = False
        self._next_id = 100

    async def list(self, project_path: str) -> list[Issue]:
        self.list_calls += 1
        if self.fail_list:
            raise TrackerError("bd export failed")
        return list(self.issues.values())

    async def create(
        self,
        project_path: str,
        title: str,
        issue_type: str,
        priority: int,
        description: str,
    ) -> str:
        if self.fail_create:
            raise TrackerError("bd create failed")
        new_id = f"bd-{self._next_id}"
        self._next_id += 1
        self.issues[new_id] = Issue(new_id, title, description, issue_type, priority)
        self.created.append({
            "id": new_id,
            "title": title,
            "issue_type": issue_type,
            "priority": priority,
            "description": description,
        })
        return new_id

    async def update(self, project_path: str, issue_id: str, fields: dict[str, Any]) -> None:
        if self.fail_update:
            raise TrackerError("bd update failed")
        self.updates.append((issue_id, dict(fields)))
        if issue_id in self.issues and "status" in fields:
            self.issues[issue_id].status = fields["status"]

    async def close(self, project_path: str, issue_id: str, reason: str) -> None:
        self.closed.append((issue_id, reason))
        if issue_id in self.issues:
            self.issues[issue_id].status = "closed"


class FakeAgent:
    """Scripted agent: each invocation consumes one outcome.

    Outcomes: ``ok``, ``error`` (result with is_error), ``exit`` (done
    without result), ``hang`` (nothing ever arrives), ``start_fail``,
    ``send_fail``.
    """

    def __init__(self, outcomes: list[str] | None = None, default: str = "ok") -> None:
        self.outcomes = list(outcomes or [])
        self.default = default
        self.prompts: list[str] = []
        self.started: list[str] = []
        self.terminated: list[str] = []
        self.unsubscribed: list[str] = []
        self.channels: dict[str, asyncio.Queue[StreamChunk]] = {}
        self.on_send: Callable[[str, str], None] | None = None
        self.fail_terminate = False
        self._pending: dict[str, str] = {}

    def subscribe(self, session_id: str) -> asyncio.Queue[StreamChunk]:
        channel: asyncio.Queue[StreamChunk] = asyncio.Queue()
        self.channels[session_id] = channel
        return channel

    def unsubscribe(self, session_id: str) -> None:
        self.unsubscribed.append(session_id)
        self.channels.pop(session_id, None)

    async def start(self, cwd: str, session_id: str, permission_mode: str, safe_mode: bool) -> None:
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if outcome == "start_fail":
            raise AgentStartError("'claude' CLI not found", session_id=session_id)
        self.started.append(session_id)
        self._pending[session_id] = outcome

    async def send(self, session_id: str, text: str) -> None:
        outcome = self._pending.pop(session_id)
        if outcome == "send_fail":
            raise AgentStartError("Agent closed its input", session_id=session_id)
        self.prompts.append(text)
        if self.on_send is not None:
            self.on_send(session_id, text)
        channel = self.channels[session_id]
        if outcome == "ok":
            channel.put_nowait(StreamChunk(ChunkType.TOOL_START, session_id, tool_name="Edit"))
            channel.put_nowait(StreamChunk(
                ChunkType.TOOL_USE,
                session_id,
                tool_name="Edit",
                tool_input=json.dumps({"file_path": "/repo/src/app.py"}),
            ))
            channel.put_nowait(StreamChunk(ChunkType.TOOL_RESULT, session_id, content="ok"))
            channel.put_nowait(StreamChunk(ChunkType.RESULT, session_id, content="Done", is_error=False))
        elif outcome == "error":
            channel.put_nowait(StreamChunk(ChunkType.RESULT, session_id, content="rate limited", is_error=True))
        elif outcome == "exit":
            channel.put_nowait(StreamChunk(ChunkType.DONE, session_id, content="exit_code:1"))

    async def terminate(self, session_id: str) -> None:
        self.terminated.append(session_id)
        if self.fail_terminate:
            raise RuntimeError("process already gone")


def passing() -> VerificationResult:
    return VerificationResult(success=True)


def failing(category: str = "tests", output: str = "1 failed") -> VerificationResult:
    result = VerificationResult(success=False)
    setattr(result, category, CheckResult(success=False, output=output))
    return result


class FakeVerifier:
    def __init__(self, results: list[VerificationResult | Exception] | None = None) -> None:
        self.results = list(results or [])
        self.calls: list[tuple[bool, bool, bool]] = []

    async def run(
        self,
        project_path: str,
        run_lint: bool,
        run_tests: bool,
        run_build: bool,
    ) -> VerificationResult:
        self.calls.append((run_lint, run_tests, run_build))
        result = self.results.pop(0) if self.results else passing()
        if isinstance(result, Exception):
            raise result
        return result


class FakeVcs:
    def __init__(self) -> None:
        self.commits: list[tuple[str, str]] = []
        self.fail = False

    async def commit(self, project_path: str, message: str, issue_id: str) -> None:
        if self.fail:
            raise CommitError("Failed to commit: index.lock exists")
        self.commits.append((issue_id, message))


class FakeSilo:
    def __init__(self) -> None:
        self.notes: dict[str, str] = {}

    async def read(self, project_path: str, issue_id: str) -> str | None:
        return self.notes.get(issue_id)

    async def write(self, project_path: str, issue_id: str, content: str) -> None:
        self.notes[issue_id] = content


@dataclass
class Harness:
    coordinator: AutoBuildCoordinator
    tracker: FakeTracker
    agent: FakeAgent
    verifier: FakeVerifier
    vcs: FakeVcs
    silo: FakeSilo
    config: AutoBuildYamlConfig
    events: list[Any] = field(default_factory=list)


def make_issues(*ids: str) -> list[Issue]:
    return [Issue(id=i, title=f"Implement {i}", description=f"Details for {i}") for i in ids]


def make_config(project_path: Path, timeout_seconds: float = 5.0, **settings: Any) -> AutoBuildYamlConfig:
    return AutoBuildYamlConfig(
        project=ProjectConfig(path=str(project_path)),
        settings=BuildSettings(**settings),
        agent=AgentConfig(timeout_seconds=timeout_seconds),
    )


def make_harness(
    project_path: Path,
    *,
    issues: list[Issue] | None = None,
    agent: FakeAgent | None = None,
    verifier: FakeVerifier | None = None,
    config: AutoBuildYamlConfig | None = None,
    **settings: Any,
) -> Harness:
    cfg = config or make_config(project_path, **settings)
    tracker = FakeTracker(issues if issues is not None else make_issues("bd-1", "bd-2", "bd-3"))
    agent = agent or FakeAgent()
    verifier = verifier or FakeVerifier()
    vcs = FakeVcs()
    silo = FakeSilo()
    coordinator = AutoBuildCoordinator(
        cfg,
        Collaborators(tracker=tracker, agent=agent, verifier=verifier, vcs=vcs, silo=silo),
    )
    harness = Harness(coordinator, tracker, agent, verifier, vcs, silo, cfg)
    coordinator.bus.subscribe(harness.events.append)
    return harness
