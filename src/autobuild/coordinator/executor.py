"""Streaming work executor: one agent session per implementation or fix pass."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from typing import Any

from autobuild.adapters.base import AgentProcess
from autobuild.config.schema import AgentConfig
from autobuild.coordinator.activity_log import LogSink
from autobuild.coordinator.event_bus import BuildEvent, EventBus
from autobuild.coordinator.issue_cache import IssueCache
from autobuild.coordinator.prompts import build_fix_prompt, build_work_prompt
from autobuild.coordinator.silo import SiloNotes
from autobuild.protocol.models import ChunkType, StreamChunk, StreamingSession

logger = logging.getLogger(__name__)

PROCESSING_LABEL = "Processing..."

_TOOL_VERBS = {
    "Edit": "Editing",
    "MultiEdit": "Editing",
    "Write": "Writing",
    "Read": "Reading",
    "NotebookEdit": "Editing",
    "Bash": "Running",
    "Grep": "Searching",
    "Glob": "Finding",
}

_PATH_KEYS = ("file_path", "path", "notebook_path")


def derive_action_label(tool_name: str | None, tool_input: dict[str, Any] | None = None) -> str:
    """Short human-readable label such as ``Editing app.py`` or ``Running npm test``."""
    name = tool_name or "tool"
    verb = _TOOL_VERBS.get(name, f"Using {name}")
    if not tool_input:
        return verb
    for key in _PATH_KEYS:
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            return f"{verb} {os.path.basename(value.rstrip('/')) or value}"
    command = tool_input.get("command") or tool_input.get("pattern")
    if isinstance(command, str) and command:
        command = " ".join(command.split())
        if len(command) > 40:
            command = command[:37] + "..."
        return f"{verb} {command}"
    return verb


class ToolInputBuffer:
    """Accumulates streamed tool-input JSON fragments; parsed only on demand."""

    def __init__(self) -> None:
        self.tool_name: str | None = None
        self._parts: list[str] = []

    def start(self, tool_name: str | None) -> None:
        self.tool_name = tool_name
        self._parts.clear()

    def feed(self, fragment: str | None) -> None:
        if fragment:
            self._parts.append(fragment)

    def parse(self) -> dict[str, Any] | None:
        if not self._parts:
            return None
        try:
            value = json.loads("".join(self._parts))
        except json.JSONDecodeError:
            return None
        return value if isinstance(value, dict) else None


class Resolution:
    """One-shot outcome: only the first ``settle`` call takes effect."""

    __slots__ = ("value", "reason", "_settled")

    def __init__(self) -> None:
        self.value = False
        self.reason = ""
        self._settled = False

    @property
    def settled(self) -> bool:
        return self._settled

    def settle(self, value: bool, reason: str) -> bool:
        if self._settled:
            return False
        self._settled = True
        self.value = value
        self.reason = reason
        return True


class StreamingWorkExecutor:
    """Runs the coding agent for one issue and reports whether it succeeded.

    Each call builds a prompt, opens a fresh agent session, and drains that
    session's chunk queue until a ``result`` arrives, the process exits, or
    the wall-clock deadline passes, whichever comes first.  The outcome is
    settled exactly once and the subscription is always released.
    """

    def __init__(
        self,
        agent: AgentProcess,
        issues: IssueCache,
        silo: SiloNotes,
        log: LogSink,
        project_path: str,
        config: AgentConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._agent = agent
        self._issues = issues
        self._silo = silo
        self._log = log
        self._project_path = project_path
        self._config = config or AgentConfig()
        self._bus = event_bus
        self.session: StreamingSession | None = None

    @property
    def timeout_seconds(self) -> float:
        return self._config.timeout_seconds

    async def execute(self, issue_id: str, fix_mode: bool = False, errors: str = "") -> bool:
        issue = await self._issues.resolve(issue_id)
        if issue is None:
            self._log("error", f"Issue {issue_id} not found", issue_id)
            return False

        silo_context = await self._silo.read(issue_id)
        if fix_mode:
            prompt = build_fix_prompt(issue, errors, silo_context)
        else:
            prompt = build_work_prompt(issue, silo_context)

        session_id = f"autobuild-{issue_id}-{uuid.uuid4().hex[:8]}"
        self.session = StreamingSession(session_id=session_id, start_time=time.time())
        resolution = Resolution()
        channel = self._agent.subscribe(session_id)
        try:
            try:
                await self._agent.start(
                    self._project_path,
                    session_id,
                    self._config.permission_mode,
                    self._config.safe_mode,
                )
                await self._agent.send(session_id, prompt)
            except Exception as exc:
                resolution.settle(False, "start_failed")
                self._log("error", f"Failed to start agent: {exc}", issue_id)
                return False

            self._log(
                "claude",
                "Fixing verification failures..." if fix_mode else "Agent started",
                issue_id,
            )
            await self._drain(channel, resolution, issue_id, session_id)
            return resolution.value
        finally:
            self._agent.unsubscribe(session_id)
            self.session = None

    async def _drain(
        self,
        channel: asyncio.Queue[StreamChunk],
        resolution: Resolution,
        issue_id: str,
        session_id: str,
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.timeout_seconds
        buffer = ToolInputBuffer()
        while not resolution.settled:
            remaining = deadline - loop.time()
            try:
                if remaining <= 0:
                    raise TimeoutError
                chunk = await asyncio.wait_for(channel.get(), timeout=remaining)
            except TimeoutError:
                if resolution.settle(False, "timeout"):
                    self._log(
                        "error",
                        f"Agent timed out after {self._config.timeout_seconds:g}s",
                        issue_id,
                    )
                    await self._terminate(session_id, issue_id)
                return
            self._handle_chunk(chunk, resolution, buffer, issue_id)

    def _handle_chunk(
        self,
        chunk: StreamChunk,
        resolution: Resolution,
        buffer: ToolInputBuffer,
        issue_id: str,
    ) -> None:
        match chunk.chunk_type:
            case ChunkType.TOOL_START:
                buffer.start(chunk.tool_name)
                self._set_action(chunk.tool_name, derive_action_label(chunk.tool_name), issue_id)
            case ChunkType.TOOL_INPUT_DELTA:
                buffer.feed(chunk.content)
            case ChunkType.TOOL_USE:
                tool_input = _load_input(chunk.tool_input)
                if tool_input is None and buffer.tool_name == chunk.tool_name:
                    tool_input = buffer.parse()
                self._set_action(chunk.tool_name, derive_action_label(chunk.tool_name, tool_input), issue_id)
            case ChunkType.TOOL_RESULT:
                buffer.start(None)
                self._set_action(None, PROCESSING_LABEL, issue_id)
            case ChunkType.RESULT:
                ok = not chunk.is_error
                if not resolution.settle(ok, "result"):
                    return
                if ok:
                    self._log("success", "Agent completed", issue_id)
                else:
                    self._log("error", f"Agent error: {chunk.content or 'unknown error'}", issue_id)
            case ChunkType.ERROR:
                self._log("warning", f"Agent stream error: {chunk.content or ''}", issue_id)
            case ChunkType.DONE:
                if resolution.settle(False, "exited"):
                    self._log(
                        "error",
                        f"Agent exited without a result ({chunk.content or 'no exit code'})",
                        issue_id,
                    )
            case _:
                logger.debug("%s %s: %s", issue_id, chunk.chunk_type, (chunk.content or "")[:200])

    def _set_action(self, tool_name: str | None, label: str, issue_id: str) -> None:
        if self.session is None:
            return
        self.session.current_action = label
        self.session.current_tool = tool_name
        logger.debug("[%s] %s", issue_id, label)
        if self._bus is not None:
            self._bus.emit(BuildEvent(
                event_type="action",
                issue_id=issue_id,
                data={"tool": tool_name, "session_id": self.session.session_id},
                message=label,
            ))

    async def _terminate(self, session_id: str, issue_id: str) -> None:
        try:
            await self._agent.terminate(session_id)
        except Exception as exc:
            logger.warning("Terminating agent session %s for %s failed: %s", session_id, issue_id, exc)


def _load_input(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None
