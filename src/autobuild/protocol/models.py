"""Protocol types for autobuild: issues, settings, results, session record."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from autobuild.errors import ConfigurationError

OrchestratorStatus = Literal["idle", "running", "paused"]
Phase = Literal["working", "testing", "fixing", "committing", "reviewing"]
LogType = Literal["info", "success", "warning", "error", "claude"]

STATUSES: tuple[str, ...] = ("idle", "running", "paused")
PHASES: tuple[str, ...] = ("working", "testing", "fixing", "committing", "reviewing")

PHASE_LABELS: dict[str, str] = {
    "working": "Working on code",
    "testing": "Running verification",
    "fixing": "Fixing issues",
    "committing": "Committing changes",
    "reviewing": "Awaiting review",
}


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(slots=True)
class Issue:
    id: str
    title: str
    description: str | None = None
    issue_type: str = "task"
    priority: int = 2
    status: str = "open"

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Issue:
        description = raw.get("description")
        return cls(
            id=str(raw.get("id", "")),
            title=str(raw.get("title", "")),
            description=str(description) if description else None,
            issue_type=str(raw.get("issue_type") or raw.get("type") or "task"),
            priority=int(raw.get("priority", 2)),
            status=str(raw.get("status", "open")),
        )


@dataclass(slots=True, frozen=True)
class BuildSettings:
    auto_commit: bool = True
    run_lint: bool = True
    run_tests: bool = True
    run_build: bool = True
    max_retries: int = 1
    priority_threshold: int = 4
    require_human_review: bool = True

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {self.max_retries}")

    def with_changes(self, **changes: Any) -> BuildSettings:
        unknown = set(changes) - set(self.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(f"Unknown settings: {sorted(unknown)}")
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> BuildSettings:
        if not isinstance(raw, dict):
            return cls()
        allowed = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in raw.items() if k in allowed})


@dataclass(slots=True)
class CheckResult:
    success: bool = True
    output: str = ""


@dataclass(slots=True)
class VerificationResult:
    success: bool = True
    lint: CheckResult = field(default_factory=CheckResult)
    tests: CheckResult = field(default_factory=CheckResult)
    build: CheckResult = field(default_factory=CheckResult)

    @classmethod
    def failed(cls, message: str) -> VerificationResult:
        return cls(
            success=False,
            lint=CheckResult(False, message),
            tests=CheckResult(False, message),
            build=CheckResult(False, message),
        )

    def categories(self) -> list[tuple[str, CheckResult]]:
        return [("lint", self.lint), ("tests", self.tests), ("build", self.build)]


@dataclass(slots=True)
class StreamingSession:
    session_id: str
    start_time: float
    current_action: str = "Starting..."
    current_tool: str | None = None


@dataclass(slots=True)
class LogEntry:
    id: str
    timestamp: str
    type: LogType
    message: str
    issue_id: str | None = None


class ChunkType(StrEnum):
    """Kinds of events on an agent session's stream."""

    INIT = "init"
    TEXT = "text"
    TOOL_START = "tool_start"
    TOOL_USE = "tool_use"
    TOOL_INPUT_DELTA = "tool_input_delta"
    TOOL_RESULT = "tool_result"
    RESULT = "result"
    ERROR = "error"
    DONE = "done"


@dataclass(slots=True)
class StreamChunk:
    chunk_type: ChunkType
    session_id: str
    tool_name: str | None = None
    tool_input: str | None = None
    content: str | None = None
    is_error: bool | None = None
    subtype: str | None = None


@dataclass(slots=True)
class SiloProgress:
    """Free-text progress note kept per issue between agent invocations."""

    issue_id: str
    issue_title: str
    issue_description: str | None = None
    what_was_done: list[str] = field(default_factory=list)
    whats_next: list[str] = field(default_factory=list)
    current_step: str = ""
    last_updated: str = field(default_factory=utc_now_iso)

    def to_markdown(self) -> str:
        lines = [f"# {self.issue_id}: {self.issue_title}", ""]
        if self.issue_description:
            lines += [self.issue_description, ""]
        lines.append("## What was done")
        lines += [f"- {item}" for item in self.what_was_done] or ["- (nothing yet)"]
        lines += ["", "## What's next"]
        lines += [f"- {item}" for item in self.whats_next] or ["- (nothing planned)"]
        lines += [
            "",
            f"Current step: {self.current_step}",
            f"Last updated: {self.last_updated}",
            "",
        ]
        return "\n".join(lines)

    @classmethod
    def from_markdown(cls, issue_id: str, text: str) -> SiloProgress:
        title = ""
        header = re.match(r"#\s+[^:]+:\s*(.*)", text)
        if header:
            title = header.group(1).strip()
        done: list[str] = []
        upcoming: list[str] = []
        current_step = ""
        section: list[str] | None = None
        for line in text.splitlines():
            stripped = line.strip()
            if stripped == "## What was done":
                section = done
            elif stripped == "## What's next":
                section = upcoming
            elif stripped.startswith("Current step:"):
                current_step = stripped.split(":", 1)[1].strip()
                section = None
            elif stripped.startswith("- ") and section is not None:
                item = stripped[2:].strip()
                if not (item.startswith("(") and item.endswith(")")):
                    section.append(item)
        return cls(
            issue_id=issue_id,
            issue_title=title,
            what_was_done=done,
            whats_next=upcoming,
            current_step=current_step,
        )


@dataclass(slots=True)
class SessionRecord:
    session_id: str
    status: str
    queue: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    human_review: list[str] = field(default_factory=list)
    current_issue_id: str | None = None
    current_phase: str | None = None
    retry_count: int = 0
    started_at: str = field(default_factory=utc_now_iso)
    last_activity_at: str = field(default_factory=utc_now_iso)
    settings: BuildSettings = field(default_factory=BuildSettings)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["settings"] = self.settings.to_dict()
        return data

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> SessionRecord:
        status = str(raw.get("status", "idle"))
        phase = raw.get("current_phase")
        current = raw.get("current_issue_id")
        return cls(
            session_id=str(raw.get("session_id", "")),
            status=status if status in STATUSES else "idle",
            queue=[str(x) for x in raw.get("queue", []) if isinstance(x, str)],
            completed=[str(x) for x in raw.get("completed", []) if isinstance(x, str)],
            human_review=[str(x) for x in raw.get("human_review", []) if isinstance(x, str)],
            current_issue_id=str(current) if current else None,
            current_phase=str(phase) if phase in PHASES else None,
            retry_count=int(raw.get("retry_count", 0) or 0),
            started_at=str(raw.get("started_at", "")),
            last_activity_at=str(raw.get("last_activity_at", "")),
            settings=BuildSettings.from_dict(raw.get("settings")),
        )
