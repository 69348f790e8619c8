"""Configuration schema for autobuild YAML files."""

from __future__ import annotations

from dataclasses import dataclass, field

from autobuild.protocol.models import BuildSettings

REFACTOR_TARGETS: tuple[str, ...] = ("original", "refactor_issue")


@dataclass(slots=True)
class ProjectConfig:
    path: str = "."
    session_file: str = ".beads/.autobuild-session.json"
    silo_dir: str = "_SILO"
    events_file: str = ""  # empty = keep events in memory only


@dataclass(slots=True)
class AgentConfig:
    backend: str = "claude"
    binary: str = "claude"
    model: str = ""  # empty string = use the tool's own default model
    permission_mode: str = "acceptEdits"
    safe_mode: bool = True
    timeout_seconds: float = 600.0  # hard wall-clock limit per invocation (10 min)


@dataclass(slots=True)
class VerificationConfig:
    lint: list[str] = field(default_factory=list)  # empty = auto-detect
    tests: list[str] = field(default_factory=list)
    build: list[str] = field(default_factory=list)
    timeout_seconds: float = 900.0


@dataclass(slots=True)
class TrackerConfig:
    binary: str = "bd"


@dataclass(slots=True)
class ReviewConfig:
    refactor_target: str = "original"  # "original" | "refactor_issue"
    refactor_issue_type: str = "task"


@dataclass(slots=True)
class LimitsConfig:
    log_capacity: int = 100
    completed_limit: int = 10


@dataclass(slots=True)
class AutoBuildYamlConfig:
    version: int = 1
    project: ProjectConfig = field(default_factory=ProjectConfig)
    settings: BuildSettings = field(default_factory=BuildSettings)
    agent: AgentConfig = field(default_factory=AgentConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    review: ReviewConfig = field(default_factory=ReviewConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
