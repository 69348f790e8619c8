"""YAML config loader for autobuild."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from autobuild.config.schema import (
    REFACTOR_TARGETS,
    AgentConfig,
    AutoBuildYamlConfig,
    LimitsConfig,
    ProjectConfig,
    ReviewConfig,
    TrackerConfig,
    VerificationConfig,
)
from autobuild.errors import ConfigurationError
from autobuild.protocol.models import BuildSettings


def load_autobuild_yaml(path: str | Path) -> AutoBuildYamlConfig:
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) if p.exists() else {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Cannot parse {p}: {exc}") from exc
    if not isinstance(raw, dict):
        raw = {}

    project = ProjectConfig(**_pick(_section(raw, "project"), ProjectConfig))
    settings = BuildSettings(**_pick(_section(raw, "settings"), BuildSettings))
    agent = AgentConfig(**_pick(_section(raw, "agent"), AgentConfig))
    verification_raw = _pick(_section(raw, "verification"), VerificationConfig)
    for key in ("lint", "tests", "build"):
        if key in verification_raw:
            verification_raw[key] = _argv(verification_raw[key], key)
    verification = VerificationConfig(**verification_raw)
    tracker = TrackerConfig(**_pick(_section(raw, "tracker"), TrackerConfig))
    review = ReviewConfig(**_pick(_section(raw, "review"), ReviewConfig))
    limits = LimitsConfig(**_pick(_section(raw, "limits"), LimitsConfig))

    if review.refactor_target not in REFACTOR_TARGETS:
        raise ConfigurationError(
            f"review.refactor_target must be one of {REFACTOR_TARGETS}, got {review.refactor_target!r}"
        )
    if limits.log_capacity < 1 or limits.completed_limit < 1:
        raise ConfigurationError("limits.log_capacity and limits.completed_limit must be >= 1")

    cfg = AutoBuildYamlConfig(
        version=int(raw.get("version", 1)),
        project=project,
        settings=settings,
        agent=agent,
        verification=verification,
        tracker=tracker,
        review=review,
        limits=limits,
    )
    # Relative project paths are anchored at the config file's directory.
    if not Path(cfg.project.path).is_absolute() and p.exists():
        cfg.project.path = str((p.parent / cfg.project.path).resolve())
    return cfg


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


def _argv(value: Any, key: str) -> list[str]:
    if isinstance(value, str):
        return value.split()
    if isinstance(value, list):
        return [str(v) for v in value]
    raise ConfigurationError(f"verification.{key} must be a command string or list")


def _pick(raw: dict[str, Any], model_type: type[Any]) -> dict[str, Any]:
    allowed = set(model_type.__dataclass_fields__.keys())
    return {k: v for k, v in raw.items() if k in allowed}
