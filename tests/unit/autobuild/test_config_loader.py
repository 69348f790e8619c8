"""Tests for the YAML config loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from autobuild.config.loader import load_autobuild_yaml
from autobuild.errors import ConfigurationError


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_when_file_missing(tmp_path: Path) -> None:
    cfg = load_autobuild_yaml(tmp_path / "nope.yaml")
    assert cfg.settings.max_retries == 1
    assert cfg.settings.priority_threshold == 4
    assert cfg.settings.require_human_review is True
    assert cfg.agent.timeout_seconds == 600.0
    assert cfg.project.session_file == ".beads/.autobuild-session.json"
    assert cfg.review.refactor_target == "original"
    assert cfg.limits.log_capacity == 100
    assert cfg.limits.completed_limit == 10


def test_full_config(tmp_path: Path) -> None:
    path = _write(
        tmp_path / ".autobuild" / "autobuild.yaml",
        """
version: 1
project:
  path: ..
  silo_dir: notes
settings:
  auto_commit: false
  run_build: false
  max_retries: 3
  require_human_review: false
  bogus: ignored
agent:
  model: sonnet
  timeout_seconds: 120
verification:
  lint: ruff check src
  tests: [pytest, -x]
review:
  refactor_target: refactor_issue
limits:
  completed_limit: 5
""",
    )
    cfg = load_autobuild_yaml(path)
    assert cfg.project.path == str(tmp_path.resolve())
    assert cfg.project.silo_dir == "notes"
    assert cfg.settings.auto_commit is False
    assert cfg.settings.run_build is False
    assert cfg.settings.max_retries == 3
    assert cfg.agent.model == "sonnet"
    assert cfg.agent.timeout_seconds == 120
    assert cfg.verification.lint == ["ruff", "check", "src"]
    assert cfg.verification.tests == ["pytest", "-x"]
    assert cfg.verification.build == []
    assert cfg.review.refactor_target == "refactor_issue"
    assert cfg.limits.completed_limit == 5


def test_bad_section_falls_back_to_defaults(tmp_path: Path) -> None:
    path = _write(tmp_path / "a.yaml", "settings: not-a-mapping\nagent: [1, 2]\n")
    cfg = load_autobuild_yaml(path)
    assert cfg.settings.max_retries == 1
    assert cfg.agent.binary == "claude"


def test_negative_retries_rejected(tmp_path: Path) -> None:
    path = _write(tmp_path / "a.yaml", "settings:\n  max_retries: -1\n")
    with pytest.raises(ConfigurationError):
        load_autobuild_yaml(path)


def test_unknown_refactor_target_rejected(tmp_path: Path) -> None:
    path = _write(tmp_path / "a.yaml", "review:\n  refactor_target: both\n")
    with pytest.raises(ConfigurationError, match="refactor_target"):
        load_autobuild_yaml(path)


def test_invalid_yaml(tmp_path: Path) -> None:
    path = _write(tmp_path / "a.yaml", "settings: [unclosed\n")
    with pytest.raises(ConfigurationError):
        load_autobuild_yaml(path)


def test_bad_verification_command(tmp_path: Path) -> None:
    path = _write(tmp_path / "a.yaml", "verification:\n  lint: 42\n")
    with pytest.raises(ConfigurationError, match="verification.lint"):
        load_autobuild_yaml(path)
