"""Tests for the bd CLI adapter."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from autobuild.adapters.beads import (
    BeadsTracker,
    parse_created_id,
    sanitize_text,
    validate_issue_id,
)
from autobuild.errors import InvalidIssueIdError, TrackerError


class TestValidation:
    @pytest.mark.parametrize("issue_id", ["bd-1", "proj.a1b2", "X9"])
    def test_valid_ids(self, issue_id: str) -> None:
        validate_issue_id(issue_id)

    @pytest.mark.parametrize("issue_id", ["", "-bd", "bd 1", "bd;rm", "../x", "a" * 101])
    def test_invalid_ids(self, issue_id: str) -> None:
        with pytest.raises(InvalidIssueIdError):
            validate_issue_id(issue_id)

    def test_sanitize_text(self) -> None:
        assert sanitize_text("run `rm -rf` $HOME\nnow") == "run  rm -rf   HOME now"

    def test_parse_created_id(self) -> None:
        assert parse_created_id("Created issue: bd-42\n") == "bd-42"
        assert parse_created_id("✓ Created issue: proj-a1b2\n  Title: x\n\n") == "proj-a1b2"
        assert parse_created_id("bd-7\n") == "bd-7"
        assert parse_created_id("") is None


def _tracker_with_output(stdout: str, returncode: int = 0, stderr: str = "") -> tuple[BeadsTracker, AsyncMock]:
    proc = AsyncMock()
    proc.communicate.return_value = (stdout.encode(), stderr.encode())
    proc.returncode = returncode
    spawn = AsyncMock(return_value=proc)
    return BeadsTracker(), spawn


@pytest.mark.asyncio
async def test_list_parses_export(tmp_workdir: Path) -> None:
    export = (
        '{"id": "bd-1", "title": "One", "issue_type": "bug", "priority": 1, "status": "open"}\n'
        "not json\n"
        '{"id": "bd-2", "title": "Two", "description": "d"}\n'
    )
    tracker, spawn = _tracker_with_output(export)
    with patch("asyncio.create_subprocess_exec", spawn):
        issues = await tracker.list(str(tmp_workdir))
    assert [i.id for i in issues] == ["bd-1", "bd-2"]
    assert issues[0].issue_type == "bug"
    assert issues[1].description == "d"
    assert spawn.call_args.args[:2] == ("bd", "export")


@pytest.mark.asyncio
async def test_create_builds_args(tmp_workdir: Path) -> None:
    tracker, spawn = _tracker_with_output("Created issue: bd-9\n")
    with patch("asyncio.create_subprocess_exec", spawn):
        new_id = await tracker.create(str(tmp_workdir), "Refactor: `x`", "task", 2, "Reason: $y")
    assert new_id == "bd-9"
    assert spawn.call_args.args == (
        "bd", "create", "Refactor:  x ", "-t", "task", "-p", "2", "-d", "Reason:  y",
    )


@pytest.mark.asyncio
async def test_update_and_close_args(tmp_workdir: Path) -> None:
    tracker, spawn = _tracker_with_output("")
    with patch("asyncio.create_subprocess_exec", spawn):
        await tracker.update(str(tmp_workdir), "bd-1", {"status": "blocked"})
        assert spawn.call_args.args == ("bd", "update", "bd-1", "--status", "blocked")
        await tracker.close(str(tmp_workdir), "bd-1", "Completed by Auto Build")
        assert spawn.call_args.args == ("bd", "close", "bd-1", "--reason", "Completed by Auto Build")


@pytest.mark.asyncio
async def test_rejects_bad_input_before_spawning(tmp_workdir: Path) -> None:
    tracker, spawn = _tracker_with_output("")
    with patch("asyncio.create_subprocess_exec", spawn):
        with pytest.raises(TrackerError):
            await tracker.update(str(tmp_workdir), "bd-1", {"status": "exploded"})
        with pytest.raises(TrackerError):
            await tracker.create(str(tmp_workdir), "t", "saga", 2, "")
        with pytest.raises(TrackerError):
            await tracker.create(str(tmp_workdir), "t", "task", 9, "")
        with pytest.raises(InvalidIssueIdError):
            await tracker.close(str(tmp_workdir), "bd;1", "x")
    spawn.assert_not_called()


@pytest.mark.asyncio
async def test_nonzero_exit_with_stderr_raises(tmp_workdir: Path) -> None:
    tracker, spawn = _tracker_with_output("", returncode=1, stderr="no such issue")
    with patch("asyncio.create_subprocess_exec", spawn):
        with pytest.raises(TrackerError, match="no such issue"):
            await tracker.close(str(tmp_workdir), "bd-1", "x")


@pytest.mark.asyncio
async def test_requires_beads_dir(tmp_path: Path) -> None:
    with pytest.raises(TrackerError, match="bd init"):
        await BeadsTracker().list(str(tmp_path))


@pytest.mark.asyncio
async def test_missing_binary(tmp_workdir: Path) -> None:
    with pytest.raises(TrackerError, match="not installed"):
        await BeadsTracker(binary="bd-definitely-not-installed").list(str(tmp_workdir))
