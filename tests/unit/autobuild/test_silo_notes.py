"""Tests for SILO progress notes and the on-disk store."""

from __future__ import annotations

from pathlib import Path

import pytest

from autobuild.adapters.silo_files import FileSiloStore
from autobuild.coordinator.silo import SiloNotes
from autobuild.errors import InvalidIssueIdError
from autobuild.protocol.models import Issue, SiloProgress
from tests.helpers import FakeSilo


def test_markdown_round_trip_keeps_lists() -> None:
    note = SiloProgress(
        issue_id="bd-1",
        issue_title="Add login",
        issue_description="Users need to log in",
        what_was_done=["Added form", "Wired API"],
        whats_next=["Run verification"],
        current_step="working",
    )
    parsed = SiloProgress.from_markdown("bd-1", note.to_markdown())
    assert parsed.issue_title == "Add login"
    assert parsed.what_was_done == ["Added form", "Wired API"]
    assert parsed.whats_next == ["Run verification"]
    assert parsed.current_step == "working"


def test_empty_sections_parse_as_empty() -> None:
    text = SiloProgress(issue_id="bd-1", issue_title="t").to_markdown()
    parsed = SiloProgress.from_markdown("bd-1", text)
    assert parsed.what_was_done == []
    assert parsed.whats_next == []


@pytest.mark.asyncio
async def test_record_appends_history() -> None:
    store = FakeSilo()
    notes = SiloNotes(store, "/repo")
    issue = Issue("bd-1", "Add login")
    await notes.record(issue, ["Implementation pass completed"], ["Run verification"], "working")
    await notes.record(issue, ["Fix attempt 1 for tests"], ["Re-run verification"], "fixing")
    parsed = SiloProgress.from_markdown("bd-1", store.notes["bd-1"])
    assert parsed.what_was_done == ["Implementation pass completed", "Fix attempt 1 for tests"]
    assert parsed.whats_next == ["Re-run verification"]
    assert parsed.current_step == "fixing"


@pytest.mark.asyncio
async def test_store_failures_are_swallowed_and_logged() -> None:
    class Broken:
        async def read(self, project_path: str, issue_id: str) -> str | None:
            raise OSError("read-only fs")

        async def write(self, project_path: str, issue_id: str, content: str) -> None:
            raise OSError("read-only fs")

    notes = SiloNotes(Broken(), "/repo")
    assert await notes.read("bd-1") is None
    assert await notes.record(Issue("bd-1", "t"), ["x"], [], "working") is None


@pytest.mark.asyncio
async def test_file_store(tmp_path: Path) -> None:
    store = FileSiloStore()
    assert await store.read(str(tmp_path), "bd-1") is None
    await store.write(str(tmp_path), "bd-1", "# bd-1: t\n")
    assert (tmp_path / "_SILO" / "bd-1.md").read_text(encoding="utf-8") == "# bd-1: t\n"
    assert await store.read(str(tmp_path), "bd-1") == "# bd-1: t\n"


def test_file_store_rejects_path_traversal(tmp_path: Path) -> None:
    with pytest.raises(InvalidIssueIdError):
        FileSiloStore().path_for(str(tmp_path), "../etc/passwd")
