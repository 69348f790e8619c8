"""Global test fixtures for autobuild."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture
def tmp_workdir(tmp_path: Path) -> Path:
    """A project directory with an initialised tracker folder."""
    (tmp_path / ".beads").mkdir()
    return tmp_path
