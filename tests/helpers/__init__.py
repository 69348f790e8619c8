"""Shared test helpers for the autobuild test suite."""

from __future__ import annotations

from tests.helpers.fakes import (
    FakeAgent,
    FakeSilo,
    FakeTracker,
    FakeVcs,
    FakeVerifier,
    Harness,
    failing,
    make_config,
    make_harness,
    make_issues,
    passing,
)

__all__ = [
    "FakeAgent",
    "FakeSilo",
    "FakeTracker",
    "FakeVcs",
    "FakeVerifier",
    "Harness",
    "failing",
    "make_config",
    "make_harness",
    "make_issues",
    "passing",
]
