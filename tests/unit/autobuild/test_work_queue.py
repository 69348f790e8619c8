"""Tests for WorkQueue and the coordinator's queue operations."""

from __future__ import annotations

import random
from pathlib import Path

import pytest

from autobuild.coordinator.work_queue import WorkQueue
from autobuild.protocol.models import Issue
from tests.helpers import make_harness


class TestWorkQueue:
    def test_enqueue_appends_and_rejects_duplicates(self) -> None:
        q = WorkQueue()
        assert q.enqueue("a")
        assert q.enqueue("b")
        assert not q.enqueue("a")
        assert q.to_list() == ["a", "b"]

    def test_constructor_dedupes(self) -> None:
        assert WorkQueue(["a", "b", "a"]).to_list() == ["a", "b"]

    def test_dequeue_missing_is_noop(self) -> None:
        q = WorkQueue(["a"])
        assert not q.dequeue("zzz")
        assert q.to_list() == ["a"]

    def test_dequeue_from_middle(self) -> None:
        q = WorkQueue(["a", "b", "c"])
        assert q.dequeue("b")
        assert q.to_list() == ["a", "c"]

    def test_reorder_moves_item(self) -> None:
        q = WorkQueue(["a", "b", "c"])
        q.reorder(2, 0)
        assert q.to_list() == ["c", "a", "b"]
        q.reorder(0, 2)
        assert q.to_list() == ["a", "b", "c"]

    def test_reorder_out_of_range(self) -> None:
        q = WorkQueue(["a"])
        with pytest.raises(IndexError):
            q.reorder(0, 3)

    def test_push_front_moves_existing(self) -> None:
        q = WorkQueue(["a", "b"])
        q.push_front("b")
        q.push_front("z")
        assert q.to_list() == ["z", "b", "a"]
        assert q.head == "z"

    def test_empty_queue(self) -> None:
        q = WorkQueue()
        assert q.head is None
        assert not q
        assert len(q) == 0

    def test_random_ops_never_duplicate(self) -> None:
        rng = random.Random(7)
        q = WorkQueue()
        ids = [f"bd-{i}" for i in range(6)]
        for _ in range(500):
            op = rng.choice(["enqueue", "dequeue", "reorder", "push_front"])
            if op == "enqueue":
                q.enqueue(rng.choice(ids))
            elif op == "dequeue":
                q.dequeue(rng.choice(ids))
            elif op == "push_front":
                q.push_front(rng.choice(ids))
            elif len(q) > 1:
                q.reorder(rng.randrange(len(q)), rng.randrange(len(q)))
            items = q.to_list()
            assert len(items) == len(set(items))


class TestCoordinatorQueueOps:
    def test_enqueue_persists(self, tmp_workdir: Path) -> None:
        h = make_harness(tmp_workdir)
        assert h.coordinator.enqueue("bd-1")
        assert not h.coordinator.enqueue("bd-1")
        record = h.coordinator.store.load()
        assert record is not None
        assert record.queue == ["bd-1"]

    def test_dequeue_persists(self, tmp_workdir: Path) -> None:
        h = make_harness(tmp_workdir)
        h.coordinator.enqueue("bd-1")
        h.coordinator.enqueue("bd-2")
        assert h.coordinator.dequeue("bd-1")
        assert not h.coordinator.dequeue("bd-9")
        record = h.coordinator.store.load()
        assert record is not None
        assert record.queue == ["bd-2"]

    def test_enqueue_rejects_item_in_review(self, tmp_workdir: Path) -> None:
        h = make_harness(tmp_workdir)
        h.coordinator.state.human_review.append("bd-1")
        assert not h.coordinator.enqueue("bd-1")
        assert "bd-1" not in h.coordinator.state.queue

    def test_enqueue_requeues_blocked_item(self, tmp_workdir: Path) -> None:
        h = make_harness(tmp_workdir)
        h.coordinator.state.blocked.append("bd-1")
        assert h.coordinator.enqueue("bd-1")
        assert h.coordinator.state.blocked == []

    def test_clear_queue(self, tmp_workdir: Path) -> None:
        h = make_harness(tmp_workdir)
        h.coordinator.enqueue("bd-1")
        h.coordinator.enqueue("bd-2")
        h.coordinator.clear_queue()
        assert h.coordinator.state.queue.to_list() == []

    @pytest.mark.asyncio
    async def test_enqueue_ready_filters_and_sorts(self, tmp_workdir: Path) -> None:
        issues = [
            Issue("bd-low", "low", priority=4),
            Issue("bd-skip", "too low", priority=3),
            Issue("bd-top", "urgent", priority=0),
            Issue("bd-done", "closed", priority=0, status="closed"),
            Issue("bd-mid", "mid", priority=1),
        ]
        h = make_harness(tmp_workdir, issues=issues, priority_threshold=2)
        h.coordinator.state.human_review.append("bd-mid")
        added = await h.coordinator.enqueue_ready()
        assert added == ["bd-top"]

        h2 = make_harness(tmp_workdir, issues=issues, priority_threshold=4)
        added = await h2.coordinator.enqueue_ready()
        assert added == ["bd-top", "bd-mid", "bd-skip", "bd-low"]

    @pytest.mark.asyncio
    async def test_enqueue_ready_tracker_failure(self, tmp_workdir: Path) -> None:
        h = make_harness(tmp_workdir)
        h.tracker.fail_list = True
        assert await h.coordinator.enqueue_ready() == []
        assert any(e.type == "error" for e in h.coordinator.activity.entries)
