"""Auto Build coordinator: queue, phase state machine, review gate, recovery."""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from autobuild.adapters.base import Collaborators
from autobuild.config.schema import AutoBuildYamlConfig
from autobuild.coordinator.activity_log import ActivityLog
from autobuild.coordinator.event_bus import BuildEvent, EventBus
from autobuild.coordinator.executor import StreamingWorkExecutor
from autobuild.coordinator.fix_loop import run_fix_loop
from autobuild.coordinator.issue_cache import IssueCache
from autobuild.coordinator.session_store import SessionStore
from autobuild.coordinator.silo import SiloNotes
from autobuild.coordinator.verification import (
    VerificationGate,
    failed_category_names,
    format_failures,
)
from autobuild.coordinator.work_queue import WorkQueue
from autobuild.errors import AutoBuildError, PersistenceError
from autobuild.protocol.models import (
    PHASE_LABELS,
    BuildSettings,
    Issue,
    LogType,
    OrchestratorStatus,
    Phase,
    SessionRecord,
    VerificationResult,
    utc_now_iso,
)

log = logging.getLogger(__name__)

CLOSE_REASON_AUTO = "Completed by Auto Build"
CLOSE_REASON_REVIEW = "Approved in human review"


@dataclass(slots=True)
class OrchestratorState:
    status: OrchestratorStatus = "idle"
    current_issue_id: str | None = None
    current_phase: Phase | None = None
    queue: WorkQueue = field(default_factory=WorkQueue)
    completed: deque[str] = field(default_factory=lambda: deque(maxlen=10))
    human_review: list[str] = field(default_factory=list)
    blocked: list[str] = field(default_factory=list)
    retry_count: int = 0
    progress: int = 0
    settings: BuildSettings = field(default_factory=BuildSettings)
    started_at: str | None = None


class AutoBuildCoordinator:
    """Owns the orchestrator state and drives issues through their phases.

    Every mutation of the state goes through a method here; each public
    operation persists the session record before returning.  The agent
    loop processes one issue at a time and only suspends at the awaited
    calls into its collaborators.
    """

    def __init__(
        self,
        config: AutoBuildYamlConfig,
        collaborators: Collaborators,
        *,
        event_bus: EventBus | None = None,
    ) -> None:
        self.config = config
        self.project_path = config.project.path
        self.tools = collaborators
        self.bus = event_bus or EventBus(persist_path=config.project.events_file or None)
        self.activity = ActivityLog(config.limits.log_capacity)
        self.state = OrchestratorState(
            completed=deque(maxlen=config.limits.completed_limit),
            settings=config.settings,
        )
        self.issues = IssueCache(self._list_issues)
        self.store = SessionStore(self.project_path, config.project.session_file)
        self.silo = SiloNotes(collaborators.silo, self.project_path)
        self.executor = StreamingWorkExecutor(
            collaborators.agent,
            self.issues,
            self.silo,
            self.log,
            self.project_path,
            config.agent,
            self.bus,
        )
        self.gate = VerificationGate(
            collaborators.verifier,
            self.project_path,
            lambda: self.state.settings,
            self.log,
        )
        self._loop_active = False

    # ------------------------------------------------------------------
    # Logging / notification
    # ------------------------------------------------------------------

    def log(self, type: LogType, message: str, issue_id: str | None = None) -> None:
        entry = self.activity.append(type, message, issue_id)
        self.bus.emit(BuildEvent(
            event_type="log",
            issue_id=issue_id or "",
            data={"type": type, "id": entry.id},
            message=message,
        ))

    def _emit_state(self) -> None:
        s = self.state
        self.bus.emit(BuildEvent(
            event_type="state",
            issue_id=s.current_issue_id or "",
            data={
                "status": s.status,
                "phase": s.current_phase,
                "progress": s.progress,
                "queue": s.queue.to_list(),
                "human_review": list(s.human_review),
            },
        ))

    def _set_phase(self, issue_id: str, phase: Phase, progress: int | None = None) -> None:
        self.state.current_phase = phase
        if progress is not None:
            self.state.progress = progress
        self.log("info", f"Phase: {phase} ({PHASE_LABELS[phase]})", issue_id)
        self._emit_state()
        self.save_session()

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    def enqueue(self, issue_id: str) -> bool:
        s = self.state
        if issue_id in s.human_review:
            self.log("warning", "Already awaiting human review; not queued", issue_id)
            return False
        if not s.queue.enqueue(issue_id):
            return False
        if issue_id in s.blocked:
            s.blocked.remove(issue_id)
        if issue_id in s.completed:
            s.completed.remove(issue_id)
        self.log("info", "Added to queue", issue_id)
        self._emit_state()
        self.save_session()
        return True

    def dequeue(self, issue_id: str) -> bool:
        s = self.state
        if not s.queue.dequeue(issue_id):
            return False
        if s.current_issue_id == issue_id:
            self._clear_current()
        self.log("info", "Removed from queue", issue_id)
        self._emit_state()
        self.save_session()
        return True

    def reorder(self, from_index: int, to_index: int) -> None:
        self.state.queue.reorder(from_index, to_index)
        self._emit_state()

    def clear_queue(self) -> None:
        self.state.queue.clear()
        self._clear_current()
        self.log("info", "Queue cleared")
        self._emit_state()
        self.save_session()

    async def refresh_issues(self) -> list[Issue]:
        return await self.issues.refresh()

    async def enqueue_ready(self) -> list[str]:
        """Queue every open issue at or above the priority threshold."""
        threshold = self.state.settings.priority_threshold
        try:
            issues = await self.issues.refresh()
        except AutoBuildError as exc:
            self.log("error", f"Could not list issues: {exc}")
            return []
        ready = sorted(
            (i for i in issues if i.status == "open" and i.priority <= threshold),
            key=lambda i: (i.priority, i.id),
        )
        added = [i.id for i in ready if not self._placed(i.id) and self.enqueue(i.id)]
        if added:
            self.log("info", f"Queued {len(added)} ready issue(s)")
        return added

    def _placed(self, issue_id: str) -> bool:
        s = self.state
        return (
            issue_id in s.queue
            or issue_id in s.human_review
            or issue_id in s.completed
            or issue_id in s.blocked
        )

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def start(self) -> None:
        s = self.state
        if s.status == "running":
            return
        if not s.queue:
            self.log("warning", "Queue is empty; add issues before starting")
            return
        s.status = "running"
        s.started_at = s.started_at or utc_now_iso()
        self.log("info", f"Auto Build started with {len(s.queue)} issue(s)")
        self._emit_state()
        self.save_session()
        await self.run_agent_loop()

    def pause(self) -> None:
        if self.state.status != "running":
            return
        self.state.status = "paused"
        self.log("warning", "Auto Build paused")
        self._emit_state()
        self.save_session()

    async def resume(self) -> None:
        s = self.state
        if s.status != "paused":
            return
        if not s.queue:
            self._finish_drain(resumed=True)
            return
        s.status = "running"
        self.log("info", "Auto Build resumed")
        self._emit_state()
        self.save_session()
        await self.run_agent_loop()

    def stop(self) -> None:
        s = self.state
        s.status = "idle"
        self._clear_current()
        s.retry_count = 0
        s.progress = 0
        self.log("warning", "Auto Build stopped")
        self._emit_state()
        self.clear_session()

    def skip_current(self) -> str | None:
        s = self.state
        issue_id = s.current_issue_id
        if issue_id is None:
            return None
        s.queue.dequeue(issue_id)
        self._clear_current()
        self.log("warning", "Skipped", issue_id)
        self._emit_state()
        self.save_session()
        return issue_id

    def update_settings(self, **changes: Any) -> BuildSettings:
        self.state.settings = self.state.settings.with_changes(**changes)
        self.log("info", f"Settings updated: {', '.join(f'{k}={v}' for k, v in sorted(changes.items()))}")
        self.save_session()
        return self.state.settings

    def _clear_current(self) -> None:
        self.state.current_issue_id = None
        self.state.current_phase = None

    # ------------------------------------------------------------------
    # Session persistence
    # ------------------------------------------------------------------

    def to_record(self) -> SessionRecord:
        s = self.state
        return SessionRecord(
            session_id=f"session-{uuid.uuid4().hex[:12]}",
            status=s.status,
            queue=s.queue.to_list(),
            completed=list(s.completed),
            human_review=list(s.human_review),
            current_issue_id=s.current_issue_id,
            current_phase=s.current_phase,
            retry_count=s.retry_count,
            started_at=s.started_at or utc_now_iso(),
            last_activity_at=utc_now_iso(),
            settings=s.settings,
        )

    def save_session(self) -> bool:
        try:
            self.store.save(self.to_record())
        except PersistenceError as exc:
            log.warning("Session not saved: %s", exc)
            return False
        return True

    def load_session(self) -> bool:
        """Restore a persisted session; True when an active run was recovered."""
        try:
            record = self.store.load()
        except PersistenceError as exc:
            log.warning("Session not loaded: %s", exc)
            return False
        if record is None:
            return False

        s = self.state
        s.queue.replace(record.queue)
        s.completed.clear()
        s.completed.extend(record.completed)
        s.human_review = list(record.human_review)
        s.settings = record.settings

        if record.status in ("running", "paused"):
            s.status = "paused"
            s.current_issue_id = record.current_issue_id
            s.current_phase = record.current_phase  # type: ignore[assignment]
            s.retry_count = record.retry_count
            s.started_at = record.started_at or None
            self.log(
                "info",
                f"Recovered paused session: {len(s.queue)} queued, {len(s.human_review)} awaiting review",
            )
            self._emit_state()
            return True

        s.status = "idle"
        self._clear_current()
        s.retry_count = 0
        self._emit_state()
        return False

    def clear_session(self) -> None:
        try:
            self.store.clear()
        except PersistenceError as exc:
            log.warning("Session not cleared: %s", exc)

    # ------------------------------------------------------------------
    # Agent loop
    # ------------------------------------------------------------------

    async def run_agent_loop(self) -> None:
        if self._loop_active:
            log.debug("Agent loop already active")
            return
        self._loop_active = True
        try:
            while self.state.status == "running" and self.state.queue:
                issue_id = self.state.queue.head
                if issue_id is None:
                    break
                try:
                    await self._process_item(issue_id)
                except Exception as exc:
                    log.exception("Unhandled error while processing %s", issue_id)
                    if issue_id in self.state.queue:
                        await self._mark_blocked(issue_id, f"unexpected error: {exc}")
                    continue
                if self.state.status == "running" and self.state.queue.head == issue_id:
                    await self._mark_blocked(issue_id, "did not reach a terminal state")

            if self.state.status == "running":
                self._finish_drain()
            elif self.state.status == "paused":
                self.save_session()
        finally:
            self._loop_active = False

    def _finish_drain(self, resumed: bool = False) -> None:
        s = self.state
        self._clear_current()
        if s.human_review:
            s.status = "paused"
            self.log("warning", f"Queue drained; {len(s.human_review)} issue(s) awaiting human review")
            self._emit_state()
            self.save_session()
            return
        s.status = "idle"
        if not resumed:
            s.progress = 100
        self.log("success", "Auto Build complete: queue drained")
        self._emit_state()
        self.clear_session()

    def _abandoned(self, issue_id: str) -> bool:
        """True once the item was skipped, dequeued, or the run stopped."""
        s = self.state
        return s.current_issue_id != issue_id or issue_id not in s.queue

    def _may_continue(self, issue_id: str) -> bool:
        return self.state.status == "running" and not self._abandoned(issue_id)

    async def _process_item(self, issue_id: str) -> None:
        s = self.state
        s.current_issue_id = issue_id
        s.current_phase = None
        s.retry_count = 0
        s.progress = 0
        issue = await self.issues.resolve(issue_id)
        self.log("info", f"Starting: {issue.title if issue else issue_id}", issue_id)
        self.save_session()

        self._set_phase(issue_id, "working", 10)
        ok = await self.executor.execute(issue_id)
        if self._abandoned(issue_id):
            return
        if not ok:
            await self._mark_blocked(issue_id, "agent execution failed")
            return
        await self._note(issue, ["Implementation pass completed"], ["Run verification"], "working")
        if not self._may_continue(issue_id):
            return

        settings = s.settings

        async def verify() -> VerificationResult:
            self._set_phase(issue_id, "testing", 50)
            return await self.gate.run(issue_id)

        async def fix(attempt: int, result: VerificationResult) -> bool:
            self._set_phase(issue_id, "fixing")
            failed = ", ".join(failed_category_names(result, s.settings)) or "verification"
            self.log("warning", f"Fix attempt {attempt}/{settings.max_retries} for {failed}", issue_id)
            fixed = await self.executor.execute(
                issue_id, fix_mode=True, errors=format_failures(result, s.settings)
            )
            if fixed:
                await self._note(
                    issue, [f"Fix attempt {attempt} for {failed}"], ["Re-run verification"], "fixing"
                )
            return fixed

        def on_retry(attempt: int) -> None:
            s.retry_count = attempt

        outcome = await run_fix_loop(
            verify=verify,
            fix=fix,
            max_retries=settings.max_retries,
            on_retry=on_retry,
            should_continue=lambda: self._may_continue(issue_id),
        )
        if self._abandoned(issue_id):
            return
        if not outcome.passed and not outcome.interrupted:
            if outcome.fix_failed:
                reason = f"fix attempt {outcome.attempts} failed"
            else:
                reason = f"verification still failing after {outcome.attempts} fix attempt(s)"
            await self._mark_blocked(issue_id, reason)
            return
        if not self._may_continue(issue_id):
            return

        settings = s.settings
        if not settings.require_human_review and settings.auto_commit:
            await self._commit_and_close(issue_id, issue)
        else:
            self._set_phase(issue_id, "reviewing", 90)
            self.move_to_review(issue_id)

    async def _commit_and_close(self, issue_id: str, issue: Issue | None) -> None:
        s = self.state
        self._set_phase(issue_id, "committing", 80)
        try:
            await self.tools.vcs.commit(self.project_path, _commit_message(issue_id, issue), issue_id)
        except AutoBuildError as exc:
            await self._mark_blocked(issue_id, f"commit failed: {exc}")
            return
        s.progress = 90
        await self._close_issue(issue_id, CLOSE_REASON_AUTO)
        s.queue.dequeue(issue_id)
        self._push_completed(issue_id)
        self._clear_current()
        s.progress = 100
        self.log("success", "Completed and closed", issue_id)
        self._emit_state()
        self.save_session()

    async def _close_issue(self, issue_id: str, reason: str) -> bool:
        try:
            await self.tools.tracker.close(self.project_path, issue_id, reason)
        except AutoBuildError as exc:
            self.log("error", f"Could not close issue: {exc}", issue_id)
            return False
        return True

    async def _mark_blocked(self, issue_id: str, reason: str) -> None:
        s = self.state
        s.queue.dequeue(issue_id)
        if issue_id not in s.blocked:
            s.blocked.append(issue_id)
        if s.current_issue_id == issue_id:
            self._clear_current()
        self.log("error", f"Blocked: {reason}", issue_id)
        try:
            await self.tools.tracker.update(self.project_path, issue_id, {"status": "blocked"})
        except Exception as exc:
            self.log("warning", f"Could not mark blocked on tracker: {exc}", issue_id)
        self._emit_state()
        self.save_session()

    def _push_completed(self, issue_id: str) -> None:
        completed = self.state.completed
        if issue_id in completed:
            completed.remove(issue_id)
        completed.append(issue_id)

    async def _note(self, issue: Issue | None, done: list[str], upcoming: list[str], step: str) -> None:
        if issue is not None:
            await self.silo.record(issue, done, upcoming, step)

    # ------------------------------------------------------------------
    # Human review gate
    # ------------------------------------------------------------------

    def move_to_review(self, issue_id: str) -> None:
        s = self.state
        s.queue.dequeue(issue_id)
        if issue_id not in s.human_review:
            s.human_review.append(issue_id)
        if s.current_issue_id == issue_id:
            self._clear_current()
        self.log("info", "Awaiting human review", issue_id)
        self._emit_state()
        self.save_session()

    async def complete_review(self, issue_id: str) -> bool:
        s = self.state
        if issue_id not in s.human_review:
            self.log("warning", "Not awaiting human review", issue_id)
            return False
        if s.settings.auto_commit:
            issue = await self.issues.resolve(issue_id)
            try:
                await self.tools.vcs.commit(self.project_path, _commit_message(issue_id, issue), issue_id)
            except AutoBuildError as exc:
                self.log("error", f"Commit failed; still awaiting review: {exc}", issue_id)
                return False
        await self._close_issue(issue_id, CLOSE_REASON_REVIEW)
        s.human_review.remove(issue_id)
        self._push_completed(issue_id)
        self.log("success", "Approved and closed", issue_id)
        self._settle_if_drained()
        return True

    async def request_refactor(self, issue_id: str, reason: str) -> str | None:
        """File a refactor issue and put the reprocessing target at the queue front."""
        s = self.state
        if issue_id not in s.human_review:
            self.log("warning", "Not awaiting human review", issue_id)
            return None
        issue = await self.issues.resolve(issue_id)
        title = issue.title if issue else issue_id
        description = f"Refactor requested during human review of {issue_id}.\n\nReason: {reason}"
        try:
            new_id = await self.tools.tracker.create(
                self.project_path,
                f"Refactor: {title}",
                self.config.review.refactor_issue_type,
                issue.priority if issue else 2,
                description,
            )
        except AutoBuildError as exc:
            self.log("error", f"Could not create refactor issue: {exc}", issue_id)
            return None

        # The next work prompt for the original issue reads this note.
        await self.silo.record(
            issue or Issue(id=issue_id, title=issue_id),
            ["Sent back from human review"],
            [f"Refactor requested: {reason} (see {new_id})"],
            "refactoring",
        )
        s.human_review.remove(issue_id)
        target = new_id if self.config.review.refactor_target == "refactor_issue" else issue_id
        s.queue.push_front(target)
        self.log("info", f"Refactor requested ({new_id}); {target} queued next", issue_id)
        self._emit_state()
        self.save_session()
        return new_id

    def _settle_if_drained(self) -> None:
        s = self.state
        if s.status == "paused" and not s.queue and not s.human_review:
            s.status = "idle"
            self._clear_current()
            self.log("success", "All reviews resolved; Auto Build idle")
            self._emit_state()
            self.clear_session()
            return
        self._emit_state()
        self.save_session()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        s = self.state
        session = self.executor.session
        return {
            "status": s.status,
            "current_issue_id": s.current_issue_id,
            "current_phase": s.current_phase,
            "phase_label": PHASE_LABELS.get(s.current_phase or "", ""),
            "current_action": session.current_action if session else None,
            "progress": s.progress,
            "retry_count": s.retry_count,
            "queue": s.queue.to_list(),
            "human_review": list(s.human_review),
            "completed": list(s.completed),
            "blocked": list(s.blocked),
            "settings": s.settings.to_dict(),
        }

    async def _list_issues(self) -> list[Issue]:
        return await self.tools.tracker.list(self.project_path)


def _commit_message(issue_id: str, issue: Issue | None) -> str:
    if issue is None:
        return f"Completed {issue_id}"
    return f"{issue.issue_type}: {issue.title}"
