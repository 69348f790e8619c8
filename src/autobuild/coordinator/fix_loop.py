"""Bounded verify/fix cycle for a single issue."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from autobuild.protocol.models import VerificationResult


@dataclass(slots=True)
class FixLoopOutcome:
    passed: bool
    attempts: int = 0
    interrupted: bool = False
    fix_failed: bool = False
    last_result: VerificationResult | None = None


async def run_fix_loop(
    *,
    verify: Callable[[], Awaitable[VerificationResult]],
    fix: Callable[[int, VerificationResult], Awaitable[bool]],
    max_retries: int,
    on_retry: Callable[[int], None] | None = None,
    should_continue: Callable[[], bool] | None = None,
) -> FixLoopOutcome:
    """Verify, and on failure fix and re-verify, at most *max_retries* times.

    ``fix`` receives the 1-based attempt number and the failing result.
    A fix call returning False ends the loop at once.  ``should_continue``
    is polled between steps; when it returns False the loop stops with
    ``interrupted`` set.
    """
    attempts = 0
    while True:
        result = await verify()
        if result.success:
            return FixLoopOutcome(passed=True, attempts=attempts, last_result=result)
        if attempts >= max_retries:
            return FixLoopOutcome(passed=False, attempts=attempts, last_result=result)
        if should_continue is not None and not should_continue():
            return FixLoopOutcome(passed=False, attempts=attempts, interrupted=True, last_result=result)

        attempts += 1
        if on_retry is not None:
            on_retry(attempts)
        if not await fix(attempts, result):
            return FixLoopOutcome(passed=False, attempts=attempts, fix_failed=True, last_result=result)
        if should_continue is not None and not should_continue():
            return FixLoopOutcome(passed=False, attempts=attempts, interrupted=True, last_result=result)
