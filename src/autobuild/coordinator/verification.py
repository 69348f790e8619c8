"""Verification gate: runs enabled checks and logs each category's outcome."""

from __future__ import annotations

import logging
from typing import Callable

from autobuild.adapters.base import VerificationRunner
from autobuild.coordinator.activity_log import LogSink
from autobuild.coordinator.prompts import tail
from autobuild.protocol.models import BuildSettings, CheckResult, VerificationResult

logger = logging.getLogger(__name__)

_LABELS = {"lint": "Lint", "tests": "Tests", "build": "Build"}


def enabled_categories(settings: BuildSettings) -> dict[str, bool]:
    return {"lint": settings.run_lint, "tests": settings.run_tests, "build": settings.run_build}


class VerificationGate:
    """Delegates lint/test/build to the external runner per the settings.

    Disabled categories are reported as passing with no output, so they
    never fail the gate and never show up in a fix prompt.
    """

    def __init__(
        self,
        runner: VerificationRunner,
        project_path: str,
        settings: Callable[[], BuildSettings],
        log: LogSink,
    ) -> None:
        self._runner = runner
        self._project_path = project_path
        self._settings = settings
        self._log = log

    async def run(self, issue_id: str | None = None) -> VerificationResult:
        settings = self._settings()
        flags = enabled_categories(settings)
        try:
            result = await self._runner.run(
                self._project_path,
                settings.run_lint,
                settings.run_tests,
                settings.run_build,
            )
        except Exception as exc:
            logger.warning("Verification runner raised: %s", exc)
            result = VerificationResult.failed(str(exc))

        for name, enabled in flags.items():
            if not enabled:
                setattr(result, name, CheckResult(success=True, output=""))
                continue
            check: CheckResult = getattr(result, name)
            verdict = "passed" if check.success else "failed"
            self._log(
                "success" if check.success else "error",
                f"{_LABELS[name]}: {verdict}",
                issue_id,
            )

        result.success = all(getattr(result, name).success for name, on in flags.items() if on)
        return result


def format_failures(result: VerificationResult, settings: BuildSettings) -> str:
    """Failure text for a fix prompt, drawn from failed enabled categories only."""
    flags = enabled_categories(settings)
    sections: list[str] = []
    for name, check in result.categories():
        if not flags[name] or check.success:
            continue
        sections.append(f"### {_LABELS[name]} failed\n```\n{tail(check.output)}\n```")
    return "\n\n".join(sections)


def failed_category_names(result: VerificationResult, settings: BuildSettings) -> list[str]:
    flags = enabled_categories(settings)
    return [name for name, check in result.categories() if flags[name] and not check.success]
