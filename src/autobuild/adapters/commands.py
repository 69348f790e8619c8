"""Verification runner that shells out to the project's lint/test/build commands."""

from __future__ import annotations

import asyncio
import logging
import os

from autobuild.adapters.base import clean_env
from autobuild.config.schema import VerificationConfig
from autobuild.protocol.models import CheckResult, VerificationResult

logger = logging.getLogger(__name__)


def detect_commands(project_path: str) -> dict[str, list[str] | None]:
    """Guess lint/test/build commands from the project's manifest files.

    ``package.json`` projects use their npm scripts; Python projects
    use ruff and pytest and have no build step (an empty argv).  ``None``
    means the project type is unknown and the category has no command.
    """
    if os.path.isfile(os.path.join(project_path, "package.json")):
        return {
            "lint": ["npm", "run", "lint"],
            "tests": ["npm", "run", "test"],
            "build": ["npm", "run", "build"],
        }
    if os.path.isfile(os.path.join(project_path, "pyproject.toml")):
        return {
            "lint": ["ruff", "check", "."],
            "tests": ["pytest", "-q"],
            "build": [],
        }
    return {"lint": None, "tests": None, "build": None}


class CommandVerificationRunner:
    def __init__(self, config: VerificationConfig | None = None) -> None:
        self._config = config or VerificationConfig()

    def commands_for(self, project_path: str) -> dict[str, list[str] | None]:
        detected = detect_commands(project_path)
        return {
            "lint": self._config.lint or detected["lint"],
            "tests": self._config.tests or detected["tests"],
            "build": self._config.build or detected["build"],
        }

    async def run(
        self,
        project_path: str,
        run_lint: bool,
        run_tests: bool,
        run_build: bool,
    ) -> VerificationResult:
        commands = self.commands_for(project_path)
        result = VerificationResult()
        if run_lint:
            result.lint = await self._run_command("lint", commands["lint"], project_path)
        if run_tests:
            result.tests = await self._run_command("tests", commands["tests"], project_path)
        if run_build:
            result.build = await self._run_command("build", commands["build"], project_path)
        result.success = result.lint.success and result.tests.success and result.build.success
        return result

    async def _run_command(self, name: str, cmd: list[str] | None, cwd: str) -> CheckResult:
        if cmd is None:
            return CheckResult(
                success=False,
                output=f"No {name} command configured; set verification.{name} or disable run_{name}",
            )
        if not cmd:
            return CheckResult(success=True, output=f"Project has no {name} step (skipped)")
        timeout = self._config.timeout_seconds
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=cwd,
                env=clean_env(),
            )
        except FileNotFoundError:
            return CheckResult(success=False, output=f"Command not found: {cmd[0]}")
        except OSError as exc:
            return CheckResult(success=False, output=f"OS error: {exc}")
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            return CheckResult(success=False, output=f"Command timed out after {timeout}s")
        output = (stdout or b"").decode("utf-8", errors="replace").strip()
        logger.debug("%s exited %s", " ".join(cmd), proc.returncode)
        return CheckResult(success=proc.returncode == 0, output=output)
