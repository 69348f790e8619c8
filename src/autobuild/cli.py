"""CLI entrypoint for autobuild."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import signal
from pathlib import Path
from typing import Any

import click

from autobuild.adapters.beads import validate_issue_id
from autobuild.adapters.commands import CommandVerificationRunner
from autobuild.adapters.registry import build_collaborators
from autobuild.config.loader import load_autobuild_yaml
from autobuild.config.schema import AutoBuildYamlConfig
from autobuild.coordinator.loop import AutoBuildCoordinator
from autobuild.coordinator.session_store import SessionStore
from autobuild.errors import AutoBuildError, InvalidIssueIdError
from autobuild.protocol.models import PHASE_LABELS

logger = logging.getLogger(__name__)

CONFIG_TEMPLATE = """version: 1
project:
  path: ..
  session_file: .beads/.autobuild-session.json
  silo_dir: _SILO
settings:
  auto_commit: true
  run_lint: true
  run_tests: true
  run_build: true
  max_retries: 1
  priority_threshold: 4
  require_human_review: true
agent:
  backend: claude
  binary: claude
  permission_mode: acceptEdits
  safe_mode: true
  timeout_seconds: 600
verification:
  # Leave empty to auto-detect from package.json / pyproject.toml.
  lint: []
  tests: []
  build: []
  timeout_seconds: 900
tracker:
  binary: bd
review:
  refactor_target: original
  refactor_issue_type: task
"""


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.option("-q", "--quiet", is_flag=True, help="Only log warnings and errors")
def main(verbose: bool, quiet: bool) -> None:
    """Autobuild: work a queue of tracker issues with a coding agent."""
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _load(config_path: Path) -> AutoBuildYamlConfig:
    try:
        return load_autobuild_yaml(config_path)
    except AutoBuildError as exc:
        raise click.ClickException(str(exc)) from exc


def _coordinator(cfg: AutoBuildYamlConfig) -> AutoBuildCoordinator:
    return AutoBuildCoordinator(cfg, build_collaborators(cfg))


def _print_summary(coordinator: AutoBuildCoordinator) -> None:
    snap = coordinator.snapshot()
    click.echo(f"Status: {snap['status']}")
    if snap["current_issue_id"]:
        click.echo(f"Current: {snap['current_issue_id']} ({snap['phase_label'] or 'between phases'})")
    click.echo(f"Queue: {', '.join(snap['queue']) or '-'}")
    click.echo(f"Awaiting review: {', '.join(snap['human_review']) or '-'}")
    click.echo(f"Completed: {', '.join(snap['completed']) or '-'}")
    if snap["blocked"]:
        click.echo(f"Blocked: {', '.join(snap['blocked'])}")


@main.command("init")
@click.argument("target_dir", type=click.Path(file_okay=False, path_type=Path), required=False)
@click.option("--force", is_flag=True, help="Overwrite an existing config")
def init_command(target_dir: Path | None, force: bool) -> None:
    """Write a starter .autobuild/autobuild.yaml."""
    base = target_dir or Path.cwd()
    path = base / ".autobuild" / "autobuild.yaml"
    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists (use --force to overwrite)")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(CONFIG_TEMPLATE, encoding="utf-8")
    click.echo(f"Wrote {path}")
    if not (base / ".beads").is_dir():
        click.echo("Note: no .beads/ directory found; run `bd init` before `autobuild run`.")


@main.command("run")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("issue_ids", nargs=-1)
@click.option("--all-ready", is_flag=True, help="Queue every open issue within the priority threshold")
@click.option("--resume/--fresh", "resume_flag", default=True, help="Recover a persisted session first")
def run_command(config_path: Path, issue_ids: tuple[str, ...], all_ready: bool, resume_flag: bool) -> None:
    """Process queued issues until the queue drains or the run is paused."""
    cfg = _load(config_path)
    for issue_id in issue_ids:
        try:
            validate_issue_id(issue_id)
        except InvalidIssueIdError as exc:
            raise click.BadParameter(str(exc), param_hint="ISSUE_IDS") from exc
    coordinator = _coordinator(cfg)
    asyncio.run(_run(coordinator, list(issue_ids), all_ready, resume_flag))
    _print_summary(coordinator)


async def _run(
    coordinator: AutoBuildCoordinator,
    issue_ids: list[str],
    all_ready: bool,
    resume_flag: bool,
) -> None:
    if resume_flag:
        if coordinator.load_session():
            click.echo("Recovered a paused session.")
    else:
        coordinator.clear_session()

    for issue_id in issue_ids:
        coordinator.enqueue(issue_id)
    if all_ready:
        added = await coordinator.enqueue_ready()
        click.echo(f"Queued {len(added)} ready issue(s).")

    loop = asyncio.get_running_loop()
    handler_installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, _request_pause, coordinator)
        handler_installed = True
    except (NotImplementedError, RuntimeError) as exc:
        logger.debug("SIGINT handler not installed: %s", exc)

    try:
        if coordinator.state.status == "paused":
            await coordinator.resume()
        else:
            await coordinator.start()
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


def _request_pause(coordinator: AutoBuildCoordinator) -> None:
    click.echo("\nPausing after the current step (Ctrl-C again is not needed)...", err=True)
    coordinator.pause()


@main.command("status")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print the raw session record")
def status_command(config_path: Path, as_json: bool) -> None:
    """Show the persisted session for a project."""
    cfg = _load(config_path)
    store = SessionStore(cfg.project.path, cfg.project.session_file)
    try:
        record = store.load()
    except AutoBuildError as exc:
        raise click.ClickException(str(exc)) from exc
    if record is None:
        click.echo("No active session.")
        return
    if as_json:
        click.echo(json.dumps(record.to_dict(), indent=2))
        return
    click.echo(f"Status: {record.status}")
    if record.current_issue_id:
        label = PHASE_LABELS.get(record.current_phase or "", "between phases")
        click.echo(f"Current: {record.current_issue_id} ({label}, retry {record.retry_count})")
    click.echo(f"Queue: {', '.join(record.queue) or '-'}")
    click.echo(f"Awaiting review: {', '.join(record.human_review) or '-'}")
    click.echo(f"Completed: {', '.join(record.completed) or '-'}")
    click.echo(f"Last activity: {record.last_activity_at}")


@main.command("approve")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("issue_id")
def approve_command(config_path: Path, issue_id: str) -> None:
    """Approve an issue awaiting human review: commit and close it."""
    coordinator = _coordinator(_load(config_path))
    coordinator.load_session()
    if not asyncio.run(coordinator.complete_review(issue_id)):
        raise click.ClickException(f"Could not approve {issue_id}; see log output")
    click.echo(f"Approved {issue_id}.")


@main.command("refactor")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("issue_id")
@click.argument("reason")
def refactor_command(config_path: Path, issue_id: str, reason: str) -> None:
    """Send an issue in review back for rework and file a refactor issue."""
    coordinator = _coordinator(_load(config_path))
    coordinator.load_session()
    new_id = asyncio.run(coordinator.request_refactor(issue_id, reason))
    if new_id is None:
        raise click.ClickException(f"Could not request a refactor of {issue_id}; see log output")
    click.echo(f"Created {new_id}; {coordinator.state.queue.head} is next in the queue.")


@main.command("clear")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def clear_command(config_path: Path) -> None:
    """Delete the persisted session."""
    cfg = _load(config_path)
    store = SessionStore(cfg.project.path, cfg.project.session_file)
    try:
        removed = store.clear()
    except AutoBuildError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo("Session cleared." if removed else "No session to clear.")


def _doctor_rows(cfg: AutoBuildYamlConfig) -> list[dict[str, Any]]:
    project = Path(cfg.project.path)
    rows: list[dict[str, Any]] = []
    for label, binary in (("agent", cfg.agent.binary), ("tracker", cfg.tracker.binary), ("vcs", "git")):
        found = shutil.which(binary) is not None
        rows.append({
            "check": label,
            "ok": found,
            "details": f"{binary} found" if found else f"missing binary `{binary}`",
        })
    beads = (project / ".beads").is_dir()
    rows.append({
        "check": "tracker-db",
        "ok": beads,
        "details": "ok" if beads else f"no .beads/ directory in {project}",
    })
    commands = CommandVerificationRunner(cfg.verification).commands_for(str(project))
    for category in ("lint", "tests", "build"):
        argv = commands[category]
        if argv is None:
            rows.append({
                "check": category,
                "ok": False,
                "details": f"no command configured; set verification.{category}",
            })
            continue
        if not argv:
            rows.append({"check": category, "ok": True, "details": "no step for this project (skipped)"})
            continue
        found = shutil.which(argv[0]) is not None
        rows.append({
            "check": category,
            "ok": found,
            "details": " ".join(argv) if found else f"missing binary `{argv[0]}`",
        })
    return rows


def _print_doctor(rows: list[dict[str, Any]]) -> bool:
    click.echo("Preflight:")
    all_ok = True
    for row in rows:
        icon = "OK" if row["ok"] else "FAIL"
        click.echo(f"  [{icon}] {row['check']} - {row['details']}")
        all_ok = all_ok and bool(row["ok"])
    return all_ok


@main.command("doctor")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def doctor_command(config_path: Path) -> None:
    """Check that the agent, tracker, git and verification tools are available."""
    cfg = _load(config_path)
    if not _print_doctor(_doctor_rows(cfg)):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
