"""Prompt construction for implementation and fix passes."""

from __future__ import annotations

from autobuild.protocol.models import Issue

OUTPUT_TAIL_CHARS = 4000


def _issue_header(issue: Issue) -> str:
    return (
        f"Issue ID: {issue.id}\n"
        f"Type: {issue.issue_type}\n"
        f"Title: {issue.title}\n"
        f"Description: {issue.description or 'No description provided'}"
    )


def _silo_section(silo_context: str | None) -> str:
    if not silo_context:
        return ""
    return (
        "\n\n## Progress so far\n"
        "Notes from earlier passes on this issue:\n\n"
        f"{silo_context.strip()}"
    )


def build_work_prompt(issue: Issue, silo_context: str | None = None) -> str:
    return (
        "You are working on a beads issue in this project.\n\n"
        f"{_issue_header(issue)}\n\n"
        "Please:\n"
        "1. Understand what needs to be done\n"
        "2. Implement the changes\n"
        "3. Keep code mergeable at all times\n"
        "4. Do NOT commit - I will handle that\n\n"
        "When done, your last message should confirm what was completed."
        f"{_silo_section(silo_context)}"
    )


def build_fix_prompt(issue: Issue, errors: str, silo_context: str | None = None) -> str:
    return (
        "Verification failed after your changes for this beads issue.\n\n"
        f"{_issue_header(issue)}\n\n"
        "## Failures\n"
        f"{errors.strip() or '(no output captured)'}\n\n"
        "Please:\n"
        "1. Read the failures above and find their cause\n"
        "2. Fix the code so lint, tests and build pass\n"
        "3. Only change what the failures require\n"
        "4. Do NOT commit - I will handle that\n\n"
        "When done, your last message should summarize what you fixed."
        f"{_silo_section(silo_context)}"
    )


def tail(text: str, limit: int = OUTPUT_TAIL_CHARS) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return "...(truncated)\n" + text[-limit:]
