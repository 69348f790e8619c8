"""Autobuild error hierarchy."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    """Category of error for classification and handling."""

    AGENT = "agent"
    VERIFICATION = "verification"
    TRACKER = "tracker"
    VCS = "vcs"
    PERSISTENCE = "persistence"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"


class AutoBuildError(Exception):
    """Base error for all orchestrator exceptions."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.details: dict[str, Any] = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, category={self.category!r})"


class AgentStartError(AutoBuildError):
    """The coding agent could not be launched or the prompt not delivered."""

    def __init__(self, message: str, *, session_id: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.AGENT, **kwargs)
        self.session_id = session_id


class TrackerError(AutoBuildError):
    """Error from the issue tracker CLI."""

    def __init__(self, message: str, *, retryable: bool = False, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.TRACKER, retryable=retryable, **kwargs)


class InvalidIssueIdError(TrackerError):
    """Issue id failed validation before reaching the tracker."""

    def __init__(self, issue_id: str, reason: str) -> None:
        super().__init__(f"Invalid issue ID {issue_id!r}: {reason}")
        self.issue_id = issue_id


class CommitError(AutoBuildError):
    """Staging or committing changes failed."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.VCS, **kwargs)


class PersistenceError(AutoBuildError):
    """Session record could not be written, read, or removed."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.PERSISTENCE, retryable=True, **kwargs)


class ConfigurationError(AutoBuildError):
    """Invalid or missing configuration."""

    def __init__(self, message: str) -> None:
        super().__init__(message, category=ErrorCategory.CONFIGURATION, retryable=False)
