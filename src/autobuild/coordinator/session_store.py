"""Session record persistence, one file per project."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from autobuild.errors import ConfigurationError, PersistenceError
from autobuild.protocol.models import SessionRecord

logger = logging.getLogger(__name__)

DEFAULT_SESSION_FILE = ".beads/.autobuild-session.json"


class SessionStore:
    """Durable storage for the orchestrator's session record.

    A save writes a sibling temp file, fsyncs it and renames it over the
    record, so a crash mid-save leaves the previous record intact.  All failures surface as ``PersistenceError``;
    deciding whether they are fatal is the caller's business.
    """

    def __init__(self, project_path: str | Path, session_file: str = DEFAULT_SESSION_FILE) -> None:
        self._path = Path(project_path) / session_file

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def save(self, record: SessionRecord) -> None:
        try:
            self._write(record.to_dict())
        except OSError as exc:
            raise PersistenceError(f"Failed to write session file {self._path}: {exc}") from exc

    def load(self) -> SessionRecord | None:
        if not self._path.exists():
            return None
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise PersistenceError(f"Failed to read session file {self._path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring corrupt session file %s: %s", self._path, exc)
            return None
        if not isinstance(raw, dict):
            logger.warning("Ignoring session file %s: expected an object", self._path)
            return None
        try:
            return SessionRecord.from_dict(raw)
        except (TypeError, ValueError, ConfigurationError) as exc:
            logger.warning("Ignoring unreadable session record %s: %s", self._path, exc)
            return None

    def clear(self) -> bool:
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise PersistenceError(f"Failed to remove session file {self._path}: {exc}") from exc
        return True

    def _write(self, data: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2)
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
