"""Claude Code CLI adapter speaking the stream-json protocol."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from autobuild.adapters.base import clean_env
from autobuild.adapters.stream_parser import parse_stream_line
from autobuild.errors import AgentStartError
from autobuild.protocol.models import ChunkType, StreamChunk

logger = logging.getLogger(__name__)

SAFE_MODE_TOOLS = "Edit,Write,Bash,Read,Glob,Grep"


@dataclass(slots=True)
class _AgentSession:
    session_id: str
    process: asyncio.subprocess.Process
    tasks: list[asyncio.Task[None]] = field(default_factory=list)
    stderr_tail: str = ""


class ClaudeStreamProcess:
    """Runs one ``claude`` process per session id and fans its stdout out
    as ``StreamChunk``s to that session's subscriber queue.

    A session is one prompt: once the ``result`` event has been seen the
    process's stdin is closed so it exits on its own.
    """

    def __init__(self, binary: str = "claude", model: str = "", log_dir: str | None = None) -> None:
        self._binary = binary
        self._model = model
        self._log_dir = Path(log_dir) if log_dir else None
        self._sessions: dict[str, _AgentSession] = {}
        self._channels: dict[str, asyncio.Queue[StreamChunk]] = {}

    def build_args(self, permission_mode: str, safe_mode: bool) -> list[str]:
        args = [
            "-p",
            "--input-format", "stream-json",
            "--output-format", "stream-json",
            "--verbose",
            # tool_start / input_json_delta events only arrive in partial-message mode
            "--include-partial-messages",
            "--permission-mode", permission_mode,
        ]
        if safe_mode:
            args.extend(["--allowedTools", SAFE_MODE_TOOLS])
        if self._model:
            args.extend(["--model", self._model])
        return args

    def is_active(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def start(self, cwd: str, session_id: str, permission_mode: str, safe_mode: bool) -> None:
        if session_id in self._sessions:
            raise AgentStartError("Session already streaming", session_id=session_id)
        try:
            process = await asyncio.create_subprocess_exec(
                self._binary,
                *self.build_args(permission_mode, safe_mode),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=clean_env(),
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise AgentStartError(
                f"'{self._binary}' CLI not found. Install it or add it to PATH.",
                session_id=session_id,
            ) from exc
        except OSError as exc:
            raise AgentStartError(f"Failed to spawn {self._binary}: {exc}", session_id=session_id) from exc

        session = _AgentSession(session_id=session_id, process=process)
        self._sessions[session_id] = session
        session.tasks.append(asyncio.create_task(self._pump_stdout(session)))
        session.tasks.append(asyncio.create_task(self._pump_stderr(session)))
        logger.debug("Started %s for session %s (pid=%s)", self._binary, session_id, process.pid)

    async def send(self, session_id: str, text: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise AgentStartError("Agent session not found", session_id=session_id)
        stdin = session.process.stdin
        if stdin is None:
            raise AgentStartError("Agent stdin not available", session_id=session_id)
        message = {
            "type": "user",
            "message": {"role": "user", "content": [{"type": "text", "text": text}]},
        }
        try:
            stdin.write((json.dumps(message) + "\n").encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise AgentStartError(
                f"Agent closed its input: {exc}. stderr: {session.stderr_tail[-500:]}",
                session_id=session_id,
            ) from exc

    async def terminate(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        process = session.process
        if process.returncode is None:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=5)
            except TimeoutError:
                process.kill()
                await process.wait()
        for task in session.tasks:
            task.cancel()
        self._publish(StreamChunk(ChunkType.DONE, session_id, content="exit_code:-1"))

    def subscribe(self, session_id: str) -> asyncio.Queue[StreamChunk]:
        channel: asyncio.Queue[StreamChunk] = asyncio.Queue()
        self._channels[session_id] = channel
        return channel

    def unsubscribe(self, session_id: str) -> None:
        self._channels.pop(session_id, None)

    def _publish(self, chunk: StreamChunk) -> None:
        channel = self._channels.get(chunk.session_id)
        if channel is not None:
            channel.put_nowait(chunk)

    async def _pump_stdout(self, session: _AgentSession) -> None:
        stream = session.process.stdout
        if stream is None:
            return
        log_path = self._log_dir / f"{session.session_id}.jsonl" if self._log_dir else None
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace")
            if log_path:
                try:
                    log_path.parent.mkdir(parents=True, exist_ok=True)
                    with log_path.open("a", encoding="utf-8") as fh:
                        fh.write(text)
                except OSError as exc:
                    logger.debug("Could not write transcript %s: %s", log_path, exc)
                    log_path = None
            for chunk in parse_stream_line(text, session.session_id):
                self._publish(chunk)
                if chunk.chunk_type == ChunkType.RESULT:
                    self._close_stdin(session)

        code = await session.process.wait()
        if self._sessions.get(session.session_id) is session:
            del self._sessions[session.session_id]
            self._publish(StreamChunk(ChunkType.DONE, session.session_id, content=f"exit_code:{code}"))

    async def _pump_stderr(self, session: _AgentSession) -> None:
        stream = session.process.stderr
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip("\n")
            if text:
                session.stderr_tail = (session.stderr_tail + "\n" + text).strip()[-4000:]

    def _close_stdin(self, session: _AgentSession) -> None:
        stdin = session.process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()
