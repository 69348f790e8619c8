"""Translate the agent CLI's stream-json lines into ``StreamChunk``s."""

from __future__ import annotations

import json
from typing import Any

from autobuild.protocol.models import ChunkType, StreamChunk


def parse_stream_line(line: str, session_id: str) -> list[StreamChunk]:
    """Parse one stdout line.  Non-JSON and uninteresting lines yield ``[]``."""
    stripped = line.strip()
    if not (stripped.startswith("{") and stripped.endswith("}")):
        return []
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        return []
    if not isinstance(data, dict):
        return []
    return parse_stream_event(data, session_id)


def parse_stream_event(data: dict[str, Any], session_id: str) -> list[StreamChunk]:
    # Partial-message mode wraps the API event: {"type":"stream_event","event":{...}}
    if data.get("type") == "stream_event" and isinstance(data.get("event"), dict):
        data = data["event"]

    msg_type = data.get("type", "")
    subtype = data.get("subtype")

    if subtype == "init":
        return [StreamChunk(ChunkType.INIT, session_id, content=data.get("cwd"), subtype="init")]

    match msg_type:
        case "content_block_start":
            block = data.get("content_block") or {}
            if block.get("type") == "tool_use":
                return [StreamChunk(ChunkType.TOOL_START, session_id, tool_name=block.get("name"))]
            if block.get("type") == "text" and block.get("text"):
                return [StreamChunk(ChunkType.TEXT, session_id, content=block["text"])]
            return []

        case "content_block_delta":
            delta = data.get("delta") or {}
            if delta.get("type") == "input_json_delta":
                return [
                    StreamChunk(ChunkType.TOOL_INPUT_DELTA, session_id, content=delta.get("partial_json", ""))
                ]
            if delta.get("type") == "text_delta":
                return [StreamChunk(ChunkType.TEXT, session_id, content=delta.get("text", ""))]
            return []

        case "assistant":
            return _assistant_chunks(data, session_id)

        case "user":
            return _tool_result_chunks(data, session_id)

        case "tool_result":
            return [
                StreamChunk(
                    ChunkType.TOOL_RESULT,
                    session_id,
                    content=_as_text(data.get("content")),
                    is_error=data.get("is_error"),
                )
            ]

        case "result":
            is_error = data.get("is_error")
            if is_error is None and isinstance(subtype, str):
                is_error = subtype.startswith("error")
            return [
                StreamChunk(
                    ChunkType.RESULT,
                    session_id,
                    content=_as_text(data.get("result")),
                    is_error=bool(is_error),
                    subtype=subtype,
                )
            ]

        case "error":
            err = data.get("error")
            message = err.get("message") if isinstance(err, dict) else err
            return [StreamChunk(ChunkType.ERROR, session_id, content=_as_text(message), is_error=True)]

    return []


def _assistant_chunks(data: dict[str, Any], session_id: str) -> list[StreamChunk]:
    message = data.get("message") or {}
    chunks: list[StreamChunk] = []
    for block in message.get("content") or []:
        if not isinstance(block, dict):
            continue
        if block.get("type") == "tool_use":
            chunks.append(
                StreamChunk(
                    ChunkType.TOOL_USE,
                    session_id,
                    tool_name=block.get("name"),
                    tool_input=json.dumps(block.get("input") or {}),
                )
            )
        elif block.get("type") == "text" and block.get("text"):
            chunks.append(StreamChunk(ChunkType.TEXT, session_id, content=block["text"]))
    return chunks


def _tool_result_chunks(data: dict[str, Any], session_id: str) -> list[StreamChunk]:
    message = data.get("message") or {}
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [
        StreamChunk(
            ChunkType.TOOL_RESULT,
            session_id,
            content=_as_text(block.get("content")),
            is_error=block.get("is_error"),
        )
        for block in content
        if isinstance(block, dict) and block.get("type") == "tool_result"
    ]


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts = [item.get("text", "") for item in value if isinstance(item, dict)]
        return "\n".join(p for p in parts if p)
    return str(value)
