"""Line-level decoding for SSE and NDJSON chat streams."""

import json
import logging

from chatwire.transports.base import ChunkType, StreamChunk

DONE_SENTINEL = "[DONE]"
DATA_PREFIX = "data:"


def read_data_line(line: str) -> str | None:
    """Return the payload of an SSE ``data:`` line, or None for anything else.

    Blank lines, comments and other SSE fields (``event:``, ``id:``) carry
    nothing for chat streams and are dropped here.
    """
    line = line.strip()
    if not line or not line.startswith(DATA_PREFIX):
        return None
    return line[len(DATA_PREFIX):].strip()


def is_done(payload: str) -> bool:
    return payload.strip() == DONE_SENTINEL


def parse_payload(payload: str, logger: logging.Logger) -> dict | None:
    """Parse one JSON frame. Bad frames are logged and skipped, never raised."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.warning(
            "Could not parse stream data chunk",
            extra={"event_data": {"error": str(e), "payload": payload[:500]}},
        )
        return None
    if not isinstance(data, dict):
        logger.warning(
            "Stream data chunk is not a JSON object",
            extra={"event_data": {"payload": payload[:500]}},
        )
        return None
    return data


def delta_chunks(payload: dict, reasoning_keys: tuple[str, ...] = ("reasoning_content",)) -> list[StreamChunk]:
    """Chunks from ``choices[0].delta``: content first, then reasoning."""
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return []
    delta = choices[0].get("delta") or {}
    if not isinstance(delta, dict):
        return []

    chunks = []
    content = delta.get("content")
    if isinstance(content, str) and content:
        chunks.append(StreamChunk(ChunkType.CONTENT, content))
    for key in reasoning_keys:
        reasoning = delta.get(key)
        if isinstance(reasoning, str) and reasoning:
            chunks.append(StreamChunk(ChunkType.REASONING, reasoning))
            break
    return chunks
