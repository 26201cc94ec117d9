"""Ollama transport — OpenAI-compatible endpoint plus native NDJSON frames."""

import re
from urllib.parse import urlsplit, urlunsplit

import httpx

from chatwire.errors import TransportError
from chatwire.providers.models import ModelDetails, ProtocolType
from chatwire.transports.base import ChunkType, StreamChunk
from chatwire.transports.frames import read_data_line
from chatwire.transports.openai import CONNECT_HINT, OpenAICompatibleTransport

NUM_CTX_PATTERN = re.compile(r"num_ctx\s+(\d+)")


class OllamaTransport(OpenAICompatibleTransport):
    """Ollama serves SSE on /v1 and NDJSON on its native API.

    Both framings are accepted on the same stream: ``data:``-prefixed SSE
    lines, and bare JSON lines such as
    ``{"message": {"content": "Hi"}, "done": false}``. A native frame with
    ``"done": true`` is the terminal signal and carries the token counts.
    """

    protocol = ProtocolType.OLLAMA
    reasoning_keys = ("reasoning_content", "reasoning")

    def read_payload_line(self, line: str) -> str | None:
        payload = read_data_line(line)
        if payload is not None:
            return payload
        line = line.strip()
        return line if line.startswith("{") else None

    def extract_chunks(self, payload: dict) -> list[StreamChunk]:
        chunks = super().extract_chunks(payload)
        message = payload.get("message")
        if isinstance(message, dict):
            content = message.get("content")
            if isinstance(content, str) and content:
                chunks.append(StreamChunk(ChunkType.CONTENT, content))
            thinking = message.get("thinking")
            if isinstance(thinking, str) and thinking:
                chunks.append(StreamChunk(ChunkType.REASONING, thinking))
        return chunks

    def is_terminal_frame(self, payload: dict) -> bool:
        return payload.get("done") is True

    async def fetch_model_details(self, base_url: str, model_name: str) -> ModelDetails:
        """POST to /api/show on the server root (the /v1 suffix is dropped)."""
        show_url = f"{root_url(base_url)}/api/show"
        client = await self._get_client()
        try:
            response = await client.post(show_url, json={"name": model_name})
        except httpx.HTTPError:
            raise TransportError(CONNECT_HINT, status_code=502, provider="ollama")

        if not response.is_success:
            raise TransportError(
                f"Failed to fetch model details: {response.status_code} {response.reason_phrase}. {response.text}",
                status_code=response.status_code,
                provider="ollama",
            )
        try:
            data = response.json()
        except ValueError:
            raise TransportError("Model details response was not valid JSON", status_code=502, provider="ollama")
        if not isinstance(data, dict):
            raise TransportError("Model details response was not a JSON object", status_code=502, provider="ollama")
        return parse_model_details(data)


def root_url(base_url: str) -> str:
    """``http://host:11434/v1`` -> ``http://host:11434``."""
    parts = urlsplit(base_url.strip())
    return urlunsplit((parts.scheme, parts.netloc, "", "", ""))


def parse_model_details(data: dict) -> ModelDetails:
    details = data.get("details")
    if not isinstance(details, dict):
        details = {}
    parameters = data.get("parameters")
    if not isinstance(parameters, str):
        parameters = ""
    families = details.get("families")
    if not isinstance(families, list):
        families = []

    num_ctx = None
    match = NUM_CTX_PATTERN.search(parameters)
    if match:
        num_ctx = int(match.group(1))

    return ModelDetails(
        format=details.get("format", ""),
        family=details.get("family", ""),
        families=[str(f) for f in families],
        parameter_size=details.get("parameter_size", ""),
        quantization_level=details.get("quantization_level", ""),
        modelfile=data.get("modelfile", ""),
        parameters=parameters,
        template=data.get("template", ""),
        num_ctx=num_ctx,
    )
