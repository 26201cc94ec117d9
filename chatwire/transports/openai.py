"""OpenAI-compatible transport (OpenAI, LM Studio, vLLM, llama.cpp server, ...)."""

import logging
import re
from collections.abc import AsyncGenerator
from datetime import datetime

import httpx

from chatwire.completion.usage import UsageAccumulator
from chatwire.config.settings import get_settings
from chatwire.errors import EmptyCompletionError, TransportError
from chatwire.providers.models import Model, ProtocolType, ProviderConfig
from chatwire.transports.base import ChatRequest, ChatTransport, StreamChunk
from chatwire.transports.frames import delta_chunks, is_done, parse_payload, read_data_line

CONNECT_HINT = (
    "Could not connect to the specified server. "
    "Make sure the service is running and the Base URL is correct."
)


class OpenAICompatibleTransport(ChatTransport):
    """Speaks the /chat/completions SSE protocol over httpx."""

    protocol = ProtocolType.OPENAI_COMPATIBLE
    reasoning_keys: tuple[str, ...] = ("reasoning_content",)

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            settings = get_settings()
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout)
            )
        return self._client

    @staticmethod
    def _build_headers(api_key: str | None) -> dict:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    @staticmethod
    def _build_body(request: ChatRequest, stream: bool) -> dict:
        body = {"model": request.model_id, "messages": request.messages, "stream": stream}
        if request.generation_config is not None:
            body.update(request.generation_config.to_openai_options())
        return body

    @staticmethod
    def _completions_url(provider: ProviderConfig) -> str:
        return f"{provider.base_url.rstrip('/')}/chat/completions"

    @staticmethod
    def _stream_timeout() -> httpx.Timeout:
        # No read timeout; STREAM_IDLE_TIMEOUT bounds silence between items
        settings = get_settings()
        return httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout, read=None)

    def read_payload_line(self, line: str) -> str | None:
        return read_data_line(line)

    def extract_chunks(self, payload: dict) -> list[StreamChunk]:
        return delta_chunks(payload, self.reasoning_keys)

    def is_terminal_frame(self, payload: dict) -> bool:
        return False

    async def stream_chat(
        self, request: ChatRequest, usage: UsageAccumulator, logger: logging.Logger
    ) -> AsyncGenerator[StreamChunk, None]:
        url = self._completions_url(request.provider)
        client = await self._get_client()
        try:
            async with client.stream(
                "POST",
                url,
                json=self._build_body(request, stream=True),
                headers=self._build_headers(request.api_key),
                timeout=self._stream_timeout(),
            ) as response:
                if not response.is_success:
                    body_bytes = await response.aread()
                    raise TransportError(
                        f"API error: {response.status_code} {response.reason_phrase}. "
                        f"{body_bytes.decode(errors='replace')}",
                        status_code=response.status_code,
                        provider=request.provider.id,
                    )

                async for line in response.aiter_lines():
                    payload_text = self.read_payload_line(line)
                    if payload_text is None:
                        continue
                    if is_done(payload_text):
                        logger.info("Chat stream sent [DONE] message")
                        return

                    payload = parse_payload(payload_text, logger)
                    if payload is None:
                        continue

                    usage.record(payload)
                    for chunk in self.extract_chunks(payload):
                        yield chunk
                    if self.is_terminal_frame(payload):
                        logger.info("Chat stream sent terminal frame")
                        return

        except httpx.ConnectError:
            raise TransportError(CONNECT_HINT, status_code=502, provider=request.provider.id)
        except httpx.TimeoutException:
            raise TransportError("Upstream provider timed out", status_code=504, provider=request.provider.id)
        except httpx.HTTPError as e:
            raise TransportError(f"Upstream error: {e}", status_code=502, provider=request.provider.id)

    async def complete(self, request: ChatRequest, logger: logging.Logger) -> str:
        url = self._completions_url(request.provider)
        client = await self._get_client()
        try:
            response = await client.post(
                url,
                json=self._build_body(request, stream=False),
                headers=self._build_headers(request.api_key),
            )
        except httpx.ConnectError:
            raise TransportError(CONNECT_HINT, status_code=502, provider=request.provider.id)
        except httpx.TimeoutException:
            raise TransportError("Upstream provider timed out", status_code=504, provider=request.provider.id)
        except httpx.HTTPError as e:
            raise TransportError(f"Upstream error: {e}", status_code=502, provider=request.provider.id)

        if not response.is_success:
            raise TransportError(
                f"API error: {response.status_code} {response.reason_phrase}. {response.text}",
                status_code=response.status_code,
                provider=request.provider.id,
            )

        try:
            data = response.json()
        except ValueError:
            raise TransportError(
                "API response was not valid JSON", status_code=502, provider=request.provider.id
            )
        logger.debug("Received text completion data", extra={"event_data": {"response": data}})

        content = _message_content(data)
        if not content:
            raise EmptyCompletionError(
                "API response did not contain message content.", provider=request.provider.id
            )
        return content

    async def list_models(self, provider: ProviderConfig, api_key: str | None) -> list[Model]:
        url = f"{provider.base_url.rstrip('/')}/models"
        client = await self._get_client()
        try:
            response = await client.get(url, headers=self._build_headers(api_key))
        except httpx.HTTPError:
            raise TransportError(CONNECT_HINT, status_code=502, provider=provider.id)

        if not response.is_success:
            raise TransportError(
                f"Failed to fetch models: {response.status_code} {response.reason_phrase}. {response.text}",
                status_code=response.status_code,
                provider=provider.id,
            )
        try:
            data = response.json()
        except ValueError:
            raise TransportError("Models endpoint returned invalid JSON", status_code=502, provider=provider.id)
        return normalize_models(data)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


def _message_content(data) -> str | None:
    if not isinstance(data, dict):
        return None
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else None


def normalize_models(data) -> list[Model]:
    """Accept both ``{"models": [...]}`` (Ollama) and ``{"data": [...]}`` (OpenAI)."""
    if not isinstance(data, dict):
        return []

    if isinstance(data.get("models"), list):
        return [
            Model(
                id=m.get("name") or m.get("model", ""),
                object="model",
                created=_parse_timestamp(m.get("modified_at")),
                owned_by="ollama",
                raw=m,
            )
            for m in data["models"]
            if isinstance(m, dict)
        ]

    if isinstance(data.get("data"), list):
        return [
            Model(
                id=m.get("id", ""),
                object=m.get("object", "model"),
                created=m.get("created") or 0,
                owned_by=m.get("owned_by", ""),
                raw=m,
            )
            for m in data["data"]
            if isinstance(m, dict)
        ]

    return []


# Ollama reports nanosecond precision, which datetime cannot parse
_FRACTION = re.compile(r"(\.\d{6})\d+")


def _parse_timestamp(value) -> int:
    """ISO-8601 timestamp to epoch seconds; 0 when missing or unparseable."""
    if not value or not isinstance(value, str):
        return 0
    text = _FRACTION.sub(r"\1", value.strip())
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return int(datetime.fromisoformat(text).timestamp())
    except ValueError:
        return 0
