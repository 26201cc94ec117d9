"""Shared fixtures for the chatwire test suite."""

import asyncio
import json
import logging

import httpx
import pytest

import chatwire.providers.registry as provider_registry_mod
import chatwire.transports.registry as transport_registry_mod
from chatwire.completion.usage import UsageAccumulator
from chatwire.config.settings import get_settings
from chatwire.providers.models import Model, ProtocolType, ProviderConfig
from chatwire.transports.base import ChatRequest, ChatTransport, StreamChunk


@pytest.fixture(autouse=True)
def reset_singletons(monkeypatch):
    monkeypatch.setattr(transport_registry_mod, "_transports", {})
    monkeypatch.setattr(provider_registry_mod, "_registry", None)
    yield
    monkeypatch.setattr(transport_registry_mod, "_transports", {})
    monkeypatch.setattr(provider_registry_mod, "_registry", None)


@pytest.fixture
def override_settings(monkeypatch):
    """Factory fixture: set env vars and clear settings cache.

    Usage:
        override_settings(OPENAI_API_KEY="sk-test", STREAM_IDLE_TIMEOUT="5")
    """
    def _override(**kwargs):
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        # Clear lru_cache so Settings re-reads env
        get_settings.cache_clear()

    yield _override

    # Always clear cache on teardown so other tests get fresh settings
    get_settings.cache_clear()


@pytest.fixture
def openai_provider() -> ProviderConfig:
    return ProviderConfig(
        id="openai",
        display_name="OpenAI",
        base_url="https://api.openai.com/v1",
        protocol_type=ProtocolType.OPENAI_COMPATIBLE,
        credential_key="openai",
    )


@pytest.fixture
def lmstudio_provider() -> ProviderConfig:
    return ProviderConfig(
        id="lmstudio",
        display_name="LM Studio",
        base_url="http://127.0.0.1:1234/v1",
        protocol_type=ProtocolType.OPENAI_COMPATIBLE,
    )


@pytest.fixture
def ollama_provider() -> ProviderConfig:
    return ProviderConfig(
        id="ollama",
        display_name="Ollama",
        base_url="http://localhost:11434/v1",
        protocol_type=ProtocolType.OLLAMA,
    )


@pytest.fixture
def gemini_provider() -> ProviderConfig:
    return ProviderConfig(
        id="google-gemini",
        display_name="Google Gemini",
        base_url="gemini-api",
        protocol_type=ProtocolType.GOOGLE_GEMINI,
        credential_key="gemini",
    )


@pytest.fixture
def credentials() -> dict[str, str]:
    return {"openai": "sk-test-openai", "gemini": "gm-test-key"}


@pytest.fixture
def user_messages() -> list[dict]:
    return [{"role": "user", "content": "Hi"}]


@pytest.fixture
def test_logger() -> logging.Logger:
    logger = logging.getLogger("chatwire_tests")
    logger.setLevel(logging.DEBUG)
    return logger


class Recorder:
    """Collects the callback triple in call order."""

    def __init__(self):
        self.events: list[tuple[str, object]] = []

    def on_chunk(self, chunk: StreamChunk) -> None:
        self.events.append(("chunk", chunk))

    def on_error(self, error) -> None:
        self.events.append(("error", error))

    def on_done(self, metadata) -> None:
        self.events.append(("done", metadata))

    @property
    def chunks(self) -> list[StreamChunk]:
        return [payload for kind, payload in self.events if kind == "chunk"]

    @property
    def terminals(self) -> list[tuple[str, object]]:
        return [(kind, payload) for kind, payload in self.events if kind != "chunk"]

    @property
    def text(self) -> str:
        return "".join(c.text for c in self.chunks if c.type.value == "content")


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


class FakeTransport(ChatTransport):
    """Scripted transport. Items are StreamChunks, usage payload dicts, or exceptions.

    When ``gate`` is set the stream blocks on it after ``block_after`` items.
    """

    protocol = ProtocolType.OPENAI_COMPATIBLE

    def __init__(self, items=(), *, gate: asyncio.Event | None = None, block_after: int = 0,
                 completion: str | Exception = "", models=()):
        self.items = list(items)
        self.gate = gate
        self.block_after = block_after
        self.completion = completion
        self.models = list(models)
        self.closed_streams = 0
        self.requests: list[ChatRequest] = []

    async def stream_chat(self, request, usage: UsageAccumulator, logger):
        self.requests.append(request)
        try:
            for index, item in enumerate(self.items):
                if self.gate is not None and index == self.block_after:
                    await self.gate.wait()
                if isinstance(item, Exception):
                    raise item
                if isinstance(item, dict):
                    usage.record(item)
                    continue
                yield item
            if self.gate is not None and self.block_after >= len(self.items):
                await self.gate.wait()
        finally:
            self.closed_streams += 1

    async def complete(self, request, logger) -> str:
        self.requests.append(request)
        if isinstance(self.completion, Exception):
            raise self.completion
        return self.completion

    async def list_models(self, provider, api_key) -> list[Model]:
        return self.models


def sse_body(*payloads, done: bool = True) -> bytes:
    """Encode payloads as an SSE body. Strings are sent verbatim after ``data: ``."""
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def content_frame(text: str) -> dict:
    return {"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": None}]}


def mock_http_client(handler) -> httpx.AsyncClient:
    """httpx client whose requests are answered by ``handler(request)``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def async_iter(items):
    """Helper to make a sync list into an async iterator."""
    for item in items:
        yield item
