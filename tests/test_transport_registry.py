"""Tests for chatwire/transports/registry.py — transport selection."""

import pytest

import chatwire.transports.registry as registry_mod
from chatwire.providers.models import ProtocolType
from chatwire.transports.gemini import GeminiTransport
from chatwire.transports.ollama import OllamaTransport
from chatwire.transports.openai import OpenAICompatibleTransport
from chatwire.transports.registry import close_all_transports, get_transport
from tests.conftest import FakeTransport


class TestTransportRegistry:

    @pytest.mark.parametrize("protocol,expected", [
        (ProtocolType.OPENAI_COMPATIBLE, OpenAICompatibleTransport),
        (ProtocolType.OLLAMA, OllamaTransport),
        (ProtocolType.GOOGLE_GEMINI, GeminiTransport),
        ("ollama", OllamaTransport),
    ])
    def test_selects_by_protocol(self, protocol, expected):
        assert type(get_transport(protocol)) is expected

    def test_singleton(self):
        assert get_transport(ProtocolType.OLLAMA) is get_transport(ProtocolType.OLLAMA)

    def test_unknown_protocol(self):
        with pytest.raises(ValueError):
            get_transport("websocket")

    async def test_close_all(self):
        closed = []

        class Closing(FakeTransport):
            async def close(self):
                closed.append(self)

        registry_mod._transports[ProtocolType.OPENAI_COMPATIBLE] = Closing()
        first = get_transport(ProtocolType.OPENAI_COMPATIBLE)

        await close_all_transports()

        assert closed == [first]
        assert get_transport(ProtocolType.OPENAI_COMPATIBLE) is not first
