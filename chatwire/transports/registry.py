"""Transport registry — singleton map of protocol type → transport instance."""

from chatwire.providers.models import ProtocolType
from chatwire.transports.base import ChatTransport
from chatwire.transports.gemini import GeminiTransport
from chatwire.transports.ollama import OllamaTransport
from chatwire.transports.openai import OpenAICompatibleTransport

_transports: dict[ProtocolType, ChatTransport] = {}


def get_transport(protocol: ProtocolType) -> ChatTransport:
    """Get or create the transport for a protocol type."""
    protocol = ProtocolType(protocol)
    if protocol in _transports:
        return _transports[protocol]

    if protocol is ProtocolType.OPENAI_COMPATIBLE:
        _transports[protocol] = OpenAICompatibleTransport()
    elif protocol is ProtocolType.OLLAMA:
        _transports[protocol] = OllamaTransport()
    elif protocol is ProtocolType.GOOGLE_GEMINI:
        _transports[protocol] = GeminiTransport()
    else:
        raise ValueError(f"Unknown protocol type: {protocol}")

    return _transports[protocol]


async def close_all_transports() -> None:
    """Gracefully shut down all transport connections."""
    for transport in _transports.values():
        await transport.close()
    _transports.clear()
