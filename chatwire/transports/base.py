"""Abstract base for completion transports."""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from enum import Enum

from chatwire.completion.usage import UsageAccumulator
from chatwire.providers.models import GenerationConfig, Model, ProtocolType, ProviderConfig


class ChunkType(str, Enum):
    CONTENT = "content"
    REASONING = "reasoning"


@dataclass(frozen=True)
class StreamChunk:
    type: ChunkType
    text: str

    def to_dict(self) -> dict:
        return {"type": self.type.value, "text": self.text}


@dataclass(frozen=True)
class ChatRequest:
    """Everything a transport needs for one call, resolved up front."""

    provider: ProviderConfig
    api_key: str | None
    model_id: str
    messages: list[dict]
    generation_config: GenerationConfig | None = None


class ChatTransport(ABC):
    """One wire protocol. Instances are shared across calls and hold no per-call state."""

    protocol: ProtocolType

    @abstractmethod
    def stream_chat(
        self, request: ChatRequest, usage: UsageAccumulator, logger: logging.Logger
    ) -> AsyncGenerator[StreamChunk, None]:
        """Yield normalized chunks in arrival order until the terminal signal.

        Usage found along the way is recorded into ``usage``. Malformed
        payloads are logged on ``logger`` and skipped.
        """
        ...

    @abstractmethod
    async def complete(self, request: ChatRequest, logger: logging.Logger) -> str:
        """Single-shot completion. Raises EmptyCompletionError when no content comes back."""
        ...

    @abstractmethod
    async def list_models(self, provider: ProviderConfig, api_key: str | None) -> list[Model]:
        ...

    async def close(self) -> None:
        """Cleanup resources. Override if the transport holds connections."""
        pass
