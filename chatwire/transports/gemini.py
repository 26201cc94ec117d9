"""Google Gemini transport via the google-genai SDK."""

import base64
import binascii
import logging
import re
from collections.abc import AsyncGenerator
from dataclasses import dataclass

from chatwire.completion.usage import UsageAccumulator
from chatwire.config.settings import get_settings
from chatwire.errors import EmptyCompletionError, LLMServiceError, TransportError
from chatwire.providers.models import GenerationConfig, Model, ProtocolType, ProviderConfig
from chatwire.transports.base import ChatRequest, ChatTransport, ChunkType, StreamChunk

GEMINI_ROLES = {"user": "user", "assistant": "model"}

DATA_URI_PATTERN = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)


@dataclass
class GeminiConversation:
    system_instruction: str | None
    history: list[dict]
    current: dict

    @property
    def contents(self) -> list[dict]:
        return [*self.history, self.current]


def decode_data_uri(uri: str) -> dict | None:
    """``data:<mime>;base64,<data>`` -> inline_data dict, or None if undecodable."""
    match = DATA_URI_PATTERN.match(uri or "")
    if not match:
        return None
    try:
        raw = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError):
        return None
    if not raw:
        return None
    return {"mime_type": match.group("mime"), "data": raw}


def to_gemini_parts(content) -> list[dict]:
    """Map OpenAI-style message content to Gemini parts, dropping empty ones."""
    if isinstance(content, str):
        return [{"text": content}] if content else []

    parts = []
    for part in content or []:
        if not isinstance(part, dict):
            continue
        if part.get("type") == "text":
            text = part.get("text") or ""
            if text:
                parts.append({"text": text})
        elif part.get("type") == "image_url":
            inline = decode_data_uri((part.get("image_url") or {}).get("url", ""))
            if inline is not None:
                parts.append({"inline_data": inline})
    return parts


def _system_text(content) -> str:
    return "\n".join(p["text"] for p in to_gemini_parts(content) if "text" in p)


def build_conversation(messages: list[dict]) -> GeminiConversation:
    """Partition messages into system instruction, history and the active turn.

    The active turn is the last ``user`` message; anything after it (such as
    an empty assistant placeholder the UI appends) is ignored. Turns whose
    content maps to no parts are left out entirely because Gemini rejects
    empty turns.
    """
    last_user = None
    for index, msg in enumerate(messages):
        if msg.get("role") == "user":
            last_user = index
    if last_user is None:
        raise LLMServiceError("Conversation has no user message to send")

    system_instruction = None
    turns = []
    for msg in messages[:last_user + 1]:
        role = msg.get("role")
        if role == "system":
            if system_instruction is None:
                system_instruction = _system_text(msg.get("content")) or None
            continue
        gemini_role = GEMINI_ROLES.get(role)
        if gemini_role is None:
            continue
        parts = to_gemini_parts(msg.get("content"))
        if not parts:
            continue
        turns.append({"role": gemini_role, "parts": parts})

    if not turns or turns[-1]["role"] != "user":
        raise LLMServiceError("The latest user message has no content to send")

    return GeminiConversation(
        system_instruction=system_instruction,
        history=turns[:-1],
        current=turns[-1],
    )


def build_config(system_instruction: str | None, generation_config: GenerationConfig | None) -> dict:
    config = {}
    if system_instruction:
        config["system_instruction"] = system_instruction
    if generation_config is not None:
        if generation_config.temperature is not None:
            config["temperature"] = generation_config.temperature
        if generation_config.top_k is not None:
            config["top_k"] = generation_config.top_k
        if generation_config.top_p is not None:
            config["top_p"] = generation_config.top_p
    return config


def _gemini_error(e: Exception, provider_id: str) -> TransportError:
    """Map google-genai exceptions to TransportError by status code."""
    code = getattr(e, "code", None)
    if not isinstance(code, int):
        code = None

    if code in (401, 403):
        message = f"Gemini rejected the API key ({code}): {e}"
    elif code == 429:
        message = "Gemini rate limit exceeded"
    elif code == 404:
        message = f"Gemini model not found: {e}"
    else:
        message = f"Gemini error: {e}"
    return TransportError(message, status_code=code or 502, provider=provider_id)


class GeminiTransport(ChatTransport):
    """Consumes the SDK's async chunk iterator. No usage, no reasoning channel."""

    protocol = ProtocolType.GOOGLE_GEMINI

    def __init__(self, client=None):
        # One SDK client per API key; an injected client serves every key
        self._client = client
        self._clients: dict[str, object] = {}

    def _get_client(self, api_key: str | None):
        """Lazy-init the google-genai client (avoids import when not needed)."""
        if self._client is not None:
            return self._client
        key = api_key or ""
        if key not in self._clients:
            from google import genai

            self._clients[key] = genai.Client(api_key=key)
        return self._clients[key]

    async def stream_chat(
        self, request: ChatRequest, usage: UsageAccumulator, logger: logging.Logger
    ) -> AsyncGenerator[StreamChunk, None]:
        conversation = build_conversation(request.messages)
        client = self._get_client(request.api_key)
        logger.debug(
            "Sending Gemini conversation",
            extra={"event_data": {"history_turns": len(conversation.history)}},
        )

        try:
            stream = await client.aio.models.generate_content_stream(
                model=request.model_id,
                contents=conversation.contents,
                config=build_config(conversation.system_instruction, request.generation_config),
            )
            async for chunk in stream:
                text = chunk.text
                if text:
                    yield StreamChunk(ChunkType.CONTENT, text)
        except Exception as e:
            raise _gemini_error(e, request.provider.id) from e

    async def complete(self, request: ChatRequest, logger: logging.Logger) -> str:
        conversation = build_conversation(request.messages)
        client = self._get_client(request.api_key)
        try:
            response = await client.aio.models.generate_content(
                model=request.model_id,
                contents=conversation.contents,
                config=build_config(conversation.system_instruction, request.generation_config),
            )
        except Exception as e:
            raise _gemini_error(e, request.provider.id) from e

        text = getattr(response, "text", None)
        if not text:
            raise EmptyCompletionError("Gemini response did not contain text.", provider=request.provider.id)
        return text

    async def list_models(self, provider: ProviderConfig, api_key: str | None) -> list[Model]:
        return [
            Model(id=name, object="model", created=0, owned_by="google", raw={"name": name})
            for name in get_settings().gemini_models_list
        ]

    async def close(self) -> None:
        # SDK clients hold no connections we manage
        self._clients.clear()
