"""Completion orchestrator — public entry points of the completion core.

``stream_chat_completion`` reports through three callbacks. For any single
call exactly one of ``on_error`` / ``on_done`` fires, exactly once, and no
``on_chunk`` call follows it. Aborting is not an error: it resolves through
``on_done`` with empty metadata. The streaming entry point never raises
(except ``asyncio.CancelledError`` when the calling task itself is
cancelled); the other entry points raise ``LLMServiceError`` subclasses.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator, Callable

from chatwire.completion.cancellation import AbortSignal
from chatwire.completion.usage import CompletionMetadata, UsageAccumulator
from chatwire.config.settings import get_settings
from chatwire.errors import ConfigurationError, LLMServiceError, StreamTimeoutError
from chatwire.logging.logger import CallTimer, call_id_var, generate_call_id, get_logger
from chatwire.providers.models import GenerationConfig, Model, ModelDetails, ProtocolType, ProviderConfig
from chatwire.providers.registry import resolve_credential, validate_provider
from chatwire.transports.base import ChatRequest, ChatTransport, ChunkType, StreamChunk
from chatwire.transports.ollama import OllamaTransport
from chatwire.transports.registry import get_transport

OnChunk = Callable[[StreamChunk], None]
OnError = Callable[[LLMServiceError], None]
OnDone = Callable[[CompletionMetadata], None]


def _prepare_request(
    provider: ProviderConfig,
    credentials: dict[str, str],
    model_id: str,
    messages: list[dict],
    generation_config: GenerationConfig | None,
) -> ChatRequest:
    """Validate inputs and resolve the credential. No network I/O."""
    validate_provider(provider)
    if not model_id:
        raise ConfigurationError("A model id is required", provider=provider.id)
    if not messages:
        raise ConfigurationError("At least one message is required", provider=provider.id)
    return ChatRequest(
        provider=provider,
        api_key=resolve_credential(provider, credentials),
        model_id=model_id,
        messages=list(messages),
        generation_config=generation_config,
    )


async def _pump(
    stream: AsyncGenerator[StreamChunk, None],
    signal: AbortSignal,
    on_chunk: OnChunk,
    reasoning: list[str],
    idle_timeout: float,
) -> bool:
    """Forward chunks in order. True when the stream ended, False when aborted."""
    try:
        while not signal.aborted:
            try:
                if idle_timeout > 0:
                    chunk = await asyncio.wait_for(stream.__anext__(), idle_timeout)
                else:
                    chunk = await stream.__anext__()
            except StopAsyncIteration:
                return True
            except asyncio.TimeoutError:
                raise StreamTimeoutError(
                    f"No data received from provider for {idle_timeout:g} seconds",
                    status_code=504,
                )

            if signal.aborted:
                break
            if chunk.type is ChunkType.REASONING:
                reasoning.append(chunk.text)
            on_chunk(chunk)
        return False
    finally:
        await stream.aclose()


async def stream_chat_completion(
    provider: ProviderConfig,
    credentials: dict[str, str],
    model_id: str,
    messages: list[dict],
    signal: AbortSignal,
    on_chunk: OnChunk,
    on_error: OnError,
    on_done: OnDone,
    generation_config: GenerationConfig | None = None,
    *,
    transport: ChatTransport | None = None,
    logger: logging.Logger | None = None,
    idle_timeout: float | None = None,
) -> None:
    """Stream a chat completion, delivering normalized chunks to ``on_chunk``.

    Args:
        provider: Provider to call; its protocol type selects the transport.
        credentials: Credential map, read-only.
        model_id: Backend model identifier.
        messages: OpenAI-shaped message dicts, oldest first.
        signal: Caller-owned abort signal.
        on_chunk: Receives each StreamChunk as soon as it is decoded.
        on_error: Receives the LLMServiceError of a failed call.
        on_done: Receives CompletionMetadata (empty when aborted).
        generation_config: Optional sampling parameters.
        transport: Override the registry's transport for this protocol.
        logger: Logger for this call; defaults to the chatwire logger.
        idle_timeout: Seconds of stream silence before failing; 0 disables.
            Defaults to the STREAM_IDLE_TIMEOUT setting.
    """
    log = logger or get_logger()
    call_id_var.set(generate_call_id())

    if signal.aborted:
        log.info("Chat stream aborted before request")
        on_done(CompletionMetadata())
        return

    try:
        request = _prepare_request(provider, credentials, model_id, messages, generation_config)
        transport = transport or get_transport(provider.protocol_type)
    except LLMServiceError as e:
        log.error(str(e), extra={"event_data": {"provider": provider.id, "model": model_id}})
        on_error(e)
        return

    if idle_timeout is None:
        idle_timeout = get_settings().stream_idle_timeout

    log.info(
        "Starting chat completion stream",
        extra={"event_data": {
            "provider": provider.id,
            "protocol": provider.protocol_type.value,
            "model": model_id,
            "message_count": len(messages),
        }},
    )

    usage = UsageAccumulator()
    reasoning: list[str] = []
    stream = transport.stream_chat(request, usage, log)
    consumer = asyncio.create_task(_pump(stream, signal, on_chunk, reasoning, idle_timeout))
    abort_waiter = asyncio.create_task(signal.wait())

    with CallTimer() as timer:
        try:
            await asyncio.wait({consumer, abort_waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            consumer.cancel()
            raise
        finally:
            abort_waiter.cancel()

        interrupted = not consumer.done()
        if interrupted:
            # Abort fired while blocked on the network: cancel the read, which
            # unwinds the transport's response context and releases the body.
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)

    timing = {"provider": provider.id, "latency_ms": timer.elapsed_ms}

    if interrupted:
        log.info("Chat stream aborted by user", extra={"event_data": timing})
        on_done(CompletionMetadata())
        return

    error = consumer.exception()
    if error is not None:
        if signal.aborted:
            log.info("Chat stream aborted by user", extra={"event_data": timing})
            on_done(CompletionMetadata())
            return
        if isinstance(error, LLMServiceError):
            log.error(
                f"Chat stream failed: {error}",
                extra={"event_data": {**timing, "status_code": error.status_code}},
            )
        else:
            log.error("Unexpected error during chat streaming", exc_info=error)
            wrapped = LLMServiceError(
                "An unknown error occurred during chat streaming.", provider=provider.id
            )
            wrapped.__cause__ = error
            error = wrapped
        on_error(error)
        return

    if not consumer.result():
        log.info("Chat stream aborted by user", extra={"event_data": timing})
        on_done(CompletionMetadata())
        return

    metadata = usage.finalize(thinking="".join(reasoning))
    log.info("Chat stream finished", extra={"event_data": {**timing, **metadata.to_dict()}})
    on_done(metadata)


async def generate_text_completion(
    provider: ProviderConfig,
    credentials: dict[str, str],
    model_id: str,
    messages: list[dict],
    generation_config: GenerationConfig | None = None,
    *,
    transport: ChatTransport | None = None,
    logger: logging.Logger | None = None,
) -> str:
    """Single-shot completion for auxiliary tasks. Never returns an empty string."""
    log = logger or get_logger()
    request = _prepare_request(provider, credentials, model_id, messages, generation_config)
    transport = transport or get_transport(provider.protocol_type)

    log.info(
        "Requesting non-streaming text completion",
        extra={"event_data": {"provider": provider.id, "model": model_id}},
    )
    try:
        with CallTimer() as timer:
            content = await transport.complete(request, log)
    except LLMServiceError as e:
        log.error(f"Text completion failed: {e}", extra={"event_data": {"provider": provider.id}})
        raise
    except Exception as e:
        log.error("Unexpected error during text completion", exc_info=True)
        raise LLMServiceError(
            "An unknown error occurred during text completion.", provider=provider.id
        ) from e

    log.info(
        "Text completion finished",
        extra={"event_data": {"provider": provider.id, "latency_ms": timer.elapsed_ms}},
    )
    return content


async def fetch_models(
    provider: ProviderConfig,
    credentials: dict[str, str],
    *,
    transport: ChatTransport | None = None,
    logger: logging.Logger | None = None,
) -> list[Model]:
    """List the models a provider serves (a curated list for Gemini)."""
    log = logger or get_logger()
    validate_provider(provider)
    if provider.protocol_type is ProtocolType.GOOGLE_GEMINI:
        # Curated list from settings; fills the picker before a key is set
        api_key = None
    else:
        api_key = resolve_credential(provider, credentials)
    transport = transport or get_transport(provider.protocol_type)

    log.info("Fetching models", extra={"event_data": {"provider": provider.id, "base_url": provider.base_url}})
    try:
        models = await transport.list_models(provider, api_key)
    except LLMServiceError as e:
        log.error(f"Model listing failed: {e}", extra={"event_data": {"provider": provider.id}})
        raise
    except Exception as e:
        log.error("Unexpected error while fetching models", exc_info=True)
        raise LLMServiceError("An unknown error occurred while fetching models.", provider=provider.id) from e

    if not models:
        log.warning("Models endpoint returned no models", extra={"event_data": {"provider": provider.id}})
    else:
        log.info(f"Found {len(models)} models", extra={"event_data": {"provider": provider.id}})
    return models


async def fetch_ollama_model_details(
    base_url: str,
    model_name: str,
    *,
    transport: OllamaTransport | None = None,
    logger: logging.Logger | None = None,
) -> ModelDetails:
    """Model card from Ollama's /api/show, with ``num_ctx`` parsed out."""
    log = logger or get_logger()
    if not base_url.strip().startswith(("http://", "https://")):
        raise ConfigurationError(f"Invalid Ollama base URL: '{base_url}'", provider="ollama")
    if not model_name:
        raise ConfigurationError("A model name is required", provider="ollama")
    transport = transport or get_transport(ProtocolType.OLLAMA)

    log.info("Fetching model details", extra={"event_data": {"model": model_name, "base_url": base_url}})
    try:
        return await transport.fetch_model_details(base_url, model_name)
    except LLMServiceError as e:
        log.error(f"Error fetching Ollama model details: {e}")
        raise
    except Exception as e:
        log.error("Unexpected error while fetching model details", exc_info=True)
        raise LLMServiceError(
            "An unknown error occurred while fetching model details.", provider="ollama"
        ) from e
