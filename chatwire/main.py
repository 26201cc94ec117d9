"""chatwire local bridge — FastAPI application entry point.

Exposes the completion core to the desktop UI process over localhost. Chat
streams are relayed as Server-Sent Events carrying normalized chunks, so the
UI never deals with provider wire formats.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from chatwire.completion.cancellation import AbortSignal
from chatwire.completion.orchestrator import (
    fetch_models,
    fetch_ollama_model_details,
    generate_text_completion,
    stream_chat_completion,
)
from chatwire.completion.tasks import generate_session_name, with_default_system_prompt
from chatwire.config.settings import get_settings
from chatwire.errors import ConfigurationError, LLMServiceError, UnknownProviderError
from chatwire.logging.logger import get_logger, setup_logging
from chatwire.providers.models import GenerationConfig, ProtocolType
from chatwire.providers.registry import get_registry
from chatwire.transports.registry import close_all_transports

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    setup_logging()
    get_logger().info("Bridge started")
    yield
    await close_all_transports()
    get_logger().info("Bridge stopped")


app = FastAPI(
    title="chatwire",
    description="Local bridge to streaming LLM providers",
    version=VERSION,
    lifespan=lifespan,
)


def _error_response(error: LLMServiceError) -> JSONResponse:
    if isinstance(error, UnknownProviderError):
        status_code = 404
    elif isinstance(error, ConfigurationError):
        status_code = 400
    elif error.status_code == 504:
        status_code = 504
    else:
        status_code = 502
    return JSONResponse(status_code=status_code, content={"error": str(error)})


def _chat_params(body: dict):
    """Validate a chat request body. Returns (provider, model, messages, generation_config)."""
    if not isinstance(body, dict):
        raise ConfigurationError("Request body must be a JSON object")
    provider = get_registry().get(body.get("provider", ""))
    model = body.get("model")
    messages = body.get("messages")
    if not model or not isinstance(model, str):
        raise ConfigurationError("'model' is required")
    if not messages or not isinstance(messages, list):
        raise ConfigurationError("'messages' must be a non-empty list")
    return provider, model, messages, GenerationConfig.from_dict(body.get("generation_config"))


@app.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION}


@app.get("/providers")
async def list_providers():
    return {
        "providers": [
            {**asdict(p), "protocol_type": p.protocol_type.value}
            for p in get_registry().list_providers()
        ]
    }


@app.get("/providers/{provider_id}/models")
async def list_models(provider_id: str):
    try:
        provider = get_registry().get(provider_id)
        models = await fetch_models(provider, get_settings().credentials)
    except LLMServiceError as e:
        return _error_response(e)
    return {"models": [asdict(m) for m in models]}


@app.get("/providers/{provider_id}/models/{model_name:path}/details")
async def model_details(provider_id: str, model_name: str):
    try:
        provider = get_registry().get(provider_id)
        if provider.protocol_type is not ProtocolType.OLLAMA:
            raise ConfigurationError(f"Model details are only available for Ollama providers, not '{provider_id}'")
        details = await fetch_ollama_model_details(provider.base_url, model_name)
    except LLMServiceError as e:
        return _error_response(e)
    return asdict(details)


@app.post("/v1/chat/stream")
async def chat_stream(request: Request):
    """Relay a streaming completion as SSE.

    Events: one ``{"type": "content"|"reasoning", "text"}`` per chunk, then a
    single ``{"type": "done", "metadata"}`` or ``{"type": "error", "error"}``,
    then ``[DONE]``. A client disconnect aborts the upstream call.
    """
    try:
        provider, model, messages, generation_config = _chat_params(await request.json())
    except LLMServiceError as e:
        return _error_response(e)

    credentials = get_settings().credentials

    async def event_generator():
        events: asyncio.Queue = asyncio.Queue()
        signal = AbortSignal()
        call = asyncio.create_task(stream_chat_completion(
            provider,
            credentials,
            model,
            with_default_system_prompt(messages),
            signal,
            on_chunk=lambda chunk: events.put_nowait(chunk.to_dict()),
            on_error=lambda error: events.put_nowait({"type": "error", "error": str(error)}),
            on_done=lambda metadata: events.put_nowait({"type": "done", "metadata": metadata.to_dict()}),
            generation_config=generation_config,
        ))
        try:
            while True:
                event = await events.get()
                yield f"data: {json.dumps(event)}\n\n"
                if event["type"] in ("done", "error"):
                    yield "data: [DONE]\n\n"
                    return
        finally:
            signal.abort("client disconnected")
            await call

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@app.post("/v1/chat/text")
async def chat_text(request: Request):
    try:
        provider, model, messages, generation_config = _chat_params(await request.json())
        content = await generate_text_completion(
            provider, get_settings().credentials, model, with_default_system_prompt(messages), generation_config
        )
    except LLMServiceError as e:
        return _error_response(e)
    return {"content": content}


@app.post("/v1/sessions/title")
async def session_title(request: Request):
    try:
        provider, model, messages, _ = _chat_params(await request.json())
        title = await generate_session_name(provider, get_settings().credentials, model, messages)
    except LLMServiceError as e:
        return _error_response(e)
    return {"title": title}
