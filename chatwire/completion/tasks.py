"""Auxiliary single-shot generations built on generate_text_completion."""

import json
import logging
import re
from dataclasses import dataclass, field

from chatwire.completion.orchestrator import generate_text_completion
from chatwire.errors import LLMServiceError
from chatwire.providers.models import GenerationConfig, ProviderConfig
from chatwire.transports.base import ChatTransport

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Answer the user's questions accurately and concisely."
)

SESSION_NAME_PROMPT = (
    "Based on the following conversation, generate a short, descriptive title (5 words or less) "
    "for the chat session. Only output the title, with no extra text or quotation marks."
)

API_REQUEST_PROMPT = (
    "Based on the following user description, generate the components for an HTTP API request. "
    "Ensure the URL is complete and valid. If the user mentions JSON, format the body as a "
    "minified JSON string. Respond with a single JSON object with the keys \"method\", \"url\", "
    "\"headers\" (a list of {{\"key\", \"value\"}} objects) and \"body\" (a string or null), "
    "and nothing else.\n\nDescription: \"{description}\""
)

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass
class ApiRequest:
    method: str = "GET"
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None


def _transcript(messages: list[dict]) -> str:
    lines = []
    for msg in messages:
        content = msg.get("content")
        if isinstance(content, list):
            content = " ".join(p.get("text", "") for p in content if isinstance(p, dict) and p.get("type") == "text")
        if content:
            lines.append(f"{msg.get('role', 'user')}: {content}")
    return "\n".join(lines)


def with_default_system_prompt(messages: list[dict], prompt: str = DEFAULT_SYSTEM_PROMPT) -> list[dict]:
    """Prepend a system turn unless the conversation already has one."""
    if any(m.get("role") == "system" for m in messages):
        return list(messages)
    return [{"role": "system", "content": prompt}, *messages]


def clean_title(raw: str) -> str:
    title = raw.strip().splitlines()[0].strip() if raw.strip() else ""
    return title.strip("\"'`*").strip()


async def generate_session_name(
    provider: ProviderConfig,
    credentials: dict[str, str],
    model_id: str,
    messages: list[dict],
    *,
    transport: ChatTransport | None = None,
    logger: logging.Logger | None = None,
) -> str:
    """Ask the model for a short chat title."""
    conversation = _transcript([m for m in messages if m.get("role") != "system"])
    prompt = [
        {"role": "system", "content": SESSION_NAME_PROMPT},
        {"role": "user", "content": conversation},
    ]
    raw = await generate_text_completion(
        provider, credentials, model_id, prompt, GenerationConfig(temperature=0.2),
        transport=transport, logger=logger,
    )
    title = clean_title(raw)
    if not title:
        raise LLMServiceError("Model returned an empty session title", provider=provider.id)
    return title


def parse_api_request(raw: str) -> ApiRequest:
    """Parse the model's JSON answer, tolerating a surrounding code fence."""
    text = raw.strip()
    fenced = _FENCE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise LLMServiceError(f"Model did not return a valid JSON request: {e}")
    if not isinstance(data, dict):
        raise LLMServiceError("Model did not return a JSON object")

    headers = data.get("headers") or {}
    if isinstance(headers, list):
        headers = {h["key"]: str(h.get("value", "")) for h in headers if isinstance(h, dict) and h.get("key")}
    elif isinstance(headers, dict):
        headers = {str(k): str(v) for k, v in headers.items()}
    else:
        headers = {}

    method = str(data.get("method") or "GET").upper()
    if method not in HTTP_METHODS:
        method = "GET"

    body = data.get("body")
    if body is not None and not isinstance(body, str):
        body = json.dumps(body, separators=(",", ":"))

    return ApiRequest(method=method, url=data.get("url") or "", headers=headers, body=body or None)


async def synthesize_api_request(
    provider: ProviderConfig,
    credentials: dict[str, str],
    model_id: str,
    description: str,
    *,
    transport: ChatTransport | None = None,
    logger: logging.Logger | None = None,
) -> ApiRequest:
    """Turn a plain-language description into an HTTP request."""
    prompt = [{"role": "user", "content": API_REQUEST_PROMPT.format(description=description)}]
    raw = await generate_text_completion(
        provider, credentials, model_id, prompt, transport=transport, logger=logger,
    )
    return parse_api_request(raw)
