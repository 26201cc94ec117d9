"""Token usage accounting and generation speed for a single completion call.

Providers report usage in different shapes, or not at all:

* OpenAI-compatible servers send ``{"usage": {"prompt_tokens": ..., ...}}``
  inline with a chunk (usually the last one).
* Ollama's native terminal frame carries ``prompt_eval_count`` and
  ``eval_count`` next to ``"done": true``.
* Gemini's streaming API reports nothing, so usage stays ``None``.

Both shapes are normalized into ``UsageMetadata``. Speed is derived from the
completion token count and wall-clock duration, and is left as ``None``
whenever it cannot be computed meaningfully.
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class UsageMetadata:
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    @classmethod
    def from_openai(cls, usage: dict) -> "UsageMetadata":
        return cls(
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
            total_tokens=usage.get("total_tokens"),
        )

    @classmethod
    def from_ollama(cls, frame: dict) -> "UsageMetadata":
        prompt = frame["prompt_eval_count"]
        completion = frame.get("eval_count")
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + (completion or 0),
        )

    def to_dict(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class CompletionMetadata:
    """Terminal payload handed to on_done. Empty for an aborted call."""

    usage: UsageMetadata | None = None
    speed: float | None = None  # completion tokens per second
    thinking: str | None = None  # concatenated reasoning chunks

    @property
    def is_empty(self) -> bool:
        return self.usage is None and self.speed is None and self.thinking is None

    def to_dict(self) -> dict:
        data = {}
        if self.usage is not None:
            data["usage"] = self.usage.to_dict()
        if self.speed is not None:
            data["speed"] = self.speed
        if self.thinking is not None:
            data["thinking"] = self.thinking
        return data


def extract_usage(payload: dict) -> UsageMetadata | None:
    """Pull usage out of a decoded stream payload, if it carries any."""
    usage = payload.get("usage")
    if isinstance(usage, dict):
        return UsageMetadata.from_openai(usage)
    if payload.get("done") is True and payload.get("prompt_eval_count") is not None:
        return UsageMetadata.from_ollama(payload)
    return None


def compute_speed(completion_tokens: int | None, elapsed_seconds: float) -> float | None:
    """Tokens per second, or None when either input makes the rate meaningless."""
    if not completion_tokens or elapsed_seconds <= 0:
        return None
    speed = completion_tokens / elapsed_seconds
    return speed if math.isfinite(speed) else None


class UsageAccumulator:
    """Collects usage as payloads arrive and finalizes it once at stream end."""

    def __init__(self, clock: Callable[[], float] | None = None):
        self._clock = clock or time.monotonic
        self._start = self._clock()
        self.usage: UsageMetadata | None = None

    def record(self, payload: dict) -> None:
        usage = extract_usage(payload)
        if usage is not None:
            self.usage = usage

    def finalize(self, thinking: str | None = None) -> CompletionMetadata:
        elapsed = self._clock() - self._start
        completion_tokens = self.usage.completion_tokens if self.usage else None
        return CompletionMetadata(
            usage=self.usage,
            speed=compute_speed(completion_tokens, elapsed),
            thinking=thinking or None,
        )
