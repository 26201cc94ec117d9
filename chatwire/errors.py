"""Typed errors surfaced by the completion core.

Callers only ever see subclasses of LLMServiceError: transports map their
library-specific failures (httpx, google-genai) onto this hierarchy, and the
orchestrator wraps anything else.
"""


class LLMServiceError(Exception):
    """Base class for every error the completion core reports."""

    def __init__(self, message: str, *, status_code: int | None = None, provider: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


class ConfigurationError(LLMServiceError):
    """Provider or credential configuration is unusable. Raised before any network I/O."""


class UnknownProviderError(ConfigurationError):
    pass


class MissingCredentialError(ConfigurationError):
    pass


class TransportError(LLMServiceError):
    """Upstream rejected the request or could not be reached."""


class StreamTimeoutError(TransportError):
    """No stream item arrived within the configured idle timeout."""


class EmptyCompletionError(LLMServiceError):
    """A non-streaming completion returned no content."""
