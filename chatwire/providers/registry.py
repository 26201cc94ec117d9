"""Provider registry — built-in providers plus user-defined ones from the store."""

from chatwire.config.settings import get_settings
from chatwire.errors import ConfigurationError, MissingCredentialError, UnknownProviderError
from chatwire.logging.logger import get_logger
from chatwire.providers.models import ProtocolType, ProviderConfig
from chatwire.providers.store import JSONProviderStore, ProviderStore

GEMINI_BASE_URL = "gemini-api"

DEFAULT_PROVIDERS: tuple[ProviderConfig, ...] = (
    ProviderConfig("ollama", "Ollama", "http://localhost:11434/v1", ProtocolType.OLLAMA),
    ProviderConfig("lmstudio", "LM Studio", "http://127.0.0.1:1234/v1", ProtocolType.OPENAI_COMPATIBLE),
    ProviderConfig(
        "openai", "OpenAI", "https://api.openai.com/v1", ProtocolType.OPENAI_COMPATIBLE,
        credential_key="openai",
    ),
    ProviderConfig(
        "google-gemini", "Google Gemini", GEMINI_BASE_URL, ProtocolType.GOOGLE_GEMINI,
        credential_key="gemini",
    ),
    ProviderConfig("custom", "Custom", "http://localhost:8080/v1", ProtocolType.OPENAI_COMPATIBLE),
)


class ProviderRegistry:
    """Read-only lookup over built-in and user-defined providers."""

    def __init__(
        self,
        providers: tuple[ProviderConfig, ...] = DEFAULT_PROVIDERS,
        store: ProviderStore | None = None,
    ):
        self._builtin = {p.id: p for p in providers}
        self._store = store

    def list_providers(self) -> list[ProviderConfig]:
        return list(self._builtin.values()) + self._user_defined()

    def get(self, provider_id: str) -> ProviderConfig:
        if provider_id in self._builtin:
            return self._builtin[provider_id]
        for provider in self._user_defined():
            if provider.id == provider_id:
                return provider
        raise UnknownProviderError(f"Unknown provider: {provider_id}", provider=provider_id)

    def _user_defined(self) -> list[ProviderConfig]:
        if self._store is None:
            return []
        providers = []
        for provider in self._store.load():
            if provider.id in self._builtin:
                get_logger().warning(
                    "User-defined provider shadows a built-in id, skipped",
                    extra={"event_data": {"provider": provider.id}},
                )
                continue
            providers.append(provider)
        return providers


_registry: ProviderRegistry | None = None


def get_registry() -> ProviderRegistry:
    """Get the registry singleton, wired to the configured provider file."""
    global _registry
    if _registry is None:
        settings = get_settings()
        store = JSONProviderStore(settings.providers_config_path) if settings.providers_config_path else None
        _registry = ProviderRegistry(store=store)
    return _registry


def resolve_credential(provider: ProviderConfig, credentials: dict[str, str]) -> str | None:
    """Look up the provider's secret. None for providers that need no auth."""
    if not provider.requires_credential:
        return None
    secret = credentials.get(provider.credential_key, "")
    if not secret:
        raise MissingCredentialError(
            f"No credential configured for provider '{provider.display_name}' "
            f"(expected key '{provider.credential_key}')",
            provider=provider.id,
        )
    return secret


def validate_provider(provider: ProviderConfig) -> None:
    """Reject providers whose base URL cannot be used for HTTP requests."""
    if provider.protocol_type is ProtocolType.GOOGLE_GEMINI:
        return
    base_url = (provider.base_url or "").strip()
    if not base_url.startswith(("http://", "https://")):
        raise ConfigurationError(
            f"Provider '{provider.display_name}' has no valid base URL: '{provider.base_url}'",
            provider=provider.id,
        )
