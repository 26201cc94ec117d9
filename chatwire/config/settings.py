"""Application settings loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Provider credentials, keyed by ProviderConfig.credential_key
    openai_api_key: str = ""
    gemini_api_key: str = ""

    # User-defined providers (JSON file, reloaded on change)
    providers_config_path: str = "providers.json"

    # HTTP transport
    connect_timeout: float = 10.0
    request_timeout: float = 60.0  # Non-streaming requests
    stream_idle_timeout: float = 300.0  # Max silence between stream items; 0 disables

    # Gemini has no list endpoint, so the model picker gets a curated list
    gemini_models: str = "gemini-2.5-pro,gemini-2.5-flash,gemini-2.5-flash-lite"

    # Logging
    log_level: str = "INFO"
    log_file: str = ""  # Empty = stdout only

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def credentials(self) -> dict[str, str]:
        """Credential map for configured providers. Empty keys are left out."""
        keys = {"openai": self.openai_api_key, "gemini": self.gemini_api_key}
        return {name: value.strip() for name, value in keys.items() if value.strip()}

    @property
    def gemini_models_list(self) -> list[str]:
        return [m.strip() for m in self.gemini_models.split(",") if m.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
