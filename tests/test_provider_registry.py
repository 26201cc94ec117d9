"""Tests for chatwire/providers — registry, JSON store and credential lookup."""

import json
import os

import pytest

from chatwire.errors import ConfigurationError, MissingCredentialError, UnknownProviderError
from chatwire.providers.models import GenerationConfig, ProtocolType, ProviderConfig
from chatwire.providers.registry import (
    DEFAULT_PROVIDERS,
    ProviderRegistry,
    get_registry,
    resolve_credential,
    validate_provider,
)
from chatwire.providers.store import JSONProviderStore


def _write(path, providers):
    path.write_text(json.dumps({"providers": providers}))


@pytest.fixture
def store_path(tmp_path):
    path = tmp_path / "providers.json"
    _write(path, [
        {"id": "vllm", "display_name": "vLLM", "base_url": "http://10.0.0.5:8000/v1",
         "protocol_type": "openai-compatible", "credential_key": "vllm"},
        {"id": "remote-ollama", "base_url": "http://gpu-box:11434/v1", "protocol_type": "ollama"},
    ])
    return path


class TestJSONProviderStore:

    def test_load(self, store_path):
        providers = JSONProviderStore(str(store_path)).load()
        assert [p.id for p in providers] == ["vllm", "remote-ollama"]
        assert providers[0].credential_key == "vllm"
        assert providers[1].protocol_type is ProtocolType.OLLAMA
        assert providers[1].display_name == "remote-ollama"
        assert all(p.is_user_defined for p in providers)

    def test_missing_file(self, tmp_path):
        assert JSONProviderStore(str(tmp_path / "nope.json")).load() == []

    def test_reload_on_change(self, store_path):
        store = JSONProviderStore(str(store_path))
        assert len(store.load()) == 2

        _write(store_path, [{"id": "only", "base_url": "http://x/v1"}])
        stat = os.stat(store_path)
        os.utime(store_path, (stat.st_atime, stat.st_mtime + 5))

        providers = store.load()
        assert [p.id for p in providers] == ["only"]
        assert providers[0].protocol_type is ProtocolType.OPENAI_COMPATIBLE

    def test_bad_protocol(self, tmp_path):
        path = tmp_path / "providers.json"
        _write(path, [{"id": "x", "base_url": "http://x", "protocol_type": "grpc"}])
        with pytest.raises(ConfigurationError, match="grpc"):
            JSONProviderStore(str(path)).load()

    def test_missing_id(self, tmp_path):
        path = tmp_path / "providers.json"
        _write(path, [{"base_url": "http://x"}])
        with pytest.raises(ConfigurationError, match="missing an id"):
            JSONProviderStore(str(path)).load()


class TestProviderRegistry:

    def test_builtins(self):
        registry = ProviderRegistry()
        ids = [p.id for p in registry.list_providers()]
        assert ids == ["ollama", "lmstudio", "openai", "google-gemini", "custom"]
        assert registry.get("google-gemini").protocol_type is ProtocolType.GOOGLE_GEMINI

    def test_user_defined(self, store_path):
        registry = ProviderRegistry(store=JSONProviderStore(str(store_path)))
        assert registry.get("vllm").base_url == "http://10.0.0.5:8000/v1"
        assert len(registry.list_providers()) == len(DEFAULT_PROVIDERS) + 2

    def test_unknown(self):
        with pytest.raises(UnknownProviderError):
            ProviderRegistry().get("does-not-exist")

    def test_builtin_cannot_be_shadowed(self, tmp_path):
        path = tmp_path / "providers.json"
        _write(path, [{"id": "openai", "base_url": "http://evil/v1"}])
        registry = ProviderRegistry(store=JSONProviderStore(str(path)))
        assert registry.get("openai").base_url == "https://api.openai.com/v1"
        assert len(registry.list_providers()) == len(DEFAULT_PROVIDERS)

    def test_singleton_uses_settings_path(self, override_settings, store_path):
        override_settings(PROVIDERS_CONFIG_PATH=str(store_path))
        registry = get_registry()
        assert get_registry() is registry
        assert registry.get("remote-ollama").protocol_type is ProtocolType.OLLAMA


class TestResolveCredential:

    def test_no_auth_provider(self, lmstudio_provider):
        assert resolve_credential(lmstudio_provider, {"openai": "sk"}) is None

    def test_found(self, openai_provider, credentials):
        assert resolve_credential(openai_provider, credentials) == "sk-test-openai"

    @pytest.mark.parametrize("credentials", [{}, {"openai": ""}])
    def test_missing(self, openai_provider, credentials):
        with pytest.raises(MissingCredentialError, match="'openai'"):
            resolve_credential(openai_provider, credentials)


class TestValidateProvider:

    def test_gemini_needs_no_url(self, gemini_provider):
        validate_provider(gemini_provider)

    @pytest.mark.parametrize("base_url", ["", "localhost:11434", "ftp://host/v1"])
    def test_invalid(self, base_url):
        provider = ProviderConfig("x", "X", base_url, ProtocolType.OPENAI_COMPATIBLE)
        with pytest.raises(ConfigurationError):
            validate_provider(provider)


class TestGenerationConfig:

    def test_from_camel_case(self):
        config = GenerationConfig.from_dict({"temperature": 0.7, "topK": 40, "topP": 0.9})
        assert config == GenerationConfig(temperature=0.7, top_k=40, top_p=0.9)

    def test_empty(self):
        assert GenerationConfig.from_dict(None) is None
        assert GenerationConfig.from_dict({}) is None

    def test_openai_options_only_set_fields(self):
        assert GenerationConfig(top_p=0.5).to_openai_options() == {"top_p": 0.5}
