"""User-defined provider store backed by a JSON file."""

import json
import os
from abc import ABC, abstractmethod

from chatwire.errors import ConfigurationError
from chatwire.providers.models import ProtocolType, ProviderConfig


class ProviderStore(ABC):
    """Abstract source of user-defined provider configs."""

    @abstractmethod
    def load(self) -> list[ProviderConfig]:
        ...


class JSONProviderStore(ProviderStore):
    """File-backed provider store. Reloads on mtime change.

    File shape::

        {"providers": [{"id": "vllm", "display_name": "vLLM box",
                        "base_url": "http://10.0.0.5:8000/v1",
                        "protocol_type": "openai-compatible",
                        "credential_key": null}]}
    """

    def __init__(self, path: str):
        self._path = path
        self._providers: list[ProviderConfig] = []
        self._last_mtime: float = 0.0

    def load(self) -> list[ProviderConfig]:
        try:
            mtime = os.path.getmtime(self._path)
        except OSError:
            self._providers = []
            self._last_mtime = 0.0
            return []

        if mtime == self._last_mtime:
            return list(self._providers)

        with open(self._path, encoding="utf-8") as f:
            data = json.load(f)

        self._providers = [_parse_entry(entry) for entry in data.get("providers", [])]
        self._last_mtime = mtime
        return list(self._providers)


def _parse_entry(entry: dict) -> ProviderConfig:
    try:
        protocol = ProtocolType(entry.get("protocol_type", ProtocolType.OPENAI_COMPATIBLE.value))
    except ValueError:
        raise ConfigurationError(
            f"Provider '{entry.get('id')}' has unknown protocol_type '{entry.get('protocol_type')}'"
        )
    if not entry.get("id"):
        raise ConfigurationError("User-defined provider entry is missing an id")

    return ProviderConfig(
        id=entry["id"],
        display_name=entry.get("display_name") or entry["id"],
        base_url=entry.get("base_url", ""),
        protocol_type=protocol,
        credential_key=entry.get("credential_key") or None,
        is_user_defined=True,
    )
