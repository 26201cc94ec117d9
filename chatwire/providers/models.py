"""Provider configuration and model description types."""

from dataclasses import dataclass, field
from enum import Enum


class ProtocolType(str, Enum):
    OPENAI_COMPATIBLE = "openai-compatible"
    OLLAMA = "ollama"
    GOOGLE_GEMINI = "google-gemini"


@dataclass(frozen=True)
class ProviderConfig:
    id: str
    display_name: str
    base_url: str  # "gemini-api" for the Gemini pseudo-provider
    protocol_type: ProtocolType
    credential_key: str | None = None  # key into the credential map; None = no auth
    is_user_defined: bool = False

    @property
    def requires_credential(self) -> bool:
        return bool(self.credential_key)


@dataclass(frozen=True)
class GenerationConfig:
    temperature: float | None = None
    top_k: int | None = None
    top_p: float | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> "GenerationConfig | None":
        """Accept both snake_case and the UI's camelCase keys."""
        if not data:
            return None
        return cls(
            temperature=data.get("temperature"),
            top_k=data.get("top_k", data.get("topK")),
            top_p=data.get("top_p", data.get("topP")),
        )

    def to_openai_options(self) -> dict:
        """Request fields for OpenAI-compatible bodies (only the ones set)."""
        options = {}
        if self.temperature is not None:
            options["temperature"] = self.temperature
        if self.top_k is not None:
            options["top_k"] = self.top_k
        if self.top_p is not None:
            options["top_p"] = self.top_p
        return options


@dataclass
class Model:
    id: str
    object: str = "model"
    created: int = 0
    owned_by: str = ""
    raw: dict = field(default_factory=dict)  # provider payload, untouched


@dataclass
class ModelDetails:
    format: str = ""
    family: str = ""
    families: list[str] = field(default_factory=list)
    parameter_size: str = ""
    quantization_level: str = ""
    modelfile: str = ""
    parameters: str = ""
    template: str = ""
    num_ctx: int | None = None  # parsed from `parameters`
