from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

from toolloop.errors import ConfigError

DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"
DEFAULT_MODELS = {
    "ollama": "qwen2.5:3b",
    "openai": "gpt-4.1-mini",
}
DEFAULT_FETCH_CONTENT_TYPES = (
    "text/",
    "application/json",
    "application/xml",
    "application/xhtml+xml",
)


class Settings(BaseSettings):
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "protected_namespaces": (),
    }

    model_provider: str = "ollama"
    model: str = ""
    ollama_base_url: str = DEFAULT_OLLAMA_BASE_URL
    openai_api_key: str = ""
    openai_base_url: str = ""

    # Turn guardrails
    agent_max_steps: int = Field(8, gt=0)
    agent_max_tool_calls: int = Field(8, gt=0)
    agent_max_tool_calls_per_step: int = Field(4, gt=0)
    agent_max_consecutive_tool_steps: int = Field(4, gt=0)
    agent_max_input_chars: int = Field(4_000, gt=0)
    agent_max_output_chars: int = Field(8_000, gt=0)

    # Timeouts and retries
    tool_timeout_ms: int = Field(5_000, gt=0)
    model_timeout_ms: int = Field(20_000, gt=0)
    model_max_retries: int = Field(2, ge=0)

    # Tool policy
    fetch_url_allowed_domains: str = "example.com"
    fetch_url_allow_subdomains: bool = False
    fetch_url_follow_redirects: bool = False
    fetch_url_max_redirects: int = Field(5, ge=0)
    fetch_url_max_bytes: int = Field(262_144, gt=0)
    notes_dir: str = "notes"
    save_note_allow_overwrite: bool = False
    save_note_max_bytes: int = Field(65_536, gt=0)

    @field_validator("model_provider")
    @classmethod
    def _check_provider(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in DEFAULT_MODELS:
            raise ValueError(
                f"invalid MODEL_PROVIDER `{value}`; expected one of: {', '.join(DEFAULT_MODELS)}"
            )
        return normalized

    @field_validator("fetch_url_allowed_domains")
    @classmethod
    def _check_allowlist(cls, value: str) -> str:
        return ",".join(parse_domain_allowlist(value))

    @field_validator("notes_dir", "ollama_base_url")
    @classmethod
    def _check_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("cannot be empty")
        return value

    @model_validator(mode="after")
    def _check_provider_credentials(self) -> Settings:
        if self.model_provider == "openai" and not self.openai_api_key.strip():
            raise ValueError("OPENAI_API_KEY must be set when MODEL_PROVIDER is `openai`")
        return self

    @property
    def resolved_model(self) -> str:
        return self.model.strip() or DEFAULT_MODELS[self.model_provider]


def parse_domain_allowlist(raw: str) -> list[str]:
    """Split a comma-separated domain list into sorted, unique, lower-case hosts."""
    domains = sorted(
        {d.strip().strip(".").lower() for d in raw.split(",") if d.strip().strip(".")}
    )
    if not domains:
        raise ValueError("FETCH_URL_ALLOWED_DOMAINS must contain at least one domain")
    for domain in domains:
        if not all(ch.isascii() and (ch.isalnum() or ch in ".-") for ch in domain):
            raise ValueError(f"FETCH_URL_ALLOWED_DOMAINS contains invalid domain `{domain}`")
    return domains


@dataclass(frozen=True)
class ToolPolicy:
    fetch_allowed_domains: tuple[str, ...] = ("example.com",)
    fetch_allow_subdomains: bool = False
    fetch_follow_redirects: bool = False
    fetch_max_redirects: int = 5
    fetch_max_bytes: int = 262_144
    fetch_allowed_content_types: tuple[str, ...] = DEFAULT_FETCH_CONTENT_TYPES
    notes_dir: Path = Path("notes")
    save_note_allow_overwrite: bool = False
    save_note_max_bytes: int = 65_536


@dataclass(frozen=True)
class RuntimeLimits:
    """Per-process turn limits. Built once, shared read-only by every turn."""

    max_steps: int = 8
    max_tool_calls: int = 8
    max_tool_calls_per_step: int = 4
    max_consecutive_tool_steps: int = 4
    max_input_chars: int = 4_000
    max_output_chars: int = 8_000
    tool_timeout_s: float = 5.0
    model_timeout_s: float = 20.0
    model_max_retries: int = 2
    policy: ToolPolicy = ToolPolicy()

    @classmethod
    def from_settings(cls, settings: Settings) -> RuntimeLimits:
        return cls(
            max_steps=settings.agent_max_steps,
            max_tool_calls=settings.agent_max_tool_calls,
            max_tool_calls_per_step=settings.agent_max_tool_calls_per_step,
            max_consecutive_tool_steps=settings.agent_max_consecutive_tool_steps,
            max_input_chars=settings.agent_max_input_chars,
            max_output_chars=settings.agent_max_output_chars,
            tool_timeout_s=settings.tool_timeout_ms / 1000,
            model_timeout_s=settings.model_timeout_ms / 1000,
            model_max_retries=settings.model_max_retries,
            policy=ToolPolicy(
                fetch_allowed_domains=tuple(settings.fetch_url_allowed_domains.split(",")),
                fetch_allow_subdomains=settings.fetch_url_allow_subdomains,
                fetch_follow_redirects=settings.fetch_url_follow_redirects,
                fetch_max_redirects=settings.fetch_url_max_redirects,
                fetch_max_bytes=settings.fetch_url_max_bytes,
                notes_dir=Path(settings.notes_dir).expanduser(),
                save_note_allow_overwrite=settings.save_note_allow_overwrite,
                save_note_max_bytes=settings.save_note_max_bytes,
            ),
        )


@dataclass(frozen=True)
class ModelConfig:
    provider: str = "ollama"
    model: str = ""
    base_url: str = ""
    api_key: str = ""
    timeout_s: float = 20.0
    max_retries: int = 2
    temperature: float | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> ModelConfig:
        if settings.model_provider == "ollama":
            base_url = settings.ollama_base_url
        else:
            base_url = settings.openai_base_url
        return cls(
            provider=settings.model_provider,
            model=settings.resolved_model,
            base_url=base_url,
            api_key=settings.openai_api_key,
            timeout_s=settings.model_timeout_ms / 1000,
            max_retries=settings.model_max_retries,
        )


def load_settings(**overrides) -> Settings:
    """Build Settings from the environment, wrapping validation errors in ConfigError."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigError(f"failed to load configuration: {e}") from e
