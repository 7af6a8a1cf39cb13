"""
aistream - Provider Configuration

Credential and model defaults read from environment variables.

Environment variables:
    OPENAI_API_KEY, OPENROUTER_API_KEY, ANTHROPIC_API_KEY, GEMINI_API_KEY
    OPENAI_MODEL, OPENROUTER_MODEL, ANTHROPIC_MODEL, GEMINI_MODEL
    DEFAULT_AI_PROVIDER: Provider used when a request names none (default: gemini)
    LOCAL_AI_URL: Base URL of a local OpenAI-compatible server
                  (ignored when the credential source supplies one)
    OPENROUTER_REFERER: HTTP-Referer sent to OpenRouter
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Protocol

from .core.models import Provider


API_KEY_ENV_VARS: Dict[Provider, str] = {
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.OPENROUTER: "OPENROUTER_API_KEY",
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
    Provider.GEMINI: "GEMINI_API_KEY",
}

MODEL_ENV_VARS: Dict[Provider, str] = {
    Provider.OPENAI: "OPENAI_MODEL",
    Provider.OPENROUTER: "OPENROUTER_MODEL",
    Provider.ANTHROPIC: "ANTHROPIC_MODEL",
    Provider.GEMINI: "GEMINI_MODEL",
}

DEFAULT_MODELS: Dict[Provider, str] = {
    Provider.OPENAI: "gpt-4o",
    Provider.OPENROUTER: "openai/gpt-4o-mini",
    Provider.ANTHROPIC: "claude-sonnet-4-20250514",
    Provider.GEMINI: "gemini-2.5-flash",
    Provider.LOCAL: "local-model",
}

DEFAULT_PROVIDER_ID = "gemini"
DEFAULT_LOCAL_AI_URL = "http://localhost:1234"
LOCAL_COMPLETIONS_PATH = "/v1/chat/completions"
DEFAULT_OPENROUTER_REFERER = "https://github.com/aistream"
OPENROUTER_TITLE = "aistream"


class CredentialSource(Protocol):
    """
    Read-only lookup of provider credentials and defaults.

    `get_base_url` overrides a provider's endpoint the same way
    `ProviderConfig.base_url` does on the agent path: a full URL for
    most providers, the API root for Gemini, the server root for local.
    """

    def get_api_key(self, provider: Provider) -> Optional[str]:
        ...

    def get_default_model(self, provider: Provider) -> str:
        ...

    def get_default_provider_id(self) -> str:
        ...

    def get_base_url(self, provider: Provider) -> Optional[str]:
        ...


class EnvCredentialSource:
    """Credential source backed by process environment variables."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ if environ is not None else os.environ

    def get_api_key(self, provider: Provider) -> Optional[str]:
        env_var = API_KEY_ENV_VARS.get(provider)
        if env_var is None:
            return None
        return self._environ.get(env_var) or None

    def get_default_model(self, provider: Provider) -> str:
        env_var = MODEL_ENV_VARS.get(provider)
        if env_var and self._environ.get(env_var):
            return self._environ[env_var]
        return DEFAULT_MODELS.get(provider, "")

    def get_default_provider_id(self) -> str:
        return self._environ.get("DEFAULT_AI_PROVIDER") or DEFAULT_PROVIDER_ID

    def get_base_url(self, provider: Provider) -> Optional[str]:
        if provider == Provider.LOCAL:
            return self._environ.get("LOCAL_AI_URL") or None
        return None


@dataclass(frozen=True)
class StaticCredentialSource:
    """
    Immutable credential source, threaded explicitly through a service.

    Example:
        creds = StaticCredentialSource(
            api_keys={Provider.OPENROUTER: "sk-or-..."},
            base_urls={Provider.LOCAL: "http://gpu-box:8080"},
        )
        service = UnifiedAIService(credentials=creds)
    """
    api_keys: Mapping[Provider, str] = field(default_factory=dict)
    models: Mapping[Provider, str] = field(default_factory=dict)
    default_provider_id: str = DEFAULT_PROVIDER_ID
    base_urls: Mapping[Provider, str] = field(default_factory=dict)

    def get_api_key(self, provider: Provider) -> Optional[str]:
        return self.api_keys.get(provider) or None

    def get_default_model(self, provider: Provider) -> str:
        return self.models.get(provider) or DEFAULT_MODELS.get(provider, "")

    def get_default_provider_id(self) -> str:
        return self.default_provider_id

    def get_base_url(self, provider: Provider) -> Optional[str]:
        return self.base_urls.get(provider) or None


def get_local_ai_url() -> str:
    """Base URL of the local provider."""
    return os.getenv("LOCAL_AI_URL") or DEFAULT_LOCAL_AI_URL


def resolve_local_endpoint(base_url: Optional[str] = None) -> str:
    """
    Build the local chat-completions URL.

    The completions path is appended exactly once, so both
    "http://h:p" and "http://h:p/v1/chat/completions" resolve to
    "http://h:p/v1/chat/completions".
    """
    base = (base_url or get_local_ai_url()).rstrip("/")
    if base.endswith(LOCAL_COMPLETIONS_PATH):
        return base
    return f"{base}{LOCAL_COMPLETIONS_PATH}"


def get_openrouter_referer() -> str:
    return os.getenv("OPENROUTER_REFERER") or DEFAULT_OPENROUTER_REFERER
