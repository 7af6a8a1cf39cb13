"""
aistream - Provider Adapter Base

Abstract base class for provider request builders.
Each provider (OpenAI, OpenRouter, Anthropic, Gemini, local) implements this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import API_KEY_ENV_VARS, CredentialSource
from ..core.errors import MissingAPIKeyError
from ..core.models import (
    Hyperparameters,
    Message,
    Provider,
    ResolvedSettings,
    Role,
    Usage,
    sanitize_text,
)


DEFAULT_MAX_TOKENS = 1000


@dataclass
class ProviderRequest:
    """Fully built HTTP request for one provider call."""
    provider: Provider
    model: str
    url: str
    headers: Dict[str, str]
    payload: Dict[str, Any]
    stream: bool = False


@dataclass
class ParsedResponse:
    """Provider-independent view of a non-streaming response body."""
    content: str
    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None
    generation_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def usage_from(input_tokens: Any, output_tokens: Any) -> Optional[Usage]:
    """Build Usage from raw counts; None when the provider reported neither."""
    usage = Usage(input_tokens=_int_or_none(input_tokens), output_tokens=_int_or_none(output_tokens))
    return None if usage.is_empty else usage


class BaseAdapter(ABC):
    """
    Abstract base class for provider adapters.

    The adapter is responsible for:
    1. Choosing the effective model
    2. Building URL, headers and JSON body (streaming or not)
    3. Converting a non-streaming response body into a ParsedResponse

    It performs no I/O. Credential lookup happens in `build_request`,
    so a missing API key raises before any network call.
    """

    provider: Provider
    requires_api_key: bool = True
    default_temperature: float = 0.5

    def resolve_model(self, requested: Optional[str], credentials: CredentialSource) -> str:
        return requested or credentials.get_default_model(self.provider)

    def require_api_key(self, credentials: CredentialSource) -> Optional[str]:
        """
        Look up the API key.

        Raises:
            MissingAPIKeyError: provider needs a key and none is configured
        """
        api_key = credentials.get_api_key(self.provider)
        if self.requires_api_key and not api_key:
            raise MissingAPIKeyError(self.provider.value, API_KEY_ENV_VARS[self.provider])
        return api_key

    def build_request(
        self,
        system_prompt: str,
        messages: List[Message],
        settings: ResolvedSettings,
        credentials: CredentialSource,
        model: Optional[str] = None,
        stream: bool = False,
    ) -> ProviderRequest:
        """Build a request from credentials resolved through a CredentialSource."""
        api_key = self.require_api_key(credentials)
        effective_model = self.resolve_model(model, credentials)
        return self.build(
            system_prompt,
            messages,
            settings,
            api_key=api_key,
            model=effective_model,
            stream=stream,
            base_url=credentials.get_base_url(self.provider),
        )

    def build(
        self,
        system_prompt: str,
        messages: List[Message],
        settings: ResolvedSettings,
        api_key: Optional[str],
        model: str,
        stream: bool = False,
        base_url: Optional[str] = None,
    ) -> ProviderRequest:
        """Build a request from already-resolved credentials."""
        return ProviderRequest(
            provider=self.provider,
            model=model,
            url=self.endpoint(model, api_key, stream, base_url),
            headers=self.headers(api_key),
            payload=self.build_payload(
                sanitize_text(system_prompt or ""),
                [Message(m.role, sanitize_text(m.content)) for m in messages],
                settings,
                model,
                stream,
            ),
            stream=stream,
        )

    def agent_settings(self, hyperparameters: Hyperparameters) -> ResolvedSettings:
        """Sampling settings for a pre-resolved agent configuration."""
        return ResolvedSettings(
            temperature=hyperparameters.temperature,
            max_tokens=hyperparameters.max_tokens,
            top_p=hyperparameters.top_p,
        )

    def temperature(self, settings: ResolvedSettings) -> float:
        if settings.temperature is None:
            return self.default_temperature
        return settings.temperature

    def max_tokens(self, settings: ResolvedSettings) -> int:
        return settings.max_tokens or DEFAULT_MAX_TOKENS

    @staticmethod
    def chat_role(message: Message) -> str:
        """Non-user turns are sent as assistant turns."""
        return Role.USER.value if message.role == Role.USER else Role.ASSISTANT.value

    @abstractmethod
    def endpoint(
        self,
        model: str,
        api_key: Optional[str],
        stream: bool,
        base_url: Optional[str] = None,
    ) -> str:
        pass

    @abstractmethod
    def headers(self, api_key: Optional[str]) -> Dict[str, str]:
        pass

    @abstractmethod
    def build_payload(
        self,
        system_prompt: str,
        messages: List[Message],
        settings: ResolvedSettings,
        model: str,
        stream: bool,
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    def parse_response(self, data: Dict[str, Any], model: str = "") -> ParsedResponse:
        pass
