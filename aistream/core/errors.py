"""
aistream - Error Definitions

Error taxonomy with infra vs semantic classification.

Infra errors come from the network or the provider's servers.
Semantic errors mean the request or the local configuration must change.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

import httpx


class ErrorType(str, Enum):
    """Error classification."""
    INFRA = "infra_error"
    SEMANTIC = "semantic_error"


@dataclass
class ErrorDetails:
    """Full error information."""
    # Core fields (always present)
    code: str
    message: str
    type: ErrorType

    # Context fields
    provider: Optional[str] = None
    param: Optional[str] = None

    # Trace fields
    request_id: str = ""

    # Recovery fields
    retryable: bool = False
    partial_content: Optional[str] = None

    # Debug fields
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code,
            "message": self.message,
            "type": self.type.value,
            "request_id": self.request_id,
            "retryable": self.retryable,
        }

        if self.provider:
            result["provider"] = self.provider
        if self.param:
            result["param"] = self.param
        if self.partial_content:
            result["partial_content"] = self.partial_content
        if self.details:
            result["details"] = self.details

        return {"error": result}


class AIStreamException(Exception):
    """Base exception for all aistream errors."""

    def __init__(self, error: ErrorDetails, status_code: int = 500):
        self.error = error
        self.status_code = status_code
        super().__init__(error.message)

    @property
    def code(self) -> str:
        return self.error.code


# ============================================================
# Infra Errors
# ============================================================

class InfraError(AIStreamException):
    """Base class for infrastructure errors."""
    pass


class TransportError(InfraError):
    """The HTTP exchange itself failed (no status code received)."""
    pass


class ConnectionTimeoutError(TransportError):
    """Failed to connect to provider."""

    def __init__(self, provider: str, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="connection_timeout",
                message=f"Failed to connect to {provider} API within timeout",
                type=ErrorType.INFRA,
                provider=provider,
                request_id=request_id,
                retryable=True,
            ),
            status_code=504
        )


class ReadTimeoutError(TransportError):
    """Provider did not respond in time."""

    def __init__(self, provider: str, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="read_timeout",
                message=f"{provider} did not respond within timeout",
                type=ErrorType.INFRA,
                provider=provider,
                request_id=request_id,
                retryable=True,
            ),
            status_code=504
        )


class ProviderConnectionError(TransportError):
    """Connection refused, reset or dropped mid-response."""

    def __init__(self, provider: str, reason: str = "", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="connection_error",
                message=f"Connection to {provider} failed: {reason}" if reason
                else f"Connection to {provider} failed",
                type=ErrorType.INFRA,
                provider=provider,
                request_id=request_id,
                retryable=True,
            ),
            status_code=502
        )


# ============================================================
# Provider HTTP Errors
# ============================================================

PROVIDER_LABELS = {
    "openai": "OpenAI",
    "openrouter": "OpenRouter",
    "anthropic": "Anthropic",
    "gemini": "Gemini",
    "local": "Local AI",
}

# Env var hint for 401 responses
_AUTH_HINTS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


class ProviderHTTPError(AIStreamException):
    """
    Provider answered with a non-2xx status.

    The message always embeds the numeric status and the provider's
    own error message, e.g. "OpenRouter error: 429 - Rate limited".
    5xx and 429 are classified infra (retryable), the rest semantic.
    """

    def __init__(
        self,
        provider: str,
        status_code: int,
        provider_message: str = "",
        message: str = "",
        request_id: str = "",
        body: Any = None,
    ):
        self.provider = provider
        self.provider_message = provider_message
        self.body = body
        label = PROVIDER_LABELS.get(provider, provider)
        retryable = status_code >= 500 or status_code == 429
        super().__init__(
            ErrorDetails(
                code=f"upstream_{status_code}",
                message=message or f"{label} error: {status_code} - {provider_message or 'Unknown'}",
                type=ErrorType.INFRA if retryable else ErrorType.SEMANTIC,
                provider=provider,
                request_id=request_id,
                retryable=retryable,
            ),
            status_code=status_code
        )


class LocalAIError(ProviderHTTPError):
    """Local OpenAI-compatible server (LM Studio, Ollama, llama.cpp) failed."""

    def __init__(
        self,
        status_code: int,
        provider_message: str = "",
        request_id: str = "",
        body: Any = None,
    ):
        super().__init__(
            "local",
            status_code,
            provider_message,
            message=f"Local AI error: {status_code} - {provider_message or 'Unknown'}",
            request_id=request_id,
            body=body,
        )


NO_MODELS_LOADED = re.compile(r"no models?\s+loaded", re.IGNORECASE)


class NoModelsLoadedError(LocalAIError):
    """The local server is up but has no model loaded."""

    remediation = (
        "Load a model in your local server first "
        "(LM Studio: open the Developer tab and load a model; Ollama: `ollama run <model>`)."
    )

    def __init__(self, status_code: int, provider_message: str = "", request_id: str = "", body: Any = None):
        super().__init__(status_code, provider_message, request_id, body)
        self.error.code = "no_models_loaded"
        self.error.details = {"remediation": self.remediation}


# ============================================================
# Semantic Errors (Not Retryable)
# ============================================================

class SemanticError(AIStreamException):
    """Base class for semantic errors (caller must fix request or config)."""
    pass


class ConfigurationError(SemanticError):
    """Local configuration prevents the request from being built."""

    def __init__(self, message: str, provider: Optional[str] = None, code: str = "configuration_error"):
        super().__init__(
            ErrorDetails(
                code=code,
                message=message,
                type=ErrorType.SEMANTIC,
                provider=provider,
                retryable=False,
            ),
            status_code=400
        )


class MissingAPIKeyError(ConfigurationError):
    """No API key configured for the provider."""

    def __init__(self, provider: str, env_var: str):
        label = PROVIDER_LABELS.get(provider, provider)
        super().__init__(
            f"{label} API key missing. Set {env_var}.",
            provider=provider,
            code="missing_api_key",
        )
        self.env_var = env_var


class ProviderNotConfiguredError(ConfigurationError):
    """Agent configuration marks its provider as unconfigured."""

    def __init__(self, provider: str):
        super().__init__(
            f"Provider {provider} not configured (missing API key)",
            provider=provider,
            code="provider_not_configured",
        )


class UnknownProviderError(ConfigurationError):
    """Provider id matches no known provider or alias."""

    def __init__(self, provider: str):
        super().__init__(
            f"Unknown provider: {provider}",
            provider=provider,
            code="unknown_provider",
        )


class StreamConsumedError(SemanticError):
    """A completion stream was iterated more than once."""

    def __init__(self, provider: str = ""):
        super().__init__(
            ErrorDetails(
                code="stream_consumed",
                message="Completion stream can only be consumed once",
                type=ErrorType.SEMANTIC,
                provider=provider or None,
                retryable=False,
            ),
            status_code=500
        )


# ============================================================
# Error Factory
# ============================================================

def parse_response_body(raw: Union[bytes, str]) -> Any:
    """Decode a response body as JSON when possible, else return the text."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def extract_provider_message(body: Any) -> str:
    """
    Pull the human-readable message out of a provider error body.

    Handles {"error": {"message": ...}}, {"error": "..."},
    {"message": ...}, a JSON list wrapping one of those, and raw text.
    """
    if isinstance(body, list) and body:
        body = body[0]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if body.get("message"):
            return str(body["message"])
        return ""
    if isinstance(body, str):
        return body.strip()[:500]
    return ""


def create_error_from_response(
    provider: str,
    status_code: int,
    body: Any,
    request_id: str = "",
) -> ProviderHTTPError:
    """Create the appropriate error for a non-2xx provider response."""
    provider_message = extract_provider_message(body)

    if provider == "local":
        if NO_MODELS_LOADED.search(provider_message):
            return NoModelsLoadedError(status_code, provider_message, request_id, body)
        return LocalAIError(status_code, provider_message, request_id, body)

    if status_code == 401 and provider in _AUTH_HINTS:
        label = PROVIDER_LABELS[provider]
        return ProviderHTTPError(
            provider,
            status_code,
            provider_message,
            message=f"{label} auth failed (check {_AUTH_HINTS[provider]}): 401 - "
                    f"{provider_message or 'Unknown'}",
            request_id=request_id,
            body=body,
        )

    return ProviderHTTPError(provider, status_code, provider_message, request_id=request_id, body=body)


def handle_transport_error(
    error: Exception,
    provider: str,
    request_id: str = "",
) -> TransportError:
    """Convert an httpx transport failure to a canonical exception."""
    if isinstance(error, httpx.TimeoutException):
        if isinstance(error, (httpx.ConnectTimeout, httpx.PoolTimeout)):
            return ConnectionTimeoutError(provider, request_id)
        return ReadTimeoutError(provider, request_id)

    return ProviderConnectionError(provider, str(error), request_id)
