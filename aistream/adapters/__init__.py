"""
aistream Adapters Module

Provider-specific request builders that translate a provider-independent
request into each provider's native API format.
"""

from typing import Union

from ..core.errors import UnknownProviderError
from ..core.models import Provider
from .base import BaseAdapter, ParsedResponse, ProviderRequest
from .openai_adapter import OpenAIAdapter, OpenAICompatibleAdapter
from .openrouter_adapter import OpenRouterAdapter
from .local_adapter import LocalAdapter
from .anthropic_adapter import AnthropicAdapter
from .google_adapter import GeminiAdapter

__all__ = [
    "BaseAdapter",
    "ParsedResponse",
    "ProviderRequest",
    "OpenAICompatibleAdapter",
    "OpenAIAdapter",
    "OpenRouterAdapter",
    "LocalAdapter",
    "AnthropicAdapter",
    "GeminiAdapter",
    "get_adapter",
    "resolve_provider",
]


_ADAPTERS = {
    Provider.OPENAI: OpenAIAdapter,
    Provider.OPENROUTER: OpenRouterAdapter,
    Provider.ANTHROPIC: AnthropicAdapter,
    Provider.GEMINI: GeminiAdapter,
    Provider.LOCAL: LocalAdapter,
}


def resolve_provider(provider: Union[str, Provider]) -> Provider:
    """
    Normalize a provider id or alias.

    Raises:
        UnknownProviderError: If provider is not supported
    """
    try:
        return Provider.parse(provider)
    except ValueError:
        raise UnknownProviderError(str(provider)) from None


def get_adapter(provider: Union[str, Provider]) -> BaseAdapter:
    """
    Factory function to get the adapter for a provider.

    Args:
        provider: Provider id or alias ("openai", "claude", "google", ...)

    Returns:
        Adapter instance

    Raises:
        UnknownProviderError: If provider is not supported
    """
    return _ADAPTERS[resolve_provider(provider)]()
