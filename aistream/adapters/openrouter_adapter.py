"""
aistream - OpenRouter Provider Adapter
"""

from typing import Any, Dict, Optional

from ..config import OPENROUTER_TITLE, CredentialSource, get_openrouter_referer
from ..core.models import Provider, first_object
from ..observability.logging import get_logger
from .openai_adapter import OpenAICompatibleAdapter


logger = get_logger(__name__)


class OpenRouterAdapter(OpenAICompatibleAdapter):
    """
    Adapter for OpenRouter.

    OpenRouter model ids are namespaced (`vendor/model`); a bare id falls
    back to the configured default. Thinking models may leave `content`
    empty and answer in `reasoning` / `reasoning_content` instead.
    """

    provider = Provider.OPENROUTER
    DEFAULT_URL = "https://openrouter.ai/api/v1/chat/completions"
    default_temperature = 0.7

    def resolve_model(self, requested: Optional[str], credentials: CredentialSource) -> str:
        if requested and "/" in requested:
            return requested
        return credentials.get_default_model(self.provider)

    def headers(self, api_key: Optional[str]) -> Dict[str, str]:
        headers = super().headers(api_key)
        headers["HTTP-Referer"] = get_openrouter_referer()
        headers["X-Title"] = OPENROUTER_TITLE
        return headers

    def message_text(self, message: Dict[str, Any]) -> str:
        content = super().message_text(message)
        if content:
            return content
        for key in ("reasoning", "reasoning_content"):
            if isinstance(message.get(key), str) and message[key]:
                return message[key]
        return ""

    def parse_response(self, data: Dict[str, Any], model: str = ""):
        parsed = super().parse_response(data, model)
        if not parsed.content:
            choices = data.get("choices")
            first = first_object(choices)
            error = data.get("error") or {}
            logger.warning(
                f"OpenRouter returned empty content from {model}",
                finish_reason=parsed.finish_reason or "unknown",
                native_finish_reason=first.get("native_finish_reason")
                or (error.get("message") if isinstance(error, dict) else error),
                choices=len(choices) if isinstance(choices, list) else 0,
            )
        return parsed
