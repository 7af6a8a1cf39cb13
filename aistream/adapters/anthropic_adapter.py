"""
aistream - Anthropic Provider Adapter

Request builder for Anthropic's Messages API.
"""

from typing import Any, Dict, List, Optional

from ..core.models import Hyperparameters, Message, Provider, ResolvedSettings, as_object, as_text
from ..streaming.normalizer import ANTHROPIC_FINISH_REASONS
from .base import BaseAdapter, ParsedResponse, usage_from


class AnthropicAdapter(BaseAdapter):
    """
    Adapter for Anthropic Claude API.

    The system prompt goes in the top-level `system` field rather than
    a message, so the static prefix can be prompt-cached.
    """

    provider = Provider.ANTHROPIC
    DEFAULT_URL = "https://api.anthropic.com/v1/messages"
    API_VERSION = "2023-06-01"

    def endpoint(
        self,
        model: str,
        api_key: Optional[str],
        stream: bool,
        base_url: Optional[str] = None,
    ) -> str:
        return base_url or self.DEFAULT_URL

    def headers(self, api_key: Optional[str]) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": api_key or "",
            "anthropic-version": self.API_VERSION,
        }

    def agent_settings(self, hyperparameters: Hyperparameters) -> ResolvedSettings:
        # Anthropic rejects temperature and top_p together; top_p wins when given
        if hyperparameters.top_p is not None:
            return ResolvedSettings(
                temperature=None,
                max_tokens=hyperparameters.max_tokens,
                top_p=hyperparameters.top_p,
            )
        return super().agent_settings(hyperparameters)

    def build_payload(
        self,
        system_prompt: str,
        messages: List[Message],
        settings: ResolvedSettings,
        model: str,
        stream: bool,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": self.max_tokens(settings),
            "messages": [
                {"role": self.chat_role(m), "content": m.content}
                for m in messages
            ],
        }
        if settings.temperature is None and settings.top_p is not None:
            payload["top_p"] = settings.top_p
        else:
            payload["temperature"] = self.temperature(settings)
        if system_prompt:
            payload["system"] = system_prompt
        if stream:
            payload["stream"] = True
        return payload

    def parse_response(self, data: Dict[str, Any], model: str = "") -> ParsedResponse:
        blocks = data.get("content")
        text = "".join(
            block["text"]
            for block in (blocks if isinstance(blocks, list) else [])
            if isinstance(block, dict)
            and block.get("type", "text") == "text"
            and isinstance(block.get("text"), str)
        )
        usage = as_object(data.get("usage"))
        stop_reason = as_text(data.get("stop_reason"))
        return ParsedResponse(
            content=text,
            usage=usage_from(usage.get("input_tokens"), usage.get("output_tokens")),
            finish_reason=ANTHROPIC_FINISH_REASONS.get(stop_reason, stop_reason) if stop_reason else None,
            generation_id=as_text(data.get("id")),
            raw=data,
        )
