"""
aistream - OpenAI Provider Adapter

Request builder for the OpenAI Chat Completions API, plus the
OpenAI-compatible base shared with OpenRouter and local servers.
"""

from typing import Any, Dict, List, Optional

from ..core.models import Message, Provider, ResolvedSettings, as_object, as_text, first_object
from .base import BaseAdapter, ParsedResponse, usage_from


class OpenAICompatibleAdapter(BaseAdapter):
    """
    Shared request/response shape of OpenAI-compatible endpoints.

    Body: model, messages (system first), temperature, a max-tokens
    field, optional top_p and `stream: true` when streaming.
    """

    DEFAULT_URL: str = ""
    max_tokens_field = "max_tokens"
    include_stream_usage = True

    def endpoint(
        self,
        model: str,
        api_key: Optional[str],
        stream: bool,
        base_url: Optional[str] = None,
    ) -> str:
        return base_url or self.DEFAULT_URL

    def headers(self, api_key: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def build_messages(self, system_prompt: str, messages: List[Message]) -> List[Dict[str, str]]:
        result = []
        if system_prompt:
            result.append({"role": "system", "content": system_prompt})
        result.extend(
            {"role": self.chat_role(m), "content": m.content}
            for m in messages
        )
        return result

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
            "messages": self.build_messages(system_prompt, messages),
            "temperature": self.temperature(settings),
            self.max_tokens_field: self.max_tokens(settings),
        }
        if settings.top_p is not None:
            payload["top_p"] = settings.top_p
        if settings.json_mode:
            payload["response_format"] = {"type": "json_object"}
        if stream:
            payload["stream"] = True
            if self.include_stream_usage:
                payload["stream_options"] = {"include_usage": True}
        return payload

    def message_text(self, message: Dict[str, Any]) -> str:
        content = message.get("content")
        return content if isinstance(content, str) else ""

    def parse_response(self, data: Dict[str, Any], model: str = "") -> ParsedResponse:
        choice = first_object(data.get("choices"))
        usage = as_object(data.get("usage"))
        return ParsedResponse(
            content=self.message_text(as_object(choice.get("message"))),
            usage=usage_from(usage.get("prompt_tokens"), usage.get("completion_tokens")),
            finish_reason=as_text(choice.get("finish_reason")),
            generation_id=as_text(data.get("id")),
            raw=data,
        )


class OpenAIAdapter(OpenAICompatibleAdapter):
    """Adapter for the OpenAI API."""

    provider = Provider.OPENAI
    DEFAULT_URL = "https://api.openai.com/v1/chat/completions"
    max_tokens_field = "max_completion_tokens"
