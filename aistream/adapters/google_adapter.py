"""
aistream - Google Gemini Provider Adapter

Request builder for the Gemini generateContent / streamGenerateContent API.
"""

from typing import Any, Dict, List, Optional

from ..core.models import Message, Provider, ResolvedSettings, as_object, as_text, first_object
from ..streaming.normalizer import GEMINI_FINISH_REASONS
from .base import BaseAdapter, ParsedResponse, usage_from


class GeminiAdapter(BaseAdapter):
    """
    Adapter for Google Gemini API.

    Gemini uses a different message structure:
    - `contents` with roles `user` / `model` and `parts`
    - `systemInstruction` for the system prompt
    - `generationConfig` for sampling settings
    Streaming uses `alt=sse`, which yields untagged JSON frames with no
    terminal sentinel.
    """

    provider = Provider.GEMINI
    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    default_top_p = 0.9

    def endpoint(
        self,
        model: str,
        api_key: Optional[str],
        stream: bool,
        base_url: Optional[str] = None,
    ) -> str:
        # base_url is the API root here, the model path is always appended
        root = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        if stream:
            return f"{root}/models/{model}:streamGenerateContent?alt=sse&key={api_key}"
        return f"{root}/models/{model}:generateContent?key={api_key}"

    def headers(self, api_key: Optional[str]) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def build_payload(
        self,
        system_prompt: str,
        messages: List[Message],
        settings: ResolvedSettings,
        model: str,
        stream: bool,
    ) -> Dict[str, Any]:
        contents = [
            {
                "role": "user" if self.chat_role(m) == "user" else "model",
                "parts": [{"text": m.content}],
            }
            for m in messages
        ]

        generation_config: Dict[str, Any] = {
            "temperature": self.temperature(settings),
            "maxOutputTokens": self.max_tokens(settings),
            "topP": settings.top_p if settings.top_p is not None else self.default_top_p,
        }
        if settings.json_mode:
            generation_config["responseMimeType"] = "application/json"

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        return payload

    def parse_response(self, data: Dict[str, Any], model: str = "") -> ParsedResponse:
        candidate = first_object(data.get("candidates"))
        parts = as_object(candidate.get("content")).get("parts")
        if not isinstance(parts, list):
            parts = []
        text = "".join(
            part["text"] for part in parts
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
        finish_reason = as_text(candidate.get("finishReason"))
        usage = as_object(data.get("usageMetadata"))
        return ParsedResponse(
            content=text,
            usage=usage_from(usage.get("promptTokenCount"), usage.get("candidatesTokenCount")),
            finish_reason=GEMINI_FINISH_REASONS.get(finish_reason, finish_reason.lower())
            if finish_reason else None,
            generation_id=as_text(data.get("responseId")),
            raw=data,
        )
