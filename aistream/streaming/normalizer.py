"""
aistream - Stream Normalizer

Interprets SSE frames of one provider dialect as canonical chunks.

Each normalizer emits zero or more TextDelta chunks, at most one
ErrorChunk per in-band provider error, and exactly one final DoneChunk
whose content is the concatenation of every TextDelta it emitted.

Dialects:
- OpenAI-compatible (openai, openrouter, local): `choices[0].delta.content`,
  usage on any frame, terminated by `data: [DONE]`
- Anthropic: `event:`-tagged frames, terminated by `message_stop`
- Gemini: untagged JSON frames, terminated by body close
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.models import (
    DoneChunk,
    ErrorChunk,
    FinishReason,
    Provider,
    StreamChunk,
    StreamFormat,
    TextDelta,
    Usage,
    as_object,
    as_text,
    first_object,
)
from .sse import FrameTokenizer, SSEFrame


ANTHROPIC_FINISH_REASONS = {
    "end_turn": FinishReason.STOP.value,
    "max_tokens": FinishReason.LENGTH.value,
    "tool_use": FinishReason.TOOL_CALLS.value,
    "stop_sequence": FinishReason.STOP.value,
}

# MAX_TOKENS is the only truncation signal Gemini gives; it maps to
# "length" so the empty-content retry policy treats it as truncation.
GEMINI_FINISH_REASONS = {
    "STOP": FinishReason.STOP.value,
    "MAX_TOKENS": FinishReason.LENGTH.value,
    "SAFETY": FinishReason.CONTENT_FILTER.value,
    "RECITATION": FinishReason.CONTENT_FILTER.value,
    "BLOCKLIST": FinishReason.CONTENT_FILTER.value,
    "PROHIBITED_CONTENT": FinishReason.CONTENT_FILTER.value,
}


@dataclass
class StreamState:
    """
    Tracks state during streaming.

    Used for:
    - Accumulating content for the Done chunk
    - Reconciling usage fields reported on different frames
    - Remembering whether the dialect's terminal signal was seen
    """
    provider: str
    model: str
    request_id: str = ""
    parts: List[str] = field(default_factory=list)
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    finish_reason: Optional[str] = None
    terminated: bool = False
    finished: bool = False
    frames_seen: int = 0

    @property
    def content(self) -> str:
        return "".join(self.parts)

    @property
    def usage(self) -> Optional[Usage]:
        if self.input_tokens is None and self.output_tokens is None:
            return None
        return Usage(input_tokens=self.input_tokens, output_tokens=self.output_tokens)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return None


class StreamNormalizer(ABC):
    """
    Base class for dialect normalizers.

    Usage:
        normalizer = create_normalizer(Provider.ANTHROPIC, model="claude-sonnet-4")
        async for raw in response.aiter_bytes():
            for chunk in normalizer.feed(raw):
                yield chunk
            if normalizer.terminated:
                break
        for chunk in normalizer.finish(latency_ms):
            yield chunk
    """

    format: StreamFormat

    def __init__(self, provider: str, model: str, request_id: str = ""):
        self.state = StreamState(provider=provider, model=model, request_id=request_id)
        self._tokenizer = FrameTokenizer()

    @property
    def terminated(self) -> bool:
        """True once the dialect's explicit terminal signal was seen."""
        return self.state.terminated

    def feed(self, chunk: bytes) -> List[StreamChunk]:
        """Consume one network read."""
        if self.state.finished:
            raise RuntimeError(f"{type(self).__name__} already finished")
        return self._handle_frames(self._tokenizer.feed(chunk))

    def finish(self, latency_ms: float = 0.0) -> List[StreamChunk]:
        """Flush buffered bytes and emit the single Done chunk."""
        if self.state.finished:
            raise RuntimeError(f"{type(self).__name__} already finished")
        chunks = self._handle_frames(self._tokenizer.close())
        self.state.finished = True
        chunks.append(DoneChunk(
            content=self.state.content,
            provider=self.state.provider,
            model=self.state.model,
            latency_ms=latency_ms,
            usage=self.state.usage,
            finish_reason=self.state.finish_reason,
        ))
        return chunks

    def _handle_frames(self, frames: List[SSEFrame]) -> List[StreamChunk]:
        chunks: List[StreamChunk] = []
        for frame in frames:
            if self.state.terminated:
                break
            self.state.frames_seen += 1
            chunks.extend(self.handle_frame(frame))
        return chunks

    @abstractmethod
    def handle_frame(self, frame: SSEFrame) -> List[StreamChunk]:
        """Translate one frame; unrecognized frames yield an empty list."""
        pass

    def _text(self, text: Any) -> List[StreamChunk]:
        if not isinstance(text, str) or not text:
            return []
        self.state.parts.append(text)
        return [TextDelta(content=text)]

    def _error(self, error: Any) -> List[StreamChunk]:
        if isinstance(error, dict):
            code = str(error.get("type") or error.get("status") or error.get("code") or "stream_error")
            message = str(error.get("message") or error)
        else:
            code, message = "stream_error", str(error)
        return [ErrorChunk(code=code, message=message, partial_content=self.state.content)]


class OpenAICompatibleNormalizer(StreamNormalizer):
    """OpenAI, OpenRouter and local servers."""

    format = StreamFormat.OPENAI_COMPATIBLE

    def handle_frame(self, frame: SSEFrame) -> List[StreamChunk]:
        if frame.is_done_sentinel:
            self.state.terminated = True
            return []

        data = frame.payload
        if not isinstance(data, dict):
            return []

        if data.get("error"):
            return self._error(data["error"])

        usage = data.get("usage")
        if isinstance(usage, dict):
            prompt_tokens = _as_int(usage.get("prompt_tokens"))
            completion_tokens = _as_int(usage.get("completion_tokens"))
            if prompt_tokens is not None:
                self.state.input_tokens = prompt_tokens
            if completion_tokens is not None:
                self.state.output_tokens = completion_tokens

        choice = first_object(data.get("choices"))
        finish_reason = as_text(choice.get("finish_reason"))
        if finish_reason:
            self.state.finish_reason = finish_reason

        return self._text(as_object(choice.get("delta")).get("content"))


class AnthropicNormalizer(StreamNormalizer):
    """Anthropic Messages API streaming events."""

    format = StreamFormat.ANTHROPIC

    def handle_frame(self, frame: SSEFrame) -> List[StreamChunk]:
        data = frame.payload
        if not isinstance(data, dict):
            return []

        event_type = frame.event or data.get("type")

        if event_type == "message_start":
            usage = as_object(as_object(data.get("message")).get("usage"))
            input_tokens = _as_int(usage.get("input_tokens"))
            if input_tokens is not None:
                self.state.input_tokens = input_tokens
            return []

        if event_type == "content_block_delta":
            return self._text(as_object(data.get("delta")).get("text"))

        if event_type == "message_delta":
            usage = as_object(data.get("usage"))
            output_tokens = _as_int(usage.get("output_tokens"))
            if output_tokens is not None:
                self.state.output_tokens = output_tokens
            stop_reason = as_text(as_object(data.get("delta")).get("stop_reason"))
            if stop_reason:
                self.state.finish_reason = ANTHROPIC_FINISH_REASONS.get(stop_reason, stop_reason)
            return []

        if event_type == "message_stop":
            self.state.terminated = True
            return []

        if event_type == "error":
            return self._error(data.get("error") or data)

        # ping, content_block_start, content_block_stop, ...
        return []


class GeminiNormalizer(StreamNormalizer):
    """Gemini `streamGenerateContent?alt=sse` frames."""

    format = StreamFormat.GEMINI

    def handle_frame(self, frame: SSEFrame) -> List[StreamChunk]:
        data = frame.payload
        # Some proxies wrap each frame in a one-element array
        if isinstance(data, list):
            data = first_object(data)
        if not isinstance(data, dict):
            return []

        if data.get("error"):
            return self._error(data["error"])

        usage = data.get("usageMetadata")
        if isinstance(usage, dict):
            prompt_tokens = _as_int(usage.get("promptTokenCount"))
            candidates_tokens = _as_int(usage.get("candidatesTokenCount"))
            if prompt_tokens is not None:
                self.state.input_tokens = prompt_tokens
            if candidates_tokens is not None:
                self.state.output_tokens = candidates_tokens

        candidate = first_object(data.get("candidates"))
        finish_reason = as_text(candidate.get("finishReason"))
        if finish_reason:
            self.state.finish_reason = GEMINI_FINISH_REASONS.get(finish_reason, finish_reason.lower())

        parts = as_object(candidate.get("content")).get("parts")
        if not isinstance(parts, list):
            return []
        text = "".join(
            part["text"] for part in parts
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
        return self._text(text)


_NORMALIZERS: Dict[StreamFormat, type] = {
    StreamFormat.OPENAI_COMPATIBLE: OpenAICompatibleNormalizer,
    StreamFormat.ANTHROPIC: AnthropicNormalizer,
    StreamFormat.GEMINI: GeminiNormalizer,
}


def create_normalizer(
    provider: Provider,
    model: str,
    request_id: str = "",
) -> StreamNormalizer:
    """Factory function to create the normalizer for a provider's dialect."""
    normalizer_class = _NORMALIZERS[provider.stream_format]
    return normalizer_class(provider=provider.value, model=model, request_id=request_id)
