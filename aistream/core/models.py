"""
aistream - Core Data Models

Provider-independent request, result and stream chunk types.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


# ============================================================
# Enums
# ============================================================

class Provider(str, Enum):
    """Supported AI providers."""
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    LOCAL = "local"

    @classmethod
    def parse(cls, value: Union[str, "Provider"]) -> "Provider":
        """Resolve a provider id, accepting the `claude` and `google` aliases."""
        if isinstance(value, Provider):
            return value
        name = PROVIDER_ALIASES.get(value.lower(), value.lower())
        return cls(name)

    @property
    def stream_format(self) -> "StreamFormat":
        if self is Provider.ANTHROPIC:
            return StreamFormat.ANTHROPIC
        if self is Provider.GEMINI:
            return StreamFormat.GEMINI
        return StreamFormat.OPENAI_COMPATIBLE


PROVIDER_ALIASES = {
    "claude": "anthropic",
    "google": "gemini",
}


class StreamFormat(str, Enum):
    """SSE wire dialects."""
    OPENAI_COMPATIBLE = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"


class Role(str, Enum):
    """Message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class FinishReason(str, Enum):
    """Completion finish reasons."""
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"


class ChunkType(str, Enum):
    """Canonical stream chunk tags."""
    TEXT_DELTA = "text_delta"
    DONE = "done"
    ERROR = "error"


# ============================================================
# Text sanitization
# ============================================================

# Lone UTF-16 surrogates cannot be encoded as UTF-8 JSON
_LONE_SURROGATE = re.compile(
    "[\ud800-\udbff](?![\udc00-\udfff])|(?<![\ud800-\udbff])[\udc00-\udfff]"
)


def sanitize_text(text: Any) -> Any:
    """Replace unpaired surrogate code points with U+FFFD."""
    if not isinstance(text, str):
        return text
    return _LONE_SURROGATE.sub("\ufffd", text)


# Provider JSON is untrusted: a field of the wrong type reads as absent.

def as_object(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def first_object(value: Any) -> Dict[str, Any]:
    """First element of a JSON array when it is an object, else {}."""
    if isinstance(value, list) and value:
        return as_object(value[0])
    return {}


def as_text(value: Any) -> Optional[str]:
    """Non-empty string or None."""
    return value if isinstance(value, str) and value else None


# ============================================================
# Messages
# ============================================================

@dataclass
class Message:
    """A single conversation turn."""
    role: Role
    content: str = ""

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> Message:
        return cls(role=Role.ASSISTANT, content=content)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Message:
        role = data.get("role", "user")
        try:
            parsed = Role(role)
        except ValueError:
            parsed = Role.ASSISTANT
        return cls(role=parsed, content=data.get("content") or "")


# ============================================================
# Generation settings
# ============================================================

@dataclass
class GenerationConfig:
    """
    Sampling overrides for one request.

    Every field is optional. Set fields win over the preset,
    unset fields fall back to the preset and then to provider defaults.
    """
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    json_mode: Optional[bool] = None


@dataclass(frozen=True)
class Preset:
    """Named sampling profile."""
    name: str
    temperature: float
    max_tokens: int
    top_p: float


PRESETS: Dict[str, Preset] = {
    "chat": Preset("Context-based Chat", 0.35, 800, 0.95),
    "direct": Preset("Direct Reply", 0.5, 1000, 0.95),
    "socratic": Preset("Socratic Dialogue", 0.7, 500, 0.9),
    "code_review": Preset("Code Review", 0.3, 1500, 0.9),
    "deliberation": Preset("Agent Deliberation", 0.7, 1000, 0.9),
    "persona": Preset("Philosopher Persona", 0.7, 1000, 0.9),
}

DEFAULT_PRESET = "direct"


@dataclass(frozen=True)
class ResolvedSettings:
    """Sampling settings after the preset/override merge."""
    temperature: Optional[float]
    max_tokens: Optional[int]
    top_p: Optional[float]
    json_mode: bool = False


def resolve_settings(
    preset: Optional[str],
    config: Optional[GenerationConfig],
) -> ResolvedSettings:
    """
    Merge a preset with explicit overrides, field by field.

    Unknown preset names fall back to the `direct` preset. Fields left
    as None here are filled by the provider adapter's own defaults.
    """
    base = PRESETS.get(preset or DEFAULT_PRESET) or PRESETS[DEFAULT_PRESET]
    config = config or GenerationConfig()
    return ResolvedSettings(
        temperature=config.temperature if config.temperature is not None else base.temperature,
        max_tokens=config.max_tokens if config.max_tokens is not None else base.max_tokens,
        top_p=config.top_p if config.top_p is not None else base.top_p,
        json_mode=bool(config.json_mode),
    )


# ============================================================
# Request Models
# ============================================================

@dataclass
class RequestSpec:
    """
    One chat-completion request.

    Example:
        spec = RequestSpec(
            provider="openrouter",
            model="deepseek/deepseek-chat",
            system_prompt="You are terse.",
            messages=[Message.user("Hello!")],
            preset="chat",
        )
    """
    system_prompt: str = ""
    messages: List[Message] = field(default_factory=list)
    provider: Optional[Union[str, Provider]] = None
    model: Optional[str] = None
    preset: Optional[str] = None
    config: Optional[GenerationConfig] = None
    user_id: Optional[str] = None
    prompt_category: Optional[str] = None

    def __post_init__(self):
        self.messages = [
            m if isinstance(m, Message) else Message.from_dict(m)
            for m in self.messages
        ]


@dataclass
class ProviderConfig:
    """Connection details carried by an agent configuration."""
    is_configured: bool = False
    api_key: Optional[str] = None
    base_url: Optional[str] = None


@dataclass
class Hyperparameters:
    temperature: float = 0.5
    max_tokens: int = 1500
    top_p: Optional[float] = None


@dataclass
class AgentConfig:
    """Pre-resolved provider configuration for one dialogue agent."""
    provider: Union[str, Provider]
    provider_config: ProviderConfig
    model: str
    hyperparameters: Hyperparameters = field(default_factory=Hyperparameters)


# ============================================================
# Results
# ============================================================

@dataclass
class Usage:
    """
    Token accounting as reported by the provider.

    Counts the provider did not report stay None; `total_tokens`
    exists only when both sides are known.
    """
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None

    @property
    def total_tokens(self) -> Optional[int]:
        if self.input_tokens is None or self.output_tokens is None:
            return None
        return self.input_tokens + self.output_tokens

    @property
    def is_empty(self) -> bool:
        return self.input_tokens is None and self.output_tokens is None

    def to_dict(self) -> Dict[str, int]:
        result = {}
        if self.input_tokens is not None:
            result["input_tokens"] = self.input_tokens
        if self.output_tokens is not None:
            result["output_tokens"] = self.output_tokens
        if self.total_tokens is not None:
            result["total_tokens"] = self.total_tokens
        return result


@dataclass
class RetryRecord:
    """Attempt history produced by the empty-content retry loop."""
    attempts: int = 1
    delays_ms: List[int] = field(default_factory=list)
    empty_content_retries: Optional[int] = None


@dataclass
class CompletionResult:
    """Normalized result of one completion (streamed or not)."""
    content: str
    provider: str
    model: str
    usage: Optional[Usage] = None
    latency_ms: float = 0.0
    finish_reason: Optional[str] = None
    generation_id: Optional[str] = None
    retry: RetryRecord = field(default_factory=RetryRecord)

    @property
    def output_tokens(self) -> Optional[int]:
        return self.usage.output_tokens if self.usage else None

    @property
    def empty_content_retries(self) -> Optional[int]:
        return self.retry.empty_content_retries


# ============================================================
# Canonical stream chunks
# ============================================================

@dataclass
class TextDelta:
    """An incremental piece of generated text."""
    content: str
    type: ChunkType = field(default=ChunkType.TEXT_DELTA, init=False)


@dataclass
class DoneChunk:
    """Terminal chunk; `content` is the concatenation of every preceding delta."""
    content: str
    provider: str
    model: str
    latency_ms: float = 0.0
    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None
    type: ChunkType = field(default=ChunkType.DONE, init=False)

    def to_result(self) -> CompletionResult:
        return CompletionResult(
            content=self.content,
            provider=self.provider,
            model=self.model,
            usage=self.usage,
            latency_ms=self.latency_ms,
            finish_reason=self.finish_reason,
        )


@dataclass
class ErrorChunk:
    """In-band provider error reported inside an otherwise successful stream."""
    code: str
    message: str
    partial_content: str = ""
    type: ChunkType = field(default=ChunkType.ERROR, init=False)


StreamChunk = Union[TextDelta, DoneChunk, ErrorChunk]
