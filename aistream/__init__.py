"""
aistream - Streaming Completion Client

One interface to OpenAI, OpenRouter, Anthropic, Gemini and local
OpenAI-compatible servers, streaming or not, with canonical chunks,
normalized usage and a bounded retry for empty completions.
"""

from .core.models import (
    AgentConfig,
    ChunkType,
    CompletionResult,
    DoneChunk,
    ErrorChunk,
    GenerationConfig,
    Hyperparameters,
    Message,
    Provider,
    ProviderConfig,
    RequestSpec,
    TextDelta,
    Usage,
)
from .retry import (
    EMPTY_CONTENT_MAX_RETRIES,
    EMPTY_CONTENT_RETRY_DELAYS_MS,
    EmptyContentRetryGovernor,
)
from .service import (
    CompletionStream,
    UnifiedAIService,
    call,
    call_agent,
    call_stream,
    generate_text,
    get_available_provider,
    get_default_service,
    get_provider_status,
)

__version__ = "1.0.0"

__all__ = [
    "AgentConfig",
    "ChunkType",
    "CompletionResult",
    "DoneChunk",
    "ErrorChunk",
    "GenerationConfig",
    "Hyperparameters",
    "Message",
    "Provider",
    "ProviderConfig",
    "RequestSpec",
    "TextDelta",
    "Usage",
    "EMPTY_CONTENT_MAX_RETRIES",
    "EMPTY_CONTENT_RETRY_DELAYS_MS",
    "EmptyContentRetryGovernor",
    "CompletionStream",
    "UnifiedAIService",
    "call",
    "call_agent",
    "call_stream",
    "generate_text",
    "get_available_provider",
    "get_default_service",
    "get_provider_status",
]
