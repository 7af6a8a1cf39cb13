"""
aistream - Streaming Module

Incremental SSE parsing and per-dialect normalization into canonical chunks:
- FrameTokenizer: bytes -> SSE frames, independent of read boundaries
- StreamNormalizer subclasses: frames -> TextDelta / ErrorChunk / DoneChunk
"""

from .sse import DONE_SENTINEL, FrameTokenizer, SSEFrame
from .normalizer import (
    AnthropicNormalizer,
    GeminiNormalizer,
    OpenAICompatibleNormalizer,
    StreamNormalizer,
    StreamState,
    create_normalizer,
)

__all__ = [
    # SSE
    "DONE_SENTINEL",
    "FrameTokenizer",
    "SSEFrame",
    # Normalizers
    "StreamNormalizer",
    "StreamState",
    "OpenAICompatibleNormalizer",
    "AnthropicNormalizer",
    "GeminiNormalizer",
    "create_normalizer",
]
