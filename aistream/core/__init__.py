"""
aistream Core Module

Data model, error taxonomy and HTTP transport shared by every provider.
"""

from .models import (
    # Enums
    Provider,
    StreamFormat,
    Role,
    FinishReason,
    ChunkType,

    # Requests
    Message,
    GenerationConfig,
    Preset,
    PRESETS,
    ResolvedSettings,
    RequestSpec,
    resolve_settings,
    ProviderConfig,
    Hyperparameters,
    AgentConfig,

    # Results
    Usage,
    RetryRecord,
    CompletionResult,

    # Stream chunks
    TextDelta,
    DoneChunk,
    ErrorChunk,
    StreamChunk,
)

from .errors import (
    # Error types
    ErrorType,
    ErrorDetails,
    AIStreamException,

    # Infra errors
    InfraError,
    TransportError,
    ConnectionTimeoutError,
    ReadTimeoutError,
    ProviderConnectionError,
    ProviderHTTPError,
    LocalAIError,
    NoModelsLoadedError,

    # Semantic errors
    SemanticError,
    ConfigurationError,
    MissingAPIKeyError,
    ProviderNotConfiguredError,
    UnknownProviderError,
    StreamConsumedError,

    # Factory
    create_error_from_response,
    handle_transport_error,
)

__all__ = [
    # Enums
    "Provider",
    "StreamFormat",
    "Role",
    "FinishReason",
    "ChunkType",

    # Requests
    "Message",
    "GenerationConfig",
    "Preset",
    "PRESETS",
    "ResolvedSettings",
    "RequestSpec",
    "resolve_settings",
    "ProviderConfig",
    "Hyperparameters",
    "AgentConfig",

    # Results
    "Usage",
    "RetryRecord",
    "CompletionResult",

    # Stream chunks
    "TextDelta",
    "DoneChunk",
    "ErrorChunk",
    "StreamChunk",

    # Errors
    "ErrorType",
    "ErrorDetails",
    "AIStreamException",
    "InfraError",
    "TransportError",
    "ConnectionTimeoutError",
    "ReadTimeoutError",
    "ProviderConnectionError",
    "ProviderHTTPError",
    "LocalAIError",
    "NoModelsLoadedError",
    "SemanticError",
    "ConfigurationError",
    "MissingAPIKeyError",
    "ProviderNotConfiguredError",
    "UnknownProviderError",
    "StreamConsumedError",
    "create_error_from_response",
    "handle_transport_error",
]
