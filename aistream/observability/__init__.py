"""
aistream - Observability Module

- Prometheus metrics (Counter, Histogram)
- Structured JSON logging with context injection
- Interaction logging after every completion

Usage:
    from aistream.observability import get_logger, get_metrics

    logger = get_logger(__name__)
    metrics = get_metrics()
"""

from .metrics import (
    MetricsCollector,
    get_metrics,
)
from .logging import (
    StructuredLogger,
    get_logger,
    setup_logging,
    TimedOperation,
    bind_log_context,
    current_log_context,
)
from .interactions import (
    InteractionLogger,
    InteractionRecord,
    LoggingInteractionLogger,
    safe_log_interaction,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    # Logging
    "StructuredLogger",
    "get_logger",
    "setup_logging",
    "TimedOperation",
    "bind_log_context",
    "current_log_context",
    # Interactions
    "InteractionLogger",
    "InteractionRecord",
    "LoggingInteractionLogger",
    "safe_log_interaction",
]
