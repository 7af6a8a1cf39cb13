"""
aistream - Interaction Logging

Post-completion record of who called which model and how it went.
The logger is fire-and-forget: failures inside it are logged and
never reach the caller.
"""

from dataclasses import asdict, dataclass
from typing import Optional, Protocol

from .logging import get_logger
from .metrics import MetricsCollector, get_metrics


logger = get_logger("aistream.interactions")


@dataclass
class InteractionRecord:
    """One completion attempt sequence, as seen by the caller."""
    user_id: Optional[str]
    provider: str
    model: str
    prompt_category: Optional[str]
    latency_ms: float
    success: bool
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    streaming: bool = False
    error_message: Optional[str] = None


class InteractionLogger(Protocol):
    def log_interaction(self, record: InteractionRecord) -> None:
        ...


class LoggingInteractionLogger:
    """Writes each interaction as a structured log line and records metrics."""

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        self.metrics = metrics or get_metrics()

    def log_interaction(self, record: InteractionRecord) -> None:
        self.metrics.record_completion(
            provider=record.provider,
            model=record.model,
            outcome="success" if record.success else "error",
            duration_seconds=record.latency_ms / 1000,
            streaming=record.streaming,
        )
        if record.success:
            self.metrics.record_tokens(
                record.provider, record.model, record.input_tokens, record.output_tokens
            )
            logger.info("AI interaction completed", **asdict(record))
        else:
            logger.warning("AI interaction failed", **asdict(record))


def safe_log_interaction(interaction_logger: InteractionLogger, record: InteractionRecord) -> None:
    """Invoke the interaction logger without letting it fail the call."""
    try:
        interaction_logger.log_interaction(record)
    except Exception as e:
        logger.warning(
            f"Interaction logger failed: {e}",
            error_type=type(e).__name__,
        )
