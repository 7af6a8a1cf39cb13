"""
aistream - Prometheus Metrics

Metrics exposed:
- aistream_completions_total: Counter of completions by provider, model, outcome, streaming
- aistream_completion_duration_seconds: Histogram of completion latency
- aistream_tokens_total: Counter of reported tokens (input/output)
- aistream_empty_content_retries_total: Counter of empty-completion retries
- aistream_empty_completions_total: Counter of empty results returned to callers, by reason

Usage:
    from aistream.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.record_completion(provider="openai", model="gpt-4o", outcome="success",
                              duration_seconds=1.5, streaming=True)
    metrics.record_tokens(provider="openai", model="gpt-4o", input_tokens=100, output_tokens=50)

    # Text exposition for scraping
    body = metrics.render()
"""

from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


class MetricsCollector:
    """
    Metrics collector using the Prometheus client.

    Each collector owns its registry, so tests can build a fresh one.
    """

    _instance: Optional["MetricsCollector"] = None

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.completions_total = Counter(
            "aistream_completions_total",
            "Total number of completion calls",
            labelnames=["provider", "model", "outcome", "streaming"],
            registry=self.registry,
        )

        # AI calls typically range from 0.1s to 60s+
        self.completion_duration = Histogram(
            "aistream_completion_duration_seconds",
            "Completion duration in seconds",
            labelnames=["provider", "model", "streaming"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, float("inf")),
            registry=self.registry,
        )

        self.tokens_total = Counter(
            "aistream_tokens_total",
            "Total tokens reported by providers",
            labelnames=["provider", "model", "type"],  # type = input/output
            registry=self.registry,
        )

        self.empty_content_retries = Counter(
            "aistream_empty_content_retries_total",
            "Retries issued because a completion came back empty",
            labelnames=["provider", "model"],
            registry=self.registry,
        )

        self.empty_completions = Counter(
            "aistream_empty_completions_total",
            "Empty completions returned to the caller",
            labelnames=["provider", "reason"],
            registry=self.registry,
        )

    @classmethod
    def get_instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Reset singleton (for testing)."""
        cls._instance = None

    def record_completion(
        self,
        provider: str,
        model: str,
        outcome: str,
        duration_seconds: float,
        streaming: bool = False,
    ):
        """Record a finished completion call (outcome = success/error)."""
        streaming_label = "true" if streaming else "false"
        self.completions_total.labels(
            provider=provider,
            model=model,
            outcome=outcome,
            streaming=streaming_label,
        ).inc()
        self.completion_duration.labels(
            provider=provider,
            model=model,
            streaming=streaming_label,
        ).observe(max(duration_seconds, 0.0))

    def record_tokens(
        self,
        provider: str,
        model: str,
        input_tokens: Optional[int],
        output_tokens: Optional[int],
    ):
        """Record token usage; unreported counts are skipped, not zero-filled."""
        if input_tokens:
            self.tokens_total.labels(provider=provider, model=model, type="input").inc(input_tokens)
        if output_tokens:
            self.tokens_total.labels(provider=provider, model=model, type="output").inc(output_tokens)

    def record_empty_retry(self, provider: str, model: str):
        self.empty_content_retries.labels(provider=provider, model=model).inc()

    def record_empty_completion(self, provider: str, reason: str):
        self.empty_completions.labels(provider=provider, reason=reason).inc()

    def render(self) -> bytes:
        """Prometheus text exposition of this collector's registry."""
        return generate_latest(self.registry)


def get_metrics() -> MetricsCollector:
    """Get the process-wide metrics collector."""
    return MetricsCollector.get_instance()
