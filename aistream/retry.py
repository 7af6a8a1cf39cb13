"""
aistream - Empty-Content Retry

Wraps one completion attempt and re-issues it when the provider
succeeded at the HTTP level but returned no text.

Decision order after each attempt (first match wins):
1. streaming callback supplied -> return (a delivered stream cannot be replayed)
2. output tokens > 0 with empty text -> return (reasoning budget exhausted)
3. finish reason "length" -> return (truncated by token budget)
4. text non-empty -> return
5. retries left -> sleep DELAYS_MS[n], retry
6. budget exhausted -> return the empty result, annotated
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from .core.models import CompletionResult, FinishReason, RetryRecord
from .observability.logging import bind_log_context, get_logger
from .observability.metrics import MetricsCollector, get_metrics


logger = get_logger(__name__)

EMPTY_CONTENT_MAX_RETRIES = 2
EMPTY_CONTENT_RETRY_DELAYS_MS = (1000, 2000)


Attempt = Callable[[], Awaitable[CompletionResult]]


class EmptyContentRetryGovernor:
    """
    Bounded, strictly sequential retry of empty completions.

    Exceptions raised by an attempt propagate unchanged; HTTP and
    transport failures are not empty completions.

    Usage:
        governor = EmptyContentRetryGovernor()
        result = await governor.run(lambda: service.call(spec), label="ego")
        if result.empty_content_retries:
            ...  # every attempt came back empty
    """

    def __init__(
        self,
        max_retries: int = EMPTY_CONTENT_MAX_RETRIES,
        delays_ms: Sequence[int] = EMPTY_CONTENT_RETRY_DELAYS_MS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        metrics: Optional[MetricsCollector] = None,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if max_retries and not delays_ms:
            raise ValueError("delays_ms must not be empty when retries are enabled")
        self.max_retries = max_retries
        self.delays_ms = tuple(delays_ms)
        self._sleep = sleep
        self._metrics = metrics

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics or get_metrics()

    def delay_for(self, retry_index: int) -> int:
        """Delay before retry `retry_index` (0-based); the last delay repeats."""
        return self.delays_ms[min(retry_index, len(self.delays_ms) - 1)]

    def stop_reason(self, result: CompletionResult, streaming: bool) -> Optional[str]:
        """Why this result must be returned as-is, or None if it may be retried."""
        if streaming:
            return "streaming"
        if (result.output_tokens or 0) > 0:
            return "output_tokens"
        if result.finish_reason == FinishReason.LENGTH.value:
            return "length"
        if result.content:
            return "content"
        return None

    async def run(
        self,
        attempt: Attempt,
        streaming: bool = False,
        label: str = "",
    ) -> CompletionResult:
        delays: List[int] = []

        with bind_log_context(retry_label=label or None):
            result, retries = await self._attempt_until_settled(attempt, streaming, label, delays)

        result.retry = RetryRecord(
            attempts=retries + 1,
            delays_ms=delays,
            empty_content_retries=retries if retries else None,
        )
        return result

    async def _attempt_until_settled(
        self,
        attempt: Attempt,
        streaming: bool,
        label: str,
        delays: List[int],
    ) -> Tuple[CompletionResult, int]:
        retries = 0
        while True:
            result = await attempt()
            reason = self.stop_reason(result, streaming)

            if reason is not None:
                if reason != "content" and not result.content:
                    self.metrics.record_empty_completion(result.provider, reason)
                    logger.info(
                        f"[{label or result.provider}] Empty content not retried ({reason})",
                        provider=result.provider,
                        model=result.model,
                        finish_reason=result.finish_reason,
                        output_tokens=result.output_tokens,
                    )
                break

            if retries >= self.max_retries:
                self.metrics.record_empty_completion(result.provider, "retries_exhausted")
                logger.warning(
                    f"[{label or result.provider}] Empty content after {retries + 1} attempts",
                    provider=result.provider,
                    model=result.model,
                    empty_content_retries=retries,
                )
                break

            delay_ms = self.delay_for(retries)
            retries += 1
            delays.append(delay_ms)
            self.metrics.record_empty_retry(result.provider, result.model)
            logger.warning(
                f"[{label or result.provider}] Empty content with 0 output tokens, "
                f"retry {retries}/{self.max_retries} in {delay_ms}ms",
                provider=result.provider,
                model=result.model,
                finish_reason=result.finish_reason,
            )
            await self._sleep(delay_ms / 1000)

        return result, retries
