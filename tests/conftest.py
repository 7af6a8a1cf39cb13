"""
aistream - Pytest Configuration

Configures:
- The `integration` marker: live-provider tests run only with RUN_INTEGRATION=1
- Mock provider transports built on httpx.MockTransport
- SSE body helpers that emulate arbitrary network chunking
"""

import json
import logging
import os
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional

os.environ.setdefault("AISTREAM_CONFIGURE_LOGGING", "0")

import httpx
import pytest
from prometheus_client import CollectorRegistry

from aistream.config import StaticCredentialSource
from aistream.core.models import Provider
from aistream.observability.interactions import InteractionRecord
from aistream.observability.metrics import MetricsCollector
from aistream.retry import EmptyContentRetryGovernor
from aistream.service import UnifiedAIService


# ============================================================
# Environment Configuration
# ============================================================

RUN_INTEGRATION = (os.getenv("RUN_INTEGRATION") or "").lower() in ("1", "true", "yes", "on")


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless RUN_INTEGRATION=1."""
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )
    for item in items:
        if "integration" in item.keywords and not RUN_INTEGRATION:
            item.add_marker(skip_integration)


# ============================================================
# SSE helpers
# ============================================================

def sse(data: Any, event: Optional[str] = None) -> bytes:
    """Encode one SSE frame; dicts/lists are JSON-encoded."""
    if not isinstance(data, str):
        data = json.dumps(data)
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {data}\n\n".encode("utf-8")


def split_every(data: bytes, size: int) -> List[bytes]:
    """Cut a byte string into reads of `size` bytes."""
    return [data[i:i + size] for i in range(0, len(data), size)]


async def byte_stream(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


def stream_response(chunks: Iterable[bytes], status_code: int = 200) -> httpx.Response:
    """Streaming response whose body arrives in exactly the given reads."""
    return httpx.Response(
        status_code,
        headers={"content-type": "text/event-stream"},
        content=byte_stream(list(chunks)),
    )


# ============================================================
# Mock Transport
# ============================================================

class MockProvider:
    """
    Records requests and replays queued responses.

    Usage:
        provider = MockProvider()
        provider.queue(httpx.Response(200, json={...}))
        service = make_service(provider)
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.responses: List[httpx.Response] = []
        self._queue: List[Any] = []

    def queue(self, *responses: Any):
        """Queue responses (or callables taking the request, or exceptions)."""
        self._queue.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._queue:
            raise AssertionError(f"Unexpected request to {request.url}")
        item = self._queue.pop(0)
        if isinstance(item, Exception):
            raise item
        response = item(request) if callable(item) else item
        self.responses.append(response)
        return response

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def json_body(self, index: int = -1) -> Dict[str, Any]:
        return json.loads(self.requests[index].content)


class RecordingInteractionLogger:
    """Interaction logger that keeps every record in memory."""

    def __init__(self):
        self.records: List[InteractionRecord] = []

    def log_interaction(self, record: InteractionRecord) -> None:
        self.records.append(record)


class FakeSleep:
    """Replacement for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def credentials():
    """Keys for every hosted provider."""
    return StaticCredentialSource(api_keys={
        Provider.OPENAI: "sk-openai-test",
        Provider.OPENROUTER: "sk-or-test",
        Provider.ANTHROPIC: "sk-ant-test",
        Provider.GEMINI: "gemini-test-key",
    })


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def interactions():
    return RecordingInteractionLogger()


@pytest.fixture
def metrics():
    """Collector on an isolated registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def make_service(credentials, mock_provider, interactions, metrics, fake_sleep):
    """
    Build a UnifiedAIService wired to the mock transport.

    Usage:
        service = make_service()
        service = make_service(credentials=StaticCredentialSource())
    """
    clients: List[httpx.AsyncClient] = []

    def factory(
        credentials: Any = credentials,
        interaction_logger: Any = interactions,
        retry_governor: Optional[EmptyContentRetryGovernor] = None,
    ) -> UnifiedAIService:
        client = httpx.AsyncClient(transport=httpx.MockTransport(mock_provider.handler))
        clients.append(client)
        return UnifiedAIService(
            credentials=credentials,
            http_client=client,
            interaction_logger=interaction_logger,
            retry_governor=retry_governor or EmptyContentRetryGovernor(sleep=fake_sleep, metrics=metrics),
        )

    return factory


@pytest.fixture
def mock_openai_response():
    """Standard mock OpenAI chat response."""
    return {
        "id": "chatcmpl-test123",
        "object": "chat.completion",
        "created": 1234567890,
        "model": "gpt-4o",
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": "Hello! I'm a mock response."
                },
                "finish_reason": "stop"
            }
        ],
        "usage": {
            "prompt_tokens": 10,
            "completion_tokens": 8,
            "total_tokens": 18
        }
    }


@pytest.fixture
def mock_anthropic_response():
    """Standard mock Anthropic response."""
    return {
        "id": "msg-test123",
        "type": "message",
        "role": "assistant",
        "content": [
            {"type": "text", "text": "Hello! "},
            {"type": "text", "text": "I'm a mock Claude response."},
        ],
        "model": "claude-sonnet-4-20250514",
        "stop_reason": "end_turn",
        "usage": {
            "input_tokens": 10,
            "output_tokens": 8
        }
    }


@pytest.fixture
def mock_error_429():
    """Mock 429 rate limit response."""
    return {
        "error": {
            "code": "rate_limit_exceeded",
            "message": "Rate limited",
            "type": "rate_limit_error"
        }
    }


# ============================================================
# Logging Configuration
# ============================================================

@pytest.fixture(autouse=True)
def configure_test_logging():
    """Plain-text root logging; JSON output is covered in test_observability."""
    logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    yield


# ============================================================
# Skip Helpers
# ============================================================

skip_if_no_openrouter = pytest.mark.skipif(
    not os.getenv("OPENROUTER_API_KEY"),
    reason="Requires OPENROUTER_API_KEY"
)

skip_if_no_anthropic = pytest.mark.skipif(
    not os.getenv("ANTHROPIC_API_KEY"),
    reason="Requires ANTHROPIC_API_KEY"
)


def json_response(data: Dict[str, Any], status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=data)


def text_handler(text: str, status_code: int) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status_code, text=text)
