"""
aistream - Provider HTTP Client

Thin wrapper over httpx.AsyncClient with:
- Request correlation (request_id logging)
- Step-based logging for debugging
- Redacted payload summaries
- Transport failures mapped to canonical errors

The client never retries. Retrying is a policy decision made by callers.
"""

import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from ..observability.logging import get_logger
from .errors import create_error_from_response, handle_transport_error, parse_response_body


logger = get_logger("aistream.http")

DEFAULT_TIMEOUT = httpx.Timeout(120.0, connect=10.0)

_SECRET_KEYS = ("api_key", "key", "token", "secret", "password", "authorization", "x-api-key")


@dataclass
class RequestContext:
    """Context for tracking one provider request."""
    request_id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")
    step_name: str = ""
    provider: str = ""
    model: str = ""

    def to_log_extra(self) -> Dict[str, str]:
        return {"request_id": self.request_id, "provider": self.provider, "model": self.model}


@dataclass
class HttpResponse:
    """Decoded JSON response with metadata."""
    status_code: int
    data: Any
    headers: Dict[str, str]
    request_id: str
    latency_ms: float


def redact_url(url: str) -> str:
    """Hide `key=` query parameters (Gemini puts the API key in the URL)."""
    parsed = httpx.URL(url)
    if "key" not in parsed.params:
        return url
    return str(parsed.copy_set_param("key", "***REDACTED***"))


class ProviderHttpClient:
    """
    HTTP client for provider calls.

    Features:
    - Shared or injected httpx.AsyncClient
    - Request ID correlation
    - Step logging with redacted payload summaries
    - Non-2xx bodies turned into ProviderHTTPError
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
    ):
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self):
        """Close the HTTP client if this wrapper created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    def _log_request_start(self, ctx: RequestContext, method: str, url: str, payload_summary: str):
        logger.info(
            f"STEP [{ctx.step_name}] Starting {method} {redact_url(url)} "
            f"(provider={ctx.provider}, model={ctx.model})",
            extra=ctx.to_log_extra()
        )
        logger.debug(f"Payload summary: {payload_summary}", extra=ctx.to_log_extra())

    def _log_response(self, ctx: RequestContext, status: int, latency_ms: float):
        log = logger.info if status < 400 else logger.warning
        log(
            f"STEP [{ctx.step_name}] Response: status={status}, latency={latency_ms:.0f}ms",
            extra=ctx.to_log_extra()
        )

    def _summarize_payload(self, payload: Dict[str, Any]) -> str:
        """Create safe payload summary (no secrets, no prompt text)."""
        summary = {}
        for key, value in payload.items():
            if key.lower() in _SECRET_KEYS:
                summary[key] = "***REDACTED***"
            elif key in ("messages", "contents") and isinstance(value, list):
                summary[key] = f"[{len(value)} messages]"
            elif isinstance(value, str) and len(value) > 100:
                summary[key] = f"{value[:50]}...({len(value)} chars)"
            else:
                summary[key] = value
        return str(summary)

    async def _raise_for_status(self, ctx: RequestContext, response: httpx.Response) -> None:
        if response.is_success:
            return
        raw = await response.aread()
        body = parse_response_body(raw)
        raise create_error_from_response(ctx.provider, response.status_code, body, ctx.request_id)

    async def post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        ctx: RequestContext,
    ) -> HttpResponse:
        """
        POST a JSON body and decode the JSON response.

        Raises:
            ProviderHTTPError: non-2xx status
            TransportError: timeout or connection failure
        """
        self._log_request_start(ctx, "POST", url, self._summarize_payload(payload))
        client = await self._get_client()
        start_time = time.perf_counter()

        try:
            response = await client.post(url, json=payload, headers=headers)
            latency_ms = (time.perf_counter() - start_time) * 1000
            self._log_response(ctx, response.status_code, latency_ms)
            await self._raise_for_status(ctx, response)
            data = parse_response_body(response.content)
        except httpx.TransportError as e:
            raise handle_transport_error(e, ctx.provider, ctx.request_id) from e

        return HttpResponse(
            status_code=response.status_code,
            data=data,
            headers=dict(response.headers),
            request_id=ctx.request_id,
            latency_ms=latency_ms,
        )

    @asynccontextmanager
    async def stream(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        ctx: RequestContext,
    ) -> AsyncIterator[httpx.Response]:
        """
        Open a streaming POST; the response is closed when the block exits.

        Non-2xx responses are read fully and raised before the body is
        handed to the caller.
        """
        self._log_request_start(ctx, "POST", url, self._summarize_payload(payload))
        client = await self._get_client()
        start_time = time.perf_counter()

        try:
            async with client.stream("POST", url, json=payload, headers=headers) as response:
                self._log_response(ctx, response.status_code, (time.perf_counter() - start_time) * 1000)
                await self._raise_for_status(ctx, response)
                yield response
        except httpx.TransportError as e:
            raise handle_transport_error(e, ctx.provider, ctx.request_id) from e
