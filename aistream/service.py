"""
aistream - Unified AI Service

Single entry point for provider calls:
- call_stream: lazily yields canonical chunks from a provider SSE stream
- call: one JSON round trip with the same result shape
- call_agent: pre-resolved agent configuration, wrapped in the
  empty-content retry policy

Usage:
    service = UnifiedAIService()
    spec = RequestSpec(provider="anthropic", system_prompt="Be brief.",
                       messages=[Message.user("Hi")])

    async with service.call_stream(spec) as stream:
        async for chunk in stream:
            if chunk.type == ChunkType.TEXT_DELTA:
                print(chunk.content, end="")

    result = await service.call(spec)
"""

import time
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from .adapters import BaseAdapter, ProviderRequest, get_adapter, resolve_provider
from .config import CredentialSource, EnvCredentialSource
from .core.errors import AIStreamException, ProviderNotConfiguredError, StreamConsumedError
from .core.http_client import ProviderHttpClient, RequestContext
from .core.models import (
    PRESETS,
    AgentConfig,
    CompletionResult,
    DoneChunk,
    ErrorChunk,
    GenerationConfig,
    Message,
    Provider,
    RequestSpec,
    StreamChunk,
    TextDelta,
    resolve_settings,
)
from .observability.interactions import (
    InteractionLogger,
    InteractionRecord,
    LoggingInteractionLogger,
    safe_log_interaction,
)
from .observability.logging import TimedOperation, bind_log_context, get_logger
from .retry import EmptyContentRetryGovernor
from .streaming.normalizer import create_normalizer


logger = get_logger(__name__)

TokenCallback = Callable[[str], Any]

# Auto-detection order when a request names no provider
PROVIDER_PREFERENCE = (
    Provider.OPENROUTER,
    Provider.ANTHROPIC,
    Provider.OPENAI,
    Provider.GEMINI,
)

STATUS_PROVIDERS = (
    Provider.GEMINI,
    Provider.OPENAI,
    Provider.ANTHROPIC,
    Provider.OPENROUTER,
    Provider.LOCAL,
)


@dataclass
class CallMeta:
    """Caller attribution carried into interaction logging."""
    user_id: Optional[str] = None
    prompt_category: Optional[str] = None


class CompletionStream:
    """
    Single-pass async iterator over the canonical chunks of one provider call.

    The HTTP request is issued on first iteration. Iterating a second
    time raises StreamConsumedError. Leaving an `async with` block or
    calling `aclose()` releases the connection, including after an
    early `break`. A stream that is broken out of without either keeps
    its response open until garbage collection, which logs a warning.
    """

    def __init__(
        self,
        http: ProviderHttpClient,
        request: ProviderRequest,
        interaction_logger: InteractionLogger,
        meta: Optional[CallMeta] = None,
        on_token: Optional[TokenCallback] = None,
    ):
        self.request = request
        self.provider = request.provider.value
        self.model = request.model
        self.ctx = RequestContext(
            step_name=f"{self.provider}_stream",
            provider=self.provider,
            model=self.model,
        )
        self.errors: List[ErrorChunk] = []
        self._http = http
        self._interaction_logger = interaction_logger
        self._meta = meta or CallMeta()
        self._on_token = on_token
        self._iterator: Optional[AsyncGenerator[StreamChunk, None]] = None

    @property
    def request_id(self) -> str:
        return self.ctx.request_id

    def __aiter__(self) -> AsyncGenerator[StreamChunk, None]:
        if self._iterator is not None:
            raise StreamConsumedError(self.provider)
        self._iterator = self._iterate()
        return self._iterator

    def __del__(self):
        iterator = getattr(self, "_iterator", None)
        if iterator is not None and iterator.ag_frame is not None:
            logger.warning(
                f"{self.provider} stream garbage-collected without being closed; "
                "use `async with` or aclose() when breaking out early",
                request_id=self.request_id,
            )

    async def __aenter__(self) -> "CompletionStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        """Stop the stream and release the underlying response."""
        if self._iterator is None:
            # Never started: mark consumed so no request is issued later
            self._iterator = self._closed()
        await self._iterator.aclose()

    @staticmethod
    async def _closed() -> AsyncGenerator[StreamChunk, None]:
        return
        yield

    async def collect(self) -> CompletionResult:
        """Drain the stream into a CompletionResult."""
        done: Optional[DoneChunk] = None
        async with self:
            async for chunk in self:
                if isinstance(chunk, DoneChunk):
                    done = chunk
        if done is None:
            raise StreamConsumedError(self.provider)
        return done.to_result()

    async def _iterate(self) -> AsyncGenerator[StreamChunk, None]:
        normalizer = create_normalizer(self.request.provider, self.model, self.request_id)
        start_time = time.perf_counter()

        try:
            async with self._http.stream(
                self.request.url,
                self.request.payload,
                self.request.headers,
                self.ctx,
            ) as response:
                async for raw in response.aiter_bytes():
                    for chunk in normalizer.feed(raw):
                        yield self._emit(chunk)
                    if normalizer.terminated:
                        break

            final = normalizer.finish((time.perf_counter() - start_time) * 1000)
        except AIStreamException as e:
            self._record(
                success=False,
                latency_ms=(time.perf_counter() - start_time) * 1000,
                error_message=str(e),
            )
            raise

        for chunk in final:
            if isinstance(chunk, DoneChunk):
                self._log_done(chunk, normalizer.state.frames_seen)
                self._record(
                    success=True,
                    latency_ms=chunk.latency_ms,
                    input_tokens=chunk.usage.input_tokens if chunk.usage else None,
                    output_tokens=chunk.usage.output_tokens if chunk.usage else None,
                )
            yield self._emit(chunk)

    def _emit(self, chunk: StreamChunk) -> StreamChunk:
        if isinstance(chunk, TextDelta) and self._on_token is not None:
            self._on_token(chunk.content)
        elif isinstance(chunk, ErrorChunk):
            self.errors.append(chunk)
            logger.warning(
                f"STEP [{self.ctx.step_name}] In-stream provider error: {chunk.message}",
                extra=self.ctx.to_log_extra(),
                error_code=chunk.code,
                partial_chars=len(chunk.partial_content),
            )
        return chunk

    def _log_done(self, done: DoneChunk, frames: int) -> None:
        logger.info(
            f"STEP [{self.ctx.step_name}] Stream complete: {len(done.content)} chars, "
            f"{frames} frames, latency={done.latency_ms:.0f}ms",
            extra=self.ctx.to_log_extra(),
            finish_reason=done.finish_reason,
            **(done.usage.to_dict() if done.usage else {}),
        )

    def _record(self, success: bool, latency_ms: float, **fields) -> None:
        safe_log_interaction(self._interaction_logger, InteractionRecord(
            user_id=self._meta.user_id,
            provider=self.provider,
            model=self.model,
            prompt_category=self._meta.prompt_category,
            latency_ms=latency_ms,
            success=success,
            streaming=True,
            **fields,
        ))


class UnifiedAIService:
    """
    Provider-agnostic completion client.

    Args:
        credentials: Credential/config source (environment by default)
        http_client: ProviderHttpClient or a raw httpx.AsyncClient to wrap
        interaction_logger: Post-completion observer
        retry_governor: Empty-content retry policy used by call_agent
    """

    def __init__(
        self,
        credentials: Optional[CredentialSource] = None,
        http_client: Union[ProviderHttpClient, httpx.AsyncClient, None] = None,
        interaction_logger: Optional[InteractionLogger] = None,
        retry_governor: Optional[EmptyContentRetryGovernor] = None,
    ):
        self.credentials = credentials or EnvCredentialSource()
        if isinstance(http_client, ProviderHttpClient):
            self.http = http_client
        else:
            self.http = ProviderHttpClient(client=http_client)
        self.interaction_logger = interaction_logger or LoggingInteractionLogger()
        self.retry_governor = retry_governor or EmptyContentRetryGovernor()

    async def close(self):
        await self.http.close()

    async def __aenter__(self) -> "UnifiedAIService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ============================================================
    # Provider discovery
    # ============================================================

    def get_available_provider(self) -> str:
        """First provider with an API key, else the configured default."""
        for provider in PROVIDER_PREFERENCE:
            if self.credentials.get_api_key(provider):
                return provider.value
        return self.credentials.get_default_provider_id()

    def is_provider_available(self, provider_id: str) -> bool:
        provider = resolve_provider(provider_id)
        if provider is Provider.LOCAL:
            return True
        return bool(self.credentials.get_api_key(provider))

    def get_provider_status(self) -> Dict[str, Dict[str, Any]]:
        """Configured flag and default model for every provider."""
        status = {}
        for provider in STATUS_PROVIDERS:
            adapter = get_adapter(provider)
            status[provider.value] = {
                "configured": self.is_provider_available(provider.value),
                "model": adapter.resolve_model(None, self.credentials),
            }
        return status

    # ============================================================
    # Request building
    # ============================================================

    def _build(self, spec: RequestSpec, stream: bool):
        provider_id = spec.provider or self.get_available_provider()
        adapter = get_adapter(provider_id)

        if spec.preset and spec.preset not in PRESETS:
            logger.warning(f"Unknown preset '{spec.preset}', using 'direct'")

        settings = resolve_settings(spec.preset, spec.config)
        request = adapter.build_request(
            spec.system_prompt,
            spec.messages,
            settings,
            self.credentials,
            model=spec.model,
            stream=stream,
        )
        return adapter, request

    @staticmethod
    def _meta(spec: RequestSpec) -> CallMeta:
        return CallMeta(
            user_id=spec.user_id,
            prompt_category=spec.prompt_category or spec.preset,
        )

    # ============================================================
    # Public API
    # ============================================================

    def call_stream(
        self,
        spec: RequestSpec,
        on_token: Optional[TokenCallback] = None,
    ) -> CompletionStream:
        """
        Start a streaming completion.

        Credentials, model and payload are resolved here, before any
        network I/O; the HTTP request is sent on first iteration.

        Consume it inside `async with` (or call `aclose()`) whenever the
        loop may stop before the Done chunk; otherwise the response stays
        open until the stream object is collected:

            async with service.call_stream(spec) as stream:
                async for chunk in stream:
                    ...

        Raises:
            MissingAPIKeyError: provider needs a key and none is configured
            UnknownProviderError: provider id is not recognized
        """
        _, request = self._build(spec, stream=True)
        return CompletionStream(
            self.http,
            request,
            self.interaction_logger,
            meta=self._meta(spec),
            on_token=on_token,
        )

    async def call(
        self,
        spec: RequestSpec,
        on_token: Optional[TokenCallback] = None,
    ) -> CompletionResult:
        """
        Run one completion and return the normalized result.

        With `on_token` the response is streamed and each text delta is
        passed to the callback; otherwise a single JSON round trip is made.
        """
        adapter, request = self._build(spec, stream=on_token is not None)
        return await self._execute(adapter, request, self._meta(spec), on_token)

    async def call_with_retry(
        self,
        spec: RequestSpec,
        on_token: Optional[TokenCallback] = None,
        label: str = "",
    ) -> CompletionResult:
        """`call` wrapped in the empty-content retry policy."""
        adapter, request = self._build(spec, stream=on_token is not None)
        meta = self._meta(spec)
        return await self.retry_governor.run(
            lambda: self._execute(adapter, request, meta, on_token),
            streaming=on_token is not None,
            label=label,
        )

    async def call_agent(
        self,
        agent_config: AgentConfig,
        system_prompt: str,
        user_prompt: str,
        role: str = "unknown",
        on_token: Optional[TokenCallback] = None,
    ) -> CompletionResult:
        """
        Call a provider from a pre-resolved agent configuration.

        `provider_config.base_url`, when set, replaces the provider's
        endpoint (for Gemini it replaces the API root). Returned text is
        stripped. Empty completions are retried per EmptyContentRetryGovernor.

        Raises:
            ProviderNotConfiguredError: agent's provider has no credentials
        """
        provider_config = agent_config.provider_config
        if not provider_config.is_configured:
            provider_id = agent_config.provider
            if isinstance(provider_id, Provider):
                provider_id = provider_id.value
            raise ProviderNotConfiguredError(provider_id)

        adapter = get_adapter(agent_config.provider)
        request = adapter.build(
            system_prompt,
            [Message.user(user_prompt)],
            adapter.agent_settings(agent_config.hyperparameters),
            api_key=provider_config.api_key,
            model=agent_config.model or adapter.resolve_model(None, self.credentials),
            stream=on_token is not None,
            base_url=provider_config.base_url,
        )
        meta = CallMeta(prompt_category=role)

        async def attempt() -> CompletionResult:
            result = await self._execute(adapter, request, meta, on_token)
            result.content = result.content.strip()
            return result

        with bind_log_context(agent_role=role, provider=request.provider.value, model=request.model):
            return await self.retry_governor.run(attempt, streaming=on_token is not None, label=role)

    async def generate_text(
        self,
        prompt: str,
        system_prompt: str = "",
        provider: Optional[str] = None,
        model: Optional[str] = None,
        preset: str = "direct",
        config: Optional[GenerationConfig] = None,
    ) -> CompletionResult:
        """Single prompt, no conversation history."""
        return await self.call(RequestSpec(
            provider=provider,
            model=model,
            system_prompt=system_prompt,
            messages=[Message.user(prompt)],
            preset=preset,
            config=config,
        ))

    def create_call_factory(
        self,
        provider: Optional[str] = None,
    ) -> Callable[..., Awaitable[CompletionResult]]:
        """
        Build a reusable `(model, system_prompt, messages, **options)` caller.

        Options: provider, preset (default "deliberation"), temperature,
        max_tokens, top_p, user_id, prompt_category.
        """
        async def call_model(
            model: Optional[str],
            system_prompt: str,
            messages: List[Union[Message, Dict[str, str]]],
            **options,
        ) -> CompletionResult:
            return await self.call(RequestSpec(
                provider=provider or options.get("provider"),
                model=model,
                system_prompt=system_prompt,
                messages=messages,
                preset=options.get("preset") or "deliberation",
                config=GenerationConfig(
                    temperature=options.get("temperature"),
                    max_tokens=options.get("max_tokens"),
                    top_p=options.get("top_p"),
                ),
                user_id=options.get("user_id"),
                prompt_category=options.get("prompt_category"),
            ))

        return call_model

    # ============================================================
    # Execution
    # ============================================================

    async def _execute(
        self,
        adapter: BaseAdapter,
        request: ProviderRequest,
        meta: CallMeta,
        on_token: Optional[TokenCallback],
    ) -> CompletionResult:
        if on_token is not None:
            stream = CompletionStream(
                self.http, request, self.interaction_logger, meta=meta, on_token=on_token
            )
            return await stream.collect()

        provider = request.provider.value
        ctx = RequestContext(step_name=f"{provider}_call", provider=provider, model=request.model)
        start_time = time.perf_counter()

        try:
            async with TimedOperation(ctx.step_name, logger, extra=ctx.to_log_extra()):
                response = await self.http.post_json(request.url, request.payload, request.headers, ctx)
        except AIStreamException as e:
            self._record(request, meta, success=False,
                         latency_ms=(time.perf_counter() - start_time) * 1000,
                         error_message=str(e))
            raise

        data = response.data if isinstance(response.data, dict) else {}
        parsed = adapter.parse_response(data, request.model)
        result = CompletionResult(
            content=parsed.content,
            provider=provider,
            model=request.model,
            usage=parsed.usage,
            latency_ms=(time.perf_counter() - start_time) * 1000,
            finish_reason=parsed.finish_reason,
            generation_id=parsed.generation_id,
        )
        self._record(
            request, meta, success=True,
            latency_ms=result.latency_ms,
            input_tokens=parsed.usage.input_tokens if parsed.usage else None,
            output_tokens=parsed.usage.output_tokens if parsed.usage else None,
        )
        return result

    def _record(self, request: ProviderRequest, meta: CallMeta, success: bool, latency_ms: float, **fields):
        safe_log_interaction(self.interaction_logger, InteractionRecord(
            user_id=meta.user_id,
            provider=request.provider.value,
            model=request.model,
            prompt_category=meta.prompt_category,
            latency_ms=latency_ms,
            success=success,
            **fields,
        ))


# ============================================================
# Module-level convenience API
# ============================================================

_default_service: Optional[UnifiedAIService] = None


def get_default_service() -> UnifiedAIService:
    """Process-wide service backed by environment credentials."""
    global _default_service
    if _default_service is None:
        _default_service = UnifiedAIService()
    return _default_service


def call_stream(spec: RequestSpec, on_token: Optional[TokenCallback] = None) -> CompletionStream:
    return get_default_service().call_stream(spec, on_token)


async def call(spec: RequestSpec, on_token: Optional[TokenCallback] = None) -> CompletionResult:
    return await get_default_service().call(spec, on_token)


async def call_agent(
    agent_config: AgentConfig,
    system_prompt: str,
    user_prompt: str,
    role: str = "unknown",
    on_token: Optional[TokenCallback] = None,
) -> CompletionResult:
    return await get_default_service().call_agent(agent_config, system_prompt, user_prompt, role, on_token)


async def generate_text(prompt: str, **kwargs) -> CompletionResult:
    return await get_default_service().generate_text(prompt, **kwargs)


def get_available_provider() -> str:
    return get_default_service().get_available_provider()


def get_provider_status() -> Dict[str, Dict[str, Any]]:
    return get_default_service().get_provider_status()
