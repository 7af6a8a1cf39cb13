"""
aistream - Stream Orchestrator Tests

End-to-end streaming through UnifiedAIService.call_stream against
httpx.MockTransport:
- Request construction per provider (URL, headers, payload)
- Missing credentials fail before any I/O
- HTTP and transport errors
- Single-pass iteration and connection release on early exit
"""

import gc
import logging

import httpx
import pytest

from aistream.config import StaticCredentialSource
from aistream.core.errors import (
    MissingAPIKeyError,
    ProviderConnectionError,
    ProviderHTTPError,
    ReadTimeoutError,
    StreamConsumedError,
    UnknownProviderError,
)
from aistream.core.models import (
    DoneChunk,
    ErrorChunk,
    GenerationConfig,
    Message,
    Provider,
    RequestSpec,
    TextDelta,
)

from conftest import split_every, sse, stream_response


OPENAI_BODY = b"".join([
    sse({"choices": [{"delta": {"content": "Hello"}}]}),
    sse({"choices": [{"delta": {"content": " world"}, "finish_reason": "stop"}]}),
    sse({"choices": [], "usage": {"prompt_tokens": 9, "completion_tokens": 2}}),
    sse("[DONE]"),
])


def spec_for(provider, **kwargs) -> RequestSpec:
    return RequestSpec(
        provider=provider,
        system_prompt=kwargs.pop("system_prompt", "Be brief."),
        messages=kwargs.pop("messages", [Message.user("Hi")]),
        **kwargs,
    )


async def consume(stream):
    async with stream:
        return [chunk async for chunk in stream]


# ============================================================
# Credential Resolution
# ============================================================

class TestCredentialResolution:
    """Configuration problems surface before the network is touched."""

    @pytest.mark.parametrize("provider", ["openai", "openrouter", "anthropic", "gemini"])
    def test_missing_key_raises_before_io(self, make_service, mock_provider, provider):
        service = make_service(credentials=StaticCredentialSource())

        with pytest.raises(MissingAPIKeyError) as exc_info:
            service.call_stream(spec_for(provider))

        assert "API key missing" in str(exc_info.value)
        assert mock_provider.call_count == 0

    def test_missing_key_message_names_env_var(self, make_service):
        service = make_service(credentials=StaticCredentialSource())

        with pytest.raises(MissingAPIKeyError) as exc_info:
            service.call_stream(spec_for("openrouter"))

        assert str(exc_info.value) == "OpenRouter API key missing. Set OPENROUTER_API_KEY."

    def test_unknown_provider(self, make_service):
        with pytest.raises(UnknownProviderError):
            make_service().call_stream(spec_for("mistral"))

    def test_local_needs_no_key(self, make_service, mock_provider):
        service = make_service(credentials=StaticCredentialSource())

        stream = service.call_stream(spec_for("local"))

        assert stream.provider == "local"
        assert mock_provider.call_count == 0


# ============================================================
# Provider Requests
# ============================================================

class TestStreamingRequests:
    """Test the request each provider receives."""

    @pytest.mark.asyncio
    async def test_openrouter_request_and_result(self, make_service, mock_provider):
        mock_provider.queue(stream_response(split_every(OPENAI_BODY, 5)))
        service = make_service()

        chunks = await consume(service.call_stream(spec_for("openrouter", model="gpt-4o", preset="chat")))

        request = mock_provider.requests[0]
        assert str(request.url) == "https://openrouter.ai/api/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-or-test"
        assert "HTTP-Referer" in request.headers
        assert request.headers["X-Title"] == "aistream"

        body = mock_provider.json_body()
        assert body["model"] == "openai/gpt-4o-mini"
        assert body["stream"] is True
        assert body["stream_options"] == {"include_usage": True}
        assert body["max_tokens"] == 800
        assert body["temperature"] == 0.35
        assert body["messages"][0] == {"role": "system", "content": "Be brief."}
        assert body["messages"][1] == {"role": "user", "content": "Hi"}

        assert [c.content for c in chunks if isinstance(c, TextDelta)] == ["Hello", " world"]
        done = chunks[-1]
        assert isinstance(done, DoneChunk)
        assert done.content == "Hello world"
        assert done.usage.total_tokens == 11
        assert done.finish_reason == "stop"
        assert done.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_openai_uses_max_completion_tokens(self, make_service, mock_provider):
        mock_provider.queue(stream_response([OPENAI_BODY]))
        config = GenerationConfig(max_tokens=321, temperature=0.1)

        await consume(make_service().call_stream(spec_for("openai", config=config)))

        body = mock_provider.json_body()
        assert body["model"] == "gpt-4o"
        assert body["max_completion_tokens"] == 321
        assert "max_tokens" not in body
        assert body["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_anthropic_request(self, make_service, mock_provider):
        body = b"".join([
            sse({"type": "message_start", "message": {"usage": {"input_tokens": 25}}}, event="message_start"),
            sse({"type": "content_block_delta", "delta": {"text": "Hello"}}, event="content_block_delta"),
            sse({"type": "message_delta", "usage": {"output_tokens": 8}}, event="message_delta"),
            sse({"type": "message_stop"}, event="message_stop"),
        ])
        mock_provider.queue(stream_response(split_every(body, 11)))

        chunks = await consume(make_service().call_stream(spec_for("claude")))

        request = mock_provider.requests[0]
        assert str(request.url) == "https://api.anthropic.com/v1/messages"
        assert request.headers["x-api-key"] == "sk-ant-test"
        assert request.headers["anthropic-version"] == "2023-06-01"
        payload = mock_provider.json_body()
        assert payload["system"] == "Be brief."
        assert payload["messages"] == [{"role": "user", "content": "Hi"}]
        assert payload["stream"] is True
        assert chunks[-1].content == "Hello"
        assert chunks[-1].usage.total_tokens == 33

    @pytest.mark.asyncio
    async def test_gemini_request(self, make_service, mock_provider):
        body = b"".join([
            sse({"candidates": [{"content": {"parts": [{"text": "Gem"}]}}]}),
            sse({"candidates": [{"content": {"parts": [{"text": "ini"}]}}],
                 "usageMetadata": {"promptTokenCount": 20, "candidatesTokenCount": 5}}),
        ])
        mock_provider.queue(stream_response([body]))
        messages = [Message.user("Q1"), Message.assistant("A1"), Message.user("Q2")]

        chunks = await consume(make_service().call_stream(spec_for("google", messages=messages)))

        url = str(mock_provider.requests[0].url)
        assert "/models/gemini-2.5-flash:streamGenerateContent" in url
        assert "alt=sse" in url
        assert "key=gemini-test-key" in url
        payload = mock_provider.json_body()
        assert [c["role"] for c in payload["contents"]] == ["user", "model", "user"]
        assert payload["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
        assert payload["generationConfig"]["maxOutputTokens"] == 1000
        assert chunks[-1].content == "Gemini"
        assert chunks[-1].usage.total_tokens == 25

    @pytest.mark.asyncio
    async def test_local_url_from_env(self, make_service, mock_provider, monkeypatch):
        monkeypatch.setenv("LOCAL_AI_URL", "http://127.0.0.1:5000/")
        mock_provider.queue(stream_response([OPENAI_BODY]))

        await consume(make_service(credentials=StaticCredentialSource()).call_stream(spec_for("local")))

        request = mock_provider.requests[0]
        assert str(request.url) == "http://127.0.0.1:5000/v1/chat/completions"
        assert "Authorization" not in request.headers
        body = mock_provider.json_body()
        assert body["model"] == "local-model"
        assert "stream_options" not in body

    @pytest.mark.asyncio
    async def test_local_default_url(self, make_service, mock_provider, monkeypatch):
        monkeypatch.delenv("LOCAL_AI_URL", raising=False)
        mock_provider.queue(stream_response([OPENAI_BODY]))

        await consume(make_service().call_stream(spec_for("local")))

        assert str(mock_provider.requests[0].url) == "http://localhost:1234/v1/chat/completions"

    @pytest.mark.asyncio
    async def test_local_url_from_credential_source(self, make_service, mock_provider, monkeypatch):
        monkeypatch.setenv("LOCAL_AI_URL", "http://ignored:1")
        mock_provider.queue(stream_response([OPENAI_BODY]))
        credentials = StaticCredentialSource(base_urls={Provider.LOCAL: "http://10.0.0.5:11434/"})

        await consume(make_service(credentials=credentials).call_stream(spec_for("local")))

        assert str(mock_provider.requests[0].url) == "http://10.0.0.5:11434/v1/chat/completions"

    @pytest.mark.asyncio
    async def test_gemini_base_url_from_credential_source(self, make_service, mock_provider):
        mock_provider.queue(stream_response([sse({"candidates": [{"content": {"parts": [{"text": "hi"}]}}]})]))
        credentials = StaticCredentialSource(
            api_keys={Provider.GEMINI: "g"},
            base_urls={Provider.GEMINI: "https://proxy.example/v1beta"},
        )

        await consume(make_service(credentials=credentials).call_stream(spec_for("gemini")))

        url = str(mock_provider.requests[0].url)
        assert url.startswith("https://proxy.example/v1beta/models/gemini-2.5-flash:streamGenerateContent")

    @pytest.mark.asyncio
    async def test_lone_surrogate_sanitized(self, make_service, mock_provider):
        mock_provider.queue(stream_response([OPENAI_BODY]))

        await consume(make_service().call_stream(
            spec_for("openai", messages=[Message.user("bad \ud83d text")])
        ))

        assert mock_provider.json_body()["messages"][1]["content"] == "bad \ufffd text"

    @pytest.mark.asyncio
    async def test_provider_auto_detected(self, make_service, mock_provider):
        mock_provider.queue(stream_response([OPENAI_BODY]))

        stream = make_service().call_stream(spec_for(None))
        await consume(stream)

        assert stream.provider == "openrouter"


# ============================================================
# Errors
# ============================================================

class TestStreamingErrors:
    """HTTP and transport failures."""

    @pytest.mark.asyncio
    async def test_http_429(self, make_service, mock_provider, mock_error_429, interactions):
        mock_provider.queue(httpx.Response(429, json=mock_error_429))
        stream = make_service().call_stream(spec_for("openrouter", user_id="u1"))

        with pytest.raises(ProviderHTTPError) as exc_info:
            await consume(stream)

        error = exc_info.value
        assert error.status_code == 429
        assert error.provider_message == "Rate limited"
        assert "429" in str(error)
        assert "Rate limited" in str(error)
        assert error.error.retryable is True
        assert mock_provider.responses[0].is_closed
        assert interactions.records[-1].success is False
        assert interactions.records[-1].user_id == "u1"

    @pytest.mark.asyncio
    async def test_http_error_with_text_body(self, make_service, mock_provider):
        mock_provider.queue(httpx.Response(400, text="bad request body"))

        with pytest.raises(ProviderHTTPError) as exc_info:
            await consume(make_service().call_stream(spec_for("anthropic")))

        assert str(exc_info.value) == "Anthropic error: 400 - bad request body"
        assert exc_info.value.error.retryable is False

    @pytest.mark.asyncio
    async def test_connection_error(self, make_service, mock_provider):
        mock_provider.queue(httpx.ConnectError("connection refused"))

        with pytest.raises(ProviderConnectionError):
            await consume(make_service().call_stream(spec_for("openai")))

    @pytest.mark.asyncio
    async def test_timeout_mid_stream(self, make_service, mock_provider):
        async def body():
            yield sse({"choices": [{"delta": {"content": "partial"}}]})
            raise httpx.ReadTimeout("read timed out")

        mock_provider.queue(httpx.Response(200, content=body()))
        received = []

        with pytest.raises(ReadTimeoutError):
            async with make_service().call_stream(spec_for("openai")) as stream:
                async for chunk in stream:
                    received.append(chunk)

        assert [c.content for c in received] == ["partial"]

    @pytest.mark.asyncio
    async def test_in_band_error_collected(self, make_service, mock_provider):
        body = b"".join([
            sse({"choices": [{"delta": {"content": "Hi"}}]}),
            sse({"error": {"message": "upstream overloaded"}}),
        ])
        mock_provider.queue(stream_response([body]))
        stream = make_service().call_stream(spec_for("openrouter"))

        chunks = await consume(stream)

        assert isinstance(chunks[1], ErrorChunk)
        assert stream.errors[0].partial_content == "Hi"
        assert isinstance(chunks[-1], DoneChunk)

    @pytest.mark.asyncio
    async def test_wrong_shape_frames_do_not_abort_stream(self, make_service, mock_provider, interactions):
        body = b"".join([
            sse({"choices": 3}),
            sse({"choices": [{"delta": "oops"}]}),
            sse({"choices": [{"delta": {"content": "ok"}, "finish_reason": "stop"}]}),
            sse("[DONE]"),
        ])
        mock_provider.queue(stream_response(split_every(body, 4)))

        result = await make_service().call_stream(spec_for("openai")).collect()

        assert result.content == "ok"
        assert result.finish_reason == "stop"
        assert interactions.records[-1].success is True


# ============================================================
# Stream Lifecycle
# ============================================================

class TestStreamLifecycle:
    """Single pass, cleanup and callbacks."""

    @pytest.mark.asyncio
    async def test_second_iteration_raises(self, make_service, mock_provider):
        mock_provider.queue(stream_response([OPENAI_BODY]))
        stream = make_service().call_stream(spec_for("openai"))
        await consume(stream)

        with pytest.raises(StreamConsumedError):
            async for _ in stream:
                pass

        assert mock_provider.call_count == 1

    @pytest.mark.asyncio
    async def test_early_break_releases_response(self, make_service, mock_provider, interactions):
        frames = [sse({"choices": [{"delta": {"content": f"t{i}"}}]}) for i in range(50)]
        mock_provider.queue(stream_response(frames))

        async with make_service().call_stream(spec_for("openai")) as stream:
            async for chunk in stream:
                assert chunk.content == "t0"
                break

        assert mock_provider.responses[0].is_closed
        assert interactions.records == []

    @pytest.mark.asyncio
    async def test_break_without_close_warns_when_collected(self, make_service, mock_provider, caplog):
        frames = [sse({"choices": [{"delta": {"content": f"t{i}"}}]}) for i in range(5)]
        mock_provider.queue(stream_response(frames))
        stream = make_service().call_stream(spec_for("openai"))

        async for _ in stream:
            break

        with caplog.at_level(logging.WARNING, logger="aistream.service"):
            del stream
            gc.collect()

        assert any("without being closed" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_consumed_stream_does_not_warn(self, make_service, mock_provider, caplog):
        mock_provider.queue(stream_response([OPENAI_BODY]))
        stream = make_service().call_stream(spec_for("openai"))

        async for _ in stream:
            pass

        with caplog.at_level(logging.WARNING, logger="aistream.service"):
            del stream
            gc.collect()

        assert not any("without being closed" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_aclose_before_iteration_sends_nothing(self, make_service, mock_provider):
        stream = make_service().call_stream(spec_for("openai"))

        await stream.aclose()

        with pytest.raises(StreamConsumedError):
            async for _ in stream:
                pass
        assert mock_provider.call_count == 0

    @pytest.mark.asyncio
    async def test_on_token_receives_each_delta(self, make_service, mock_provider):
        mock_provider.queue(stream_response(split_every(OPENAI_BODY, 3)))
        tokens = []

        await consume(make_service().call_stream(spec_for("openai"), on_token=tokens.append))

        assert tokens == ["Hello", " world"]

    @pytest.mark.asyncio
    async def test_collect(self, make_service, mock_provider, interactions):
        mock_provider.queue(stream_response([OPENAI_BODY]))

        result = await make_service().call_stream(
            spec_for("openai", user_id="u1", prompt_category="chat")
        ).collect()

        assert result.content == "Hello world"
        assert result.provider == Provider.OPENAI.value
        assert result.model == "gpt-4o"
        assert result.usage.input_tokens == 9
        assert result.empty_content_retries is None

        record = interactions.records[-1]
        assert record.success is True
        assert record.streaming is True
        assert record.prompt_category == "chat"
        assert record.output_tokens == 2
