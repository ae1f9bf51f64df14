"""Tests for the completion client: retries, streaming, gating, error mapping.

The OpenAI SDK client is replaced by a MagicMock whose
``chat.completions.create`` is an AsyncMock, so nothing leaves the process.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from pairmind.agents.privacy import PrivacyGuard, PrivacyMode
from pairmind.config import Settings
from pairmind.core.models import ContextData
from pairmind.llm.base import CompletionError, ServiceErrorKind
from pairmind.llm.client import CompletionClient, RateLimiter, map_sdk_error, summarize_context

_REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat/completions")


def _status_error(cls, status: int):
    return cls("failed", response=httpx.Response(status, request=_REQUEST), body=None)


def _response(text: str = "Hello", model: str = "gpt-test"):
    return SimpleNamespace(
        model=model,
        choices=[SimpleNamespace(message=SimpleNamespace(content=f"  {text}  "), finish_reason="stop")],
        usage=SimpleNamespace(prompt_tokens=3, completion_tokens=2, total_tokens=5),
    )


def _chunk(text: str | None, finish: str | None = None):
    return SimpleNamespace(
        model="gpt-stream",
        choices=[SimpleNamespace(delta=SimpleNamespace(content=text), finish_reason=finish)],
    )


def _stream(*chunks, error: Exception | None = None):
    async def gen():
        for c in chunks:
            yield c
        if error is not None:
            raise error
    return gen()


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_client(sleeps):
    def _make(**kwargs) -> CompletionClient:
        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        kwargs.setdefault("api_key", "test-key")
        client = CompletionClient(sleep=fake_sleep, **kwargs)
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(return_value=_response())
        return client
    return _make


# ===================================================================
# 1. Basic completion
# ===================================================================

class TestComplete:

    @pytest.mark.asyncio
    async def test_returns_trimmed_text_and_usage(self, make_client):
        client = make_client()
        completion = await client.complete("Say hello")
        assert completion.text == "Hello"
        assert completion.model == "gpt-test"
        assert completion.usage.total_tokens == 5
        assert completion.finish_reason == "stop"
        assert completion.response_time >= 0

    @pytest.mark.asyncio
    async def test_messages_include_system_and_context(self, make_client):
        client = make_client()
        ctx = ContextData(current_file="/app/main.py", current_function="run")
        await client.complete("Explain", system="You are helpful", context=ctx, max_tokens=50, temperature=0.1)

        kwargs = client._client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "You are helpful"}
        assert kwargs["messages"][1]["content"] == (
            "Context: File: /app/main.py, Function: run\n\nRequest: Explain"
        )
        assert kwargs["max_tokens"] == 50
        assert kwargs["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_defaults_fill_missing_parameters(self, make_client):
        client = make_client(max_tokens=256, temperature=0.5, model="custom")
        await client.complete("Hi")
        kwargs = client._client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "custom"
        assert kwargs["max_tokens"] == 256
        assert kwargs["temperature"] == 0.5
        assert kwargs["messages"] == [{"role": "user", "content": "Hi"}]

    @pytest.mark.asyncio
    async def test_no_choices_is_server_error(self, make_client):
        client = make_client(max_retries=0)
        client._client.chat.completions.create.return_value = SimpleNamespace(
            model="m", choices=[], usage=None,
        )
        with pytest.raises(CompletionError) as info:
            await client.complete("Hi")
        assert info.value.kind == ServiceErrorKind.SERVER

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        client = CompletionClient(api_key="")
        with pytest.raises(CompletionError) as info:
            await client.complete("Hi")
        assert info.value.kind == ServiceErrorKind.AUTH


# ===================================================================
# 2. Retry and backoff
# ===================================================================

class TestRetry:

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, make_client, sleeps):
        client = make_client()
        client._client.chat.completions.create.side_effect = [
            _status_error(openai.InternalServerError, 500),
            _response("Recovered"),
        ]
        completion = await client.complete("Hi")
        assert completion.text == "Recovered"
        assert sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_backoff_doubles_until_exhausted(self, make_client, sleeps):
        client = make_client(max_retries=2, base_delay=0.5)
        client._client.chat.completions.create.side_effect = openai.APITimeoutError(request=_REQUEST)
        with pytest.raises(CompletionError) as info:
            await client.complete("Hi")
        assert info.value.kind == ServiceErrorKind.TIMEOUT
        assert client._client.chat.completions.create.await_count == 3
        assert sleeps == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_auth_failure_is_not_retried(self, make_client, sleeps):
        client = make_client()
        client._client.chat.completions.create.side_effect = _status_error(openai.AuthenticationError, 401)
        with pytest.raises(CompletionError) as info:
            await client.complete("Hi")
        assert info.value.kind == ServiceErrorKind.AUTH
        assert info.value.user_message.startswith("Authentication failed")
        assert client._client.chat.completions.create.await_count == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, make_client, sleeps):
        client = make_client()
        client._client.chat.completions.create.side_effect = [
            _status_error(openai.RateLimitError, 429),
            _response(),
        ]
        await client.complete("Hi")
        assert len(sleeps) == 1


# ===================================================================
# 3. Streaming
# ===================================================================

class TestStreaming:

    @pytest.mark.asyncio
    async def test_sink_receives_chunks(self, make_client):
        client = make_client()
        client._client.chat.completions.create.return_value = _stream(
            _chunk("Hel"), _chunk(None), _chunk("lo"), _chunk(None, finish="stop"),
        )
        received: list[str] = []
        completion = await client.complete("Hi", sink=received.append)
        assert received == ["Hel", "lo"]
        assert completion.text == "Hello"
        assert completion.finish_reason == "stop"
        assert client._client.chat.completions.create.call_args.kwargs["stream"] is True

    @pytest.mark.asyncio
    async def test_stream_is_not_retried_after_output(self, make_client, sleeps):
        client = make_client()
        client._client.chat.completions.create.side_effect = [
            _stream(_chunk("partial"), error=openai.APIConnectionError(request=_REQUEST)),
            _stream(_chunk("again")),
        ]
        received: list[str] = []
        with pytest.raises(CompletionError) as info:
            await client.complete("Hi", sink=received.append)
        assert info.value.kind == ServiceErrorKind.CONNECTION
        assert received == ["partial"]
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_stream_failing_before_output_is_retried(self, make_client, sleeps):
        client = make_client()
        client._client.chat.completions.create.side_effect = [
            openai.APIConnectionError(request=_REQUEST),
            _stream(_chunk("fine")),
        ]
        received: list[str] = []
        completion = await client.complete("Hi", sink=received.append)
        assert completion.text == "fine"
        assert received == ["fine"]
        assert sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_stream_iterator(self, make_client):
        client = make_client()
        client._client.chat.completions.create.return_value = _stream(_chunk("a"), _chunk("b"))
        chunks = [c async for c in client.stream("Hi")]
        assert chunks == ["a", "b"]


# ===================================================================
# 4. Admission: privacy and local rate limit
# ===================================================================

class TestAdmission:

    @pytest.mark.asyncio
    async def test_privacy_blocks_before_any_call(self, make_client):
        client = make_client(privacy=PrivacyGuard(PrivacyMode.ENHANCED))
        with pytest.raises(CompletionError) as info:
            await client.complete('Fix this: password = "hunter2"')
        assert info.value.kind == ServiceErrorKind.PRIVACY_BLOCKED
        assert not info.value.retryable
        client._client.chat.completions.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_local_rate_limit(self, make_client):
        client = make_client(max_requests_per_minute=2, clock=FakeClock())
        await client.complete("one")
        await client.complete("two")
        with pytest.raises(CompletionError) as info:
            await client.complete("three")
        assert info.value.kind == ServiceErrorKind.LOCAL_RATE_LIMIT
        assert client._client.chat.completions.create.await_count == 2

    def test_rate_limiter_window_slides(self):
        clock = FakeClock()
        limiter = RateLimiter(max_requests=2, window=60.0, clock=clock)
        assert limiter.try_acquire()
        clock.now = 30.0
        assert limiter.try_acquire()
        assert not limiter.try_acquire()
        clock.now = 60.0
        assert limiter.try_acquire()
        assert limiter.in_window == 2


# ===================================================================
# 5. Error mapping and configuration
# ===================================================================

class TestErrorMapping:

    @pytest.mark.parametrize("exc,kind", [
        (openai.APITimeoutError(request=_REQUEST), ServiceErrorKind.TIMEOUT),
        (openai.APIConnectionError(request=_REQUEST), ServiceErrorKind.CONNECTION),
        (_status_error(openai.AuthenticationError, 401), ServiceErrorKind.AUTH),
        (_status_error(openai.PermissionDeniedError, 403), ServiceErrorKind.AUTH),
        (_status_error(openai.RateLimitError, 429), ServiceErrorKind.RATE_LIMIT),
        (_status_error(openai.InternalServerError, 503), ServiceErrorKind.SERVER),
        (_status_error(openai.BadRequestError, 400), ServiceErrorKind.BAD_REQUEST),
        (httpx.ConnectError("refused"), ServiceErrorKind.CONNECTION),
        (httpx.ReadTimeout("slow"), ServiceErrorKind.TIMEOUT),
    ])
    def test_map_sdk_error(self, exc, kind):
        assert map_sdk_error(exc).kind == kind

    def test_status_code_is_kept(self):
        assert map_sdk_error(_status_error(openai.InternalServerError, 502)).status_code == 502


class TestConfiguration:

    def test_from_settings(self):
        settings = Settings(api_key="k", model="m", max_retries=1, max_requests_per_minute=5)
        client = CompletionClient.from_settings(settings)
        assert client.api_key == "k"
        assert client.model == "m"
        assert client.max_retries == 1
        assert client.rate_limiter.max_requests == 5

    def test_defaults_match_settings(self):
        settings = Settings()
        client = CompletionClient(api_key="k")
        assert client.max_tokens == settings.max_tokens
        assert client.temperature == settings.temperature
        assert client.timeout == settings.timeout
        assert client.max_retries == settings.max_retries
        assert client.rate_limiter.max_requests == settings.max_requests_per_minute

    def test_update_configuration_drops_sdk_client(self, make_client):
        client = make_client()
        client.update_configuration(Settings(api_key="new", api_url="http://localhost:8000/v1"))
        assert client._client is None
        assert client.api_key == "new"
        assert client.base_url == "http://localhost:8000/v1"

    @pytest.mark.asyncio
    async def test_connection_probe(self, make_client):
        client = make_client()
        client._client.models.list = AsyncMock(return_value=[])
        assert await client.test_connection() is True

        client._client.models.list = AsyncMock(side_effect=openai.APIConnectionError(request=_REQUEST))
        assert await client.test_connection() is False

    @pytest.mark.asyncio
    async def test_connection_without_key(self):
        assert await CompletionClient(api_key="").test_connection() is False


class TestSummarizeContext:

    def test_none(self):
        assert summarize_context(None) == "No specific context"

    def test_empty(self):
        assert summarize_context(ContextData()) == "No specific context"

    def test_flags(self):
        ctx = ContextData(current_class="Repo", has_errors=True, has_warnings=True, complexity=11)
        assert summarize_context(ctx) == "Class: Repo, Has compilation errors, Has warnings, High complexity (11)"
