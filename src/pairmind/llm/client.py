"""Async completion client for an OpenAI-compatible chat endpoint.

Provides a thin wrapper around ``openai.AsyncOpenAI`` with:
- A privacy gate on every outgoing request.
- A local sliding-window rate limit (requests per minute).
- Retry with exponential backoff on transient failures
  (rate limiting, 5xx, timeouts, connection errors).
- Optional streaming of the reply into an output sink.
- SDK exceptions mapped onto ``CompletionError`` kinds.

The SDK's own retry loop is disabled (``max_retries=0``) so backoff is
decided here, in one place.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx
import openai
from openai import AsyncOpenAI

from ..agents.privacy import PrivacyGuard
from ..config import (
    DEFAULT_API_URL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_RATE_LIMIT,
    DEFAULT_TEMPERATURE,
    DEFAULT_TIMEOUT,
    Settings,
)
from ..core.models import CompletionRequest, ContextData
from .base import Completion, CompletionError, OutputSink, ServiceErrorKind, Usage

logger = logging.getLogger("pairmind.llm.client")


# ── Defaults ──────────────────────────────────────────────────────────────

RATE_WINDOW_SECONDS = 60.0


def summarize_context(context: ContextData | None) -> str:
    """One-line context summary prepended to every user message."""
    if context is None:
        return "No specific context"
    parts: list[str] = []
    if context.current_file:
        parts.append(f"File: {context.current_file}")
    if context.current_function:
        parts.append(f"Function: {context.current_function}")
    if context.current_class:
        parts.append(f"Class: {context.current_class}")
    if context.has_errors:
        parts.append("Has compilation errors")
    if context.has_warnings:
        parts.append("Has warnings")
    if context.complexity is not None and context.complexity > 10:
        parts.append(f"High complexity ({context.complexity})")
    return ", ".join(parts) or "No specific context"


def map_sdk_error(exc: Exception) -> CompletionError:
    """Translate an ``openai`` exception into a ``CompletionError``."""
    # APITimeoutError subclasses APIConnectionError, so it goes first.
    if isinstance(exc, openai.APITimeoutError):
        return CompletionError(ServiceErrorKind.TIMEOUT, str(exc))
    if isinstance(exc, openai.APIConnectionError):
        return CompletionError(ServiceErrorKind.CONNECTION, str(exc))
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return CompletionError(ServiceErrorKind.AUTH, str(exc), status_code=exc.status_code)
    if isinstance(exc, openai.RateLimitError):
        return CompletionError(ServiceErrorKind.RATE_LIMIT, str(exc), status_code=429)
    if isinstance(exc, openai.APIStatusError):
        kind = ServiceErrorKind.SERVER if exc.status_code >= 500 else ServiceErrorKind.BAD_REQUEST
        return CompletionError(kind, str(exc), status_code=exc.status_code)
    if isinstance(exc, httpx.TimeoutException):
        return CompletionError(ServiceErrorKind.TIMEOUT, str(exc))
    if isinstance(exc, httpx.TransportError):
        return CompletionError(ServiceErrorKind.CONNECTION, str(exc))
    return CompletionError(ServiceErrorKind.BAD_REQUEST, str(exc))


# ══════════════════════════════════════════════════════════════════════════
# Rate limiter
# ══════════════════════════════════════════════════════════════════════════


class RateLimiter:
    """Sliding-window limit on requests per minute."""

    def __init__(
        self,
        max_requests: int = DEFAULT_RATE_LIMIT,
        window: float = RATE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._timestamps: deque[float] = deque()

    def try_acquire(self) -> bool:
        now = self._clock()
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()
        if len(self._timestamps) >= self.max_requests:
            return False
        self._timestamps.append(now)
        return True

    @property
    def in_window(self) -> int:
        return len(self._timestamps)


# ══════════════════════════════════════════════════════════════════════════
# Client
# ══════════════════════════════════════════════════════════════════════════


class CompletionClient:
    """The single completion-service wrapper used by every agent."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        max_requests_per_minute: int = DEFAULT_RATE_LIMIT,
        privacy: PrivacyGuard | None = None,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api_key = api_key or ""
        self.base_url = base_url or DEFAULT_API_URL
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.privacy = privacy
        self.base_delay = base_delay
        self.rate_limiter = RateLimiter(max_requests_per_minute, clock=clock)
        self._sleep = sleep or asyncio.sleep
        self._client: AsyncOpenAI | None = None

    @classmethod
    def from_settings(cls, settings: Settings, privacy: PrivacyGuard | None = None) -> "CompletionClient":
        return cls(
            api_key=settings.api_key,
            base_url=settings.api_url,
            model=settings.model,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            max_requests_per_minute=settings.max_requests_per_minute,
            privacy=privacy,
        )

    def update_configuration(self, settings: Settings) -> None:
        """Apply new endpoint/credential settings; the SDK client is rebuilt lazily."""
        self.api_key = settings.api_key
        self.base_url = settings.api_url
        self.model = settings.model
        self.timeout = settings.timeout
        self.max_retries = settings.max_retries
        self.max_tokens = settings.max_tokens
        self.temperature = settings.temperature
        self.rate_limiter.max_requests = settings.max_requests_per_minute
        self._client = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise CompletionError(
                    ServiceErrorKind.AUTH,
                    "No API key configured. Set PAIRMIND_API_KEY or OPENAI_API_KEY.",
                )
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                max_retries=0,
            )
        return self._client

    # ── Public API ────────────────────────────────────────────────────

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        context: ContextData | None = None,
        agent_type: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        stream: bool = False,
        sink: OutputSink | None = None,
    ) -> Completion:
        """Send one request, retrying transient failures with backoff.

        With a *sink* (or ``stream=True``) the reply is streamed and each
        chunk is handed to the sink as it arrives.  A stream that already
        delivered chunks is never retried, so the sink sees no duplicates.
        """
        request = CompletionRequest(
            prompt=prompt,
            system=system,
            context=context,
            agent_type=agent_type,
            max_tokens=max_tokens or self.max_tokens,
            temperature=self.temperature if temperature is None else temperature,
            stream=stream or sink is not None,
        )
        self._admit(request)
        messages = self._messages(request)

        last_exc: CompletionError | None = None
        for attempt in range(self.max_retries + 1):
            emitted = [False]
            try:
                start = time.perf_counter()
                if request.stream:
                    completion = await self._stream_once(request, messages, sink, emitted)
                else:
                    completion = await self._call_once(request, messages)
                completion.response_time = (time.perf_counter() - start) * 1000
                logger.debug(
                    "Completion for %s: %d tokens in %.0f ms",
                    agent_type or "request", completion.usage.total_tokens, completion.response_time,
                )
                return completion
            except CompletionError as exc:
                last_exc = exc
                if not exc.retryable or emitted[0] or attempt >= self.max_retries:
                    raise
                wait = self.base_delay * 2 ** attempt
                logger.warning(
                    "Completion failed (attempt %d/%d): %s; retrying in %.1fs",
                    attempt + 1, self.max_retries + 1, exc.kind.value, wait,
                )
                await self._sleep(wait)
        # Only reachable with a negative max_retries.
        raise last_exc or CompletionError(ServiceErrorKind.SERVER, "No attempt was made")

    async def stream(
        self,
        prompt: str,
        *,
        system: str | None = None,
        context: ContextData | None = None,
        agent_type: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[str]:
        """Yield reply chunks as they arrive (single attempt)."""
        request = CompletionRequest(
            prompt=prompt,
            system=system,
            context=context,
            agent_type=agent_type,
            max_tokens=max_tokens or self.max_tokens,
            temperature=self.temperature if temperature is None else temperature,
            stream=True,
        )
        self._admit(request)
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=self._messages(request),
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                stream=True,
            )
            async for chunk in response:
                delta = _chunk_text(chunk)
                if delta:
                    yield delta
        except openai.OpenAIError as exc:
            raise map_sdk_error(exc) from exc

    async def test_connection(self) -> bool:
        """Probe the endpoint by listing models."""
        try:
            await self._get_client().models.list()
        except CompletionError as exc:
            logger.warning("Connection test failed: %s", exc)
            return False
        except openai.OpenAIError as exc:
            logger.warning("Connection test failed: %s", map_sdk_error(exc).user_message)
            return False
        return True

    # ── Internals ─────────────────────────────────────────────────────

    def _admit(self, request: CompletionRequest) -> None:
        if self.privacy is not None and not self.privacy.can_process_request(request):
            raise CompletionError(ServiceErrorKind.PRIVACY_BLOCKED)
        if not self.rate_limiter.try_acquire():
            raise CompletionError(ServiceErrorKind.LOCAL_RATE_LIMIT)

    @staticmethod
    def _messages(request: CompletionRequest) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        if request.context is not None:
            content = f"Context: {summarize_context(request.context)}\n\nRequest: {request.prompt}"
        else:
            content = request.prompt
        messages.append({"role": "user", "content": content})
        return messages

    async def _call_once(self, request: CompletionRequest, messages: list[dict[str, str]]) -> Completion:
        client = self._get_client()
        try:
            resp = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
            )
        except openai.OpenAIError as exc:
            raise map_sdk_error(exc) from exc

        if not resp.choices:
            raise CompletionError(ServiceErrorKind.SERVER, "No choices returned by the completion service")
        choice = resp.choices[0]
        usage = Usage()
        if resp.usage is not None:
            usage = Usage(
                prompt_tokens=resp.usage.prompt_tokens or 0,
                completion_tokens=resp.usage.completion_tokens or 0,
                total_tokens=resp.usage.total_tokens or 0,
            )
        return Completion(
            text=(choice.message.content or "").strip(),
            model=resp.model or self.model,
            usage=usage,
            finish_reason=choice.finish_reason,
        )

    async def _stream_once(
        self,
        request: CompletionRequest,
        messages: list[dict[str, str]],
        sink: OutputSink | None,
        emitted: list[bool],
    ) -> Completion:
        client = self._get_client()
        parts: list[str] = []
        finish_reason: str | None = None
        model = self.model
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                stream=True,
            )
            async for chunk in response:
                model = getattr(chunk, "model", None) or model
                if chunk.choices and chunk.choices[0].finish_reason:
                    finish_reason = chunk.choices[0].finish_reason
                delta = _chunk_text(chunk)
                if not delta:
                    continue
                parts.append(delta)
                if sink is not None:
                    sink(delta)
                    emitted[0] = True
        except openai.OpenAIError as exc:
            raise map_sdk_error(exc) from exc
        return Completion(text="".join(parts).strip(), model=model, finish_reason=finish_reason)


def _chunk_text(chunk: Any) -> str:
    if not getattr(chunk, "choices", None):
        return ""
    delta = chunk.choices[0].delta
    return (getattr(delta, "content", None) or "") if delta is not None else ""
