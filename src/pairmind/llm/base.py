"""Shared types for the completion-service layer.

Kept free of SDK imports so agents can depend on the contract
(``CompletionService``) without importing the OpenAI client.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Optional, Protocol

from pydantic import BaseModel, Field

from ..core.models import ContextData

# Receives streamed text chunks as they arrive.
OutputSink = Callable[[str], None]


class ServiceErrorKind(str, Enum):
    """Distinguishable completion-service failures."""
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    BAD_REQUEST = "bad_request"
    PRIVACY_BLOCKED = "privacy_blocked"
    LOCAL_RATE_LIMIT = "local_rate_limit"


RETRYABLE_KINDS = frozenset({
    ServiceErrorKind.RATE_LIMIT,
    ServiceErrorKind.SERVER,
    ServiceErrorKind.TIMEOUT,
    ServiceErrorKind.CONNECTION,
})

_USER_MESSAGES: dict[ServiceErrorKind, str] = {
    ServiceErrorKind.AUTH: "Authentication failed. Please check your API key.",
    ServiceErrorKind.RATE_LIMIT: "The service is rate limiting requests. Please try again in a moment.",
    ServiceErrorKind.SERVER: "The completion service is having trouble. Please try again later.",
    ServiceErrorKind.TIMEOUT: "The request timed out. Please try again.",
    ServiceErrorKind.CONNECTION: "Cannot reach the completion service. Check the API URL and your network, then retry.",
    ServiceErrorKind.BAD_REQUEST: "The completion service rejected the request.",
    ServiceErrorKind.PRIVACY_BLOCKED: "Request blocked by privacy settings.",
    ServiceErrorKind.LOCAL_RATE_LIMIT: "Rate limit exceeded. Please wait before making more requests.",
}


class CompletionError(Exception):
    """Raised by a completion service; ``kind`` drives retry decisions."""

    def __init__(self, kind: ServiceErrorKind, detail: str = "", *, status_code: int | None = None) -> None:
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail or _USER_MESSAGES[kind])

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @property
    def user_message(self) -> str:
        return _USER_MESSAGES[self.kind]


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class Completion(BaseModel):
    """One finished completion."""

    text: str
    model: str = ""
    usage: Usage = Field(default_factory=Usage)
    response_time: float = 0.0      # ms
    finish_reason: Optional[str] = None


class CompletionService(Protocol):
    """What agents need from the completion layer."""

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        context: ContextData | None = None,
        agent_type: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        sink: OutputSink | None = None,
        **kwargs: Any,
    ) -> Completion:
        ...
