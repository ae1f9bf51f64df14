"""Completion-service access for pairmind agents.

Usage::

    from pairmind.llm import CompletionClient

    client = CompletionClient(api_key="sk-...", model="gpt-4o-mini")
    completion = await client.complete("Explain asyncio.", system="You are helpful.")
"""

from .base import Completion, CompletionError, ServiceErrorKind
from .client import CompletionClient

__all__ = ["Completion", "CompletionClient", "CompletionError", "ServiceErrorKind"]
