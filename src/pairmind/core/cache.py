"""Short-lived context snapshot cache keyed by document identity."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from .models import ContextData

logger = logging.getLogger(__name__)

DEFAULT_THROTTLE_SECONDS = 0.2


@dataclass
class _Entry:
    context: ContextData
    updated_at: float


class ContextCache:
    """Bounds how often a document's snapshot is rebuilt.

    An entry younger than the throttle window (measured from its last
    *update*, not from the request) is served as-is.  Older entries are
    rebuilt on the next request.  Concurrent rebuilds for one key are not
    deduplicated; the last writer wins.
    """

    def __init__(
        self,
        throttle: float = DEFAULT_THROTTLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.throttle = throttle
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def get(self, key: str) -> ContextData | None:
        entry = self._entries.get(key)
        return entry.context if entry else None

    def is_fresh(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._clock() - entry.updated_at < self.throttle

    def put(self, key: str, context: ContextData) -> None:
        self._entries[key] = _Entry(context=context, updated_at=self._clock())

    async def get_or_build(
        self,
        key: str,
        build: Callable[[], Awaitable[ContextData]],
        *,
        force: bool = False,
    ) -> ContextData:
        if not force and self.is_fresh(key):
            return self._entries[key].context
        context = await build()
        self.put(key, context)
        logger.debug("Rebuilt context for %s", key)
        return context

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
