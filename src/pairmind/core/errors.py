"""Local diagnostic log for internal faults.

Users see a generic message; the full detail (traceback plus a context
summary) lands here, in a file on the local machine.  Nothing from this
log is ever sent to the completion service.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

ERROR_LOGGER_NAME = "pairmind.errors"


class ErrorLogger:
    """Writes internal faults to ``<workspace>/errors.log``."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._logger = logging.getLogger(f"{ERROR_LOGGER_NAME}.{id(self):x}")
        self._logger.propagate = False
        self._logger.setLevel(logging.ERROR)
        self._handler: logging.FileHandler | None = None

    def _ensure_handler(self) -> None:
        if self._handler is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(self.path, encoding="utf-8", delay=True)
        handler.setFormatter(logging.Formatter(
            "[%(asctime)s] %(levelname)s: %(message)s\n---",
            datefmt="%Y-%m-%dT%H:%M:%S",
        ))
        self._logger.addHandler(handler)
        self._handler = handler

    def log_error(self, message: str, context: dict[str, Any] | None = None, *, exc: BaseException | None = None) -> None:
        self._ensure_handler()
        detail = message
        if context:
            detail += "\nContext: " + json.dumps(context, indent=2, default=str)
        self._logger.error(detail, exc_info=exc)

    def close(self) -> None:
        if self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None
