"""Append-only audit trail of agent executions and actions.

One JSON object per line.  Entries carry short summaries of the context
and the result, never the full snapshot or reply.  The file is opened,
appended and closed on every write so an interrupted process cannot
leave a handle open across suspensions.

Write failures are logged and swallowed: a broken audit log must never
abort the operation being audited.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .models import ContextData

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "pairmind-audit.log"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def action_type(result: Any) -> str:
    """Classify what a result mainly did, for the audit entry."""
    if getattr(result, "code_changes", None):
        return "code_change"
    if getattr(result, "documentation", None):
        return "documentation"
    if getattr(result, "git_operations", None):
        return "git_operation"
    if getattr(result, "workflow_files", None):
        return "workflow"
    if getattr(result, "analysis_results", None):
        return "analysis"
    return "other"


class AuditTrail:
    """JSON-lines audit log under a storage directory."""

    def __init__(self, path: str | Path, *, enabled: bool = True) -> None:
        self.path = Path(path)
        self.enabled = enabled

    @classmethod
    def in_directory(cls, directory: str | Path, *, enabled: bool = True) -> "AuditTrail":
        return cls(Path(directory) / LOG_FILE_NAME, enabled=enabled)

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled

    # -- Writers ------------------------------------------------------------

    async def log_agent_execution(
        self,
        *,
        agent_type: str,
        context: ContextData,
        execution_time: float,
        success: bool,
        error: str | None = None,
        state: str | None = None,
    ) -> None:
        if not self.enabled:
            return
        entry = {
            "type": "agent_execution",
            "timestamp": _now_iso(),
            "agentType": agent_type,
            "executionTime": round(execution_time, 3),
            "success": success,
            "error": error,
            "state": state,
            "contextSummary": context.summary(),
        }
        await self._write(entry)

    async def log_agent_action(self, agent_type: str, context: ContextData, result: Any) -> None:
        if not self.enabled:
            return
        entry = {
            "type": "agent_action",
            "timestamp": _now_iso(),
            "agentType": agent_type,
            "actionType": action_type(result),
            "success": bool(getattr(result, "success", True)),
            "contextSummary": context.summary(),
            "resultSummary": result.summary() if hasattr(result, "summary") else {},
        }
        await self._write(entry)

    async def _write(self, entry: dict[str, Any]) -> None:
        try:
            line = json.dumps(entry, default=str) + "\n"
            await asyncio.to_thread(self._append, line)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Error writing to audit log %s: %s", self.path, exc)

    def _append(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(line)
            fh.flush()

    # -- Readers ------------------------------------------------------------

    async def get_audit_log(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Entries newest first; unreadable lines are skipped."""
        try:
            content = await asyncio.to_thread(self._read)
        except OSError as exc:
            logger.error("Error reading audit log %s: %s", self.path, exc)
            return []

        entries: list[dict[str, Any]] = []
        for number, line in enumerate(content.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning("Skipping malformed audit line %d", number)
        entries.sort(key=lambda e: str(e.get("timestamp", "")), reverse=True)
        return entries[:limit] if limit else entries

    def _read(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8")

    async def clear(self) -> None:
        try:
            await asyncio.to_thread(self.path.write_text, "", "utf-8")
        except OSError as exc:
            logger.error("Error clearing audit log %s: %s", self.path, exc)
