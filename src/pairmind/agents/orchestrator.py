"""Agent orchestrator — select, dispatch and record agent executions.

This is the top-level entry point for the agent layer.  For every call it:
1. Looks the agent up in the injected ``AgentRegistry``.
2. Honors an already-fired cancellation token without contacting the agent.
3. Gates the snapshot through the ``PrivacyGuard`` (when one is set).
4. Runs the agent's ``validate_context`` precondition.
5. Dispatches to ``agent.execute`` and converts anything it raises.
6. Appends exactly one ``ExecutionRecord`` to history and the audit trail.

Per-execution state: idle → validating → dispatched →
(succeeded | failed | cancelled) → idle.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, Field

from ..config import Settings
from ..core.audit import AuditTrail
from ..core.errors import ErrorLogger
from ..core.models import ContextData
from ..llm.base import OutputSink
from .base import (
    AgentCapability,
    AgentResult,
    AgentType,
    CancellationToken,
    ErrorKind,
    ExecutionState,
)
from .privacy import PrivacyGuard
from .registry import AgentRegistry

logger = logging.getLogger(__name__)

_DOC_MARKERS = ("/**", '"""', "'''")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class ExecutionRecord(BaseModel):
    """One agent invocation, success or failure."""

    # The raw requested string when it names no known agent type
    agent_type: Union[AgentType, str] = Field(union_mode="left_to_right")
    context: ContextData
    result: AgentResult
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    execution_time: float = 0.0     # ms
    success: bool
    error: Optional[str] = None
    state: ExecutionState = ExecutionState.IDLE


class AgentSuggestion(BaseModel):
    agent_type: AgentType
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


class ExecutionStats(BaseModel):
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    success_rate: float = 0.0           # percent
    average_execution_time: float = 0.0  # ms
    agent_usage: dict[str, int] = Field(default_factory=dict)
    last_execution: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Suggestion scoring
# ---------------------------------------------------------------------------
# Each scorer returns (score, reasons).  Signals that are None (unknown)
# never fire.

Score = tuple[float, list[str]]


def _lacks_docs(context: ContextData) -> bool:
    code = context.surrounding_code or ""
    return not any(marker in code for marker in _DOC_MARKERS)


def _score_architect(context: ContextData) -> Score:
    score, reasons = 0.0, []
    if context.is_architectural_file:
        score += 0.4
        reasons.append("Architectural file detected.")
    files = context.file_count
    if context.architectural_patterns is not None and not context.architectural_patterns and files is not None and files > 10:
        score += 0.3
        reasons.append("Large project without clear architecture.")
    if context.complexity is not None and context.complexity > 15:
        score += 0.2
        reasons.append("High complexity suggests architectural review needed.")
    return score, reasons


def _score_codesmith(context: ContextData) -> Score:
    score, reasons = 0.0, []
    if context.selected_text:
        score += 0.3
        reasons.append("Code selection suggests generation/modification need.")
    if context.has_errors is False and context.has_warnings is False:
        score += 0.2
        reasons.append("Clean code base ready for enhancement.")
    if context.current_function:
        score += 0.2
        reasons.append("Function context available for targeted code generation.")
    return score, reasons


def _score_bughunter(context: ContextData) -> Score:
    score, reasons = 0.0, []
    if context.has_errors:
        score += 0.5
        reasons.append("Compilation errors detected.")
    if context.has_warnings:
        score += 0.3
        reasons.append("Warnings present that need attention.")
    if context.complexity is not None and context.complexity > 20:
        score += 0.2
        reasons.append("Very high complexity may indicate bugs.")
    return score, reasons


def _score_docguru(context: ContextData) -> Score:
    score, reasons = 0.0, []
    if context.missing_documentation:
        score += 0.4
        reasons.append("Missing documentation detected.")
    if context.current_function and _lacks_docs(context):
        score += 0.3
        reasons.append("Function lacks proper documentation.")
    if context.current_class and _lacks_docs(context):
        score += 0.3
        reasons.append("Class lacks proper documentation.")
    return score, reasons


def _score_gitmate(context: ContextData) -> Score:
    score, reasons = 0.0, []
    if context.has_git_changes:
        score += 0.4
        reasons.append("Uncommitted changes detected.")
    git = context.git_history
    if git is not None and len(git.uncommitted_changes) > 5:
        score += 0.3
        reasons.append("Many uncommitted files suggest need for git management.")
    if git is not None and not git.recent_commits:
        score += 0.2
        reasons.append("No recent commits, may need git workflow setup.")
    return score, reasons


def _score_devflow(context: ContextData) -> Score:
    score, reasons = 0.0, []
    if context.is_config_file:
        score += 0.4
        reasons.append("Configuration file context suggests workflow setup.")
    if context.config_files is not None and not context.config_files:
        score += 0.3
        reasons.append("Missing configuration files.")
    if context.config_files is not None and not any(f.type == "ci" for f in context.config_files):
        score += 0.2
        reasons.append("No CI/CD configuration detected.")
    return score, reasons


_SCORERS: dict[AgentType, Callable[[ContextData], Score]] = {
    AgentType.ARCHITECT: _score_architect,
    AgentType.CODESMITH: _score_codesmith,
    AgentType.BUGHUNTER: _score_bughunter,
    AgentType.DOCGURU: _score_docguru,
    AgentType.GITMATE: _score_gitmate,
    AgentType.DEVFLOW: _score_devflow,
}


# ---------------------------------------------------------------------------
# Main orchestrator
# ---------------------------------------------------------------------------

class AgentOrchestrator:
    """Dispatches snapshots to agents and keeps the execution history.

    Usage::

        registry = AgentRegistry.with_default_agents(client, settings)
        orch = AgentOrchestrator(registry, audit=AuditTrail.in_directory(root))
        result = await orch.execute_agent(AgentType.BUGHUNTER, context)
        print(orch.get_execution_stats())
    """

    def __init__(
        self,
        registry: AgentRegistry,
        *,
        audit: AuditTrail | None = None,
        error_logger: ErrorLogger | None = None,
        privacy: PrivacyGuard | None = None,
    ) -> None:
        self.registry = registry
        self.audit = audit
        self.error_logger = error_logger
        self.privacy = privacy
        self._history: list[ExecutionRecord] = []
        self._active: list[AgentType] = []

    @property
    def active_agent(self) -> AgentType | str | None:
        """The most recently started agent that has not finished yet."""
        return self._active[-1] if self._active else None

    async def activate(self) -> None:
        for agent in self.registry:
            await agent.activate()

    async def dispose(self) -> None:
        for agent in self.registry:
            await agent.deactivate()

    # ── Execution ─────────────────────────────────────────────────────

    async def execute_agent(
        self,
        agent_type: AgentType | str,
        context: ContextData,
        cancellation: CancellationToken | None = None,
        sink: OutputSink | None = None,
    ) -> AgentResult:
        """Run one agent; never raises for agent or service failures."""
        t0 = time.perf_counter()
        state = ExecutionState.VALIDATING
        result: AgentResult | None = None
        detail: str | None = None
        agent_type = _coerce_type(agent_type)
        name = _type_name(agent_type)
        self._active.append(agent_type)

        try:
            agent = self.registry.get(agent_type) if isinstance(agent_type, AgentType) else None
            if not isinstance(agent_type, AgentType):
                result = AgentResult.failure(agent_type, f"Agent {name} not found", ErrorKind.VALIDATION)
            elif agent is None:
                result = AgentResult.failure(
                    agent_type, f"Agent {name} is not registered", ErrorKind.VALIDATION
                )
            elif cancellation is not None and cancellation.is_cancelled:
                result = AgentResult.failure(agent_type, "Operation was cancelled", ErrorKind.CANCELLED)
            elif self.privacy is not None and not self.privacy.can_process_context(context):
                result = AgentResult.failure(
                    agent_type, self.privacy.block_reason(context), ErrorKind.PRIVACY_BLOCKED
                )
            else:
                validation = agent.validate_context(context)
                if not validation.valid:
                    result = AgentResult.failure(
                        agent_type, validation.reason or "Invalid context", ErrorKind.VALIDATION
                    )
                else:
                    state = ExecutionState.DISPATCHED
                    logger.debug("Dispatching %s", name)
                    result = await agent.execute(context, cancellation, sink)
        except Exception as exc:
            logger.exception("Orchestration of %s failed", name)
            detail = f"{type(exc).__name__}: {exc}"
            if self.error_logger is not None:
                self.error_logger.log_error(
                    f"Internal error while running {name}",
                    context.summary(),
                    exc=exc,
                )
            result = AgentResult.failure(
                agent_type,
                "An internal error occurred. Details were written to the local error log.",
                ErrorKind.INTERNAL,
            )
        finally:
            duration_ms = (time.perf_counter() - t0) * 1000
            if result is None:
                # Task cancellation (asyncio) interrupted the dispatch.
                result = AgentResult.failure(agent_type, "Operation was cancelled", ErrorKind.CANCELLED)
            if state != ExecutionState.DISPATCHED:
                result = result.model_copy(update={"execution_time": duration_ms})
            final_state = _final_state(result)
            self._active.remove(agent_type)
            await self._record(ExecutionRecord(
                agent_type=agent_type,
                context=context,
                result=result,
                execution_time=duration_ms,
                success=result.success,
                error=detail or result.error,
                state=final_state,
            ))

        return result

    async def execute_agent_chain(
        self,
        agent_types: list[AgentType | str],
        context: ContextData,
        cancellation: CancellationToken | None = None,
        sink: OutputSink | None = None,
    ) -> list[AgentResult]:
        """Run agents in order; stop at the first failure or cancellation.

        A successful result's ``context_updates`` are merged into the
        snapshot handed to the next agent.  The chain is not
        transactional: the partial list is the outcome.
        """
        results: list[AgentResult] = []
        current = context
        for agent_type in agent_types:
            if cancellation is not None and cancellation.is_cancelled:
                break
            result = await self.execute_agent(agent_type, current, cancellation, sink)
            results.append(result)
            if not result.success:
                break
            updates = _known_fields(result.context_updates)
            if updates:
                current = current.model_copy(update=updates)
        return results

    async def _record(self, record: ExecutionRecord) -> None:
        self._history.append(record)
        logger.info(
            "%s %s in %.0f ms", _type_name(record.agent_type), record.state.value, record.execution_time
        )
        if self.audit is None:
            return
        await self.audit.log_agent_execution(
            agent_type=_type_name(record.agent_type),
            context=record.context,
            execution_time=record.execution_time,
            success=record.success,
            error=record.error,
            state=record.state.value,
        )
        if record.success:
            await self.audit.log_agent_action(_type_name(record.agent_type), record.context, record.result)

    # ── Suggestions ───────────────────────────────────────────────────

    def get_all_agent_suggestions(self, context: ContextData) -> list[AgentSuggestion]:
        """Every registered agent, ranked by score (ties keep registry order)."""
        suggestions = []
        for agent_type in self.registry.types():
            scorer = _SCORERS.get(agent_type)
            score, reasons = scorer(context) if scorer else (0.0, [])
            suggestions.append(AgentSuggestion(
                agent_type=agent_type,
                confidence=min(1.0, round(score, 4)),
                reasoning=" ".join(reasons),
            ))
        return sorted(suggestions, key=lambda s: s.confidence, reverse=True)

    def suggest_agent(self, context: ContextData) -> AgentSuggestion | None:
        suggestions = self.get_all_agent_suggestions(context)
        return suggestions[0] if suggestions else None

    # ── History / stats ───────────────────────────────────────────────

    def get_execution_history(self, limit: int | None = None) -> list[ExecutionRecord]:
        """Most recent first."""
        history = list(reversed(self._history))
        return history[:limit] if limit is not None else history

    def clear_history(self) -> None:
        self._history.clear()

    def get_execution_stats(self) -> ExecutionStats:
        total = len(self._history)
        if total == 0:
            return ExecutionStats()
        successful = sum(1 for r in self._history if r.success)
        usage = Counter(_type_name(r.agent_type) for r in self._history)
        return ExecutionStats(
            total_executions=total,
            successful_executions=successful,
            failed_executions=total - successful,
            success_rate=successful / total * 100,
            average_execution_time=sum(r.execution_time for r in self._history) / total,
            agent_usage=dict(usage),
            last_execution=self._history[-1].timestamp,
        )

    def get_agent_capabilities(self, agent_type: AgentType | str) -> list[AgentCapability]:
        agent = self.registry.get(agent_type)
        return agent.get_capabilities() if agent else []

    # ── Configuration ─────────────────────────────────────────────────

    async def update_configuration(self, settings: Settings) -> None:
        """Push new settings to the privacy guard, the audit trail and every agent."""
        if self.privacy is not None:
            self.privacy.update_from_settings(settings)
        if self.audit is not None:
            self.audit.set_enabled(settings.audit_enabled)
        for agent in self.registry:
            await agent.update_configuration(settings)


def _coerce_type(agent_type: AgentType | str) -> AgentType | str:
    """The matching ``AgentType``, or the raw string when none matches."""
    try:
        return AgentType(agent_type)
    except (ValueError, TypeError):
        return str(agent_type)


def _type_name(agent_type: AgentType | str) -> str:
    return agent_type.value if isinstance(agent_type, AgentType) else str(agent_type)


def _final_state(result: AgentResult) -> ExecutionState:
    if result.success:
        return ExecutionState.SUCCEEDED
    if result.error_kind == ErrorKind.CANCELLED:
        return ExecutionState.CANCELLED
    return ExecutionState.FAILED


def _known_fields(updates: dict[str, Any]) -> dict[str, Any]:
    """Keep only updates that name a ``ContextData`` field."""
    unknown = [k for k in updates if k not in ContextData.model_fields]
    if unknown:
        logger.debug("Ignoring unknown context updates: %s", ", ".join(unknown))
    return {k: v for k, v in updates.items() if k in ContextData.model_fields}
