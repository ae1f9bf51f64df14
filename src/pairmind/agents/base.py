"""Agent contract and the shared result models.

Every specialized agent inherits from ``AgentBase`` and implements
``_run()``.  The public ``execute()`` wraps it with the bookkeeping all
agents share: cancellation checks, status counters, timing and the
conversion of any exception into a failed ``AgentResult``.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..config import Settings
from ..core.models import ContextData, Position, Range
from ..llm.base import Completion, CompletionError, CompletionService, OutputSink, ServiceErrorKind

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class AgentType(str, Enum):
    ARCHITECT = "architect"
    CODESMITH = "codesmith"
    BUGHUNTER = "bughunter"
    DOCGURU = "docguru"
    GITMATE = "gitmate"
    DEVFLOW = "devflow"


class CapabilityType(str, Enum):
    CODE_GENERATION = "code_generation"
    CODE_ANALYSIS = "code_analysis"
    DOCUMENTATION = "documentation"
    ARCHITECTURE = "architecture"
    DEBUGGING = "debugging"
    GIT_OPERATIONS = "git_operations"
    WORKFLOW_SETUP = "workflow_setup"
    OPTIMIZATION = "optimization"
    TEST_GENERATION = "test_generation"
    REFACTORING = "refactoring"
    SECURITY_ANALYSIS = "security_analysis"
    PERFORMANCE_OPTIMIZATION = "performance_optimization"


class ChangeType(str, Enum):
    REPLACE = "replace"
    INSERT = "insert"
    DELETE = "delete"
    CREATE_FILE = "create_file"
    RENAME_FILE = "rename_file"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AnalysisCategory(str, Enum):
    BUG = "bug"
    PERFORMANCE = "performance"
    SECURITY = "security"
    MAINTAINABILITY = "maintainability"
    STYLE = "style"
    ARCHITECTURE = "architecture"


class ErrorKind(str, Enum):
    """Why an execution did not succeed."""
    VALIDATION = "validation"
    PRIVACY_BLOCKED = "privacy_blocked"
    CANCELLED = "cancelled"
    SERVICE = "service"
    INTERNAL = "internal"


class ExecutionState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    DISPATCHED = "dispatched"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class OperationCancelled(Exception):
    """Raised inside an agent when its cancellation token fires."""


class CancellationToken:
    """Cooperative, advisory cancellation flag."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled()


# ---------------------------------------------------------------------------
# Capability models
# ---------------------------------------------------------------------------

class AgentCapability(BaseModel):
    type: CapabilityType
    name: str
    description: str = ""
    supported_languages: list[str] = Field(default_factory=lambda: ["*"])
    supported_file_types: list[str] = Field(default_factory=lambda: ["*"])
    requires_context: list[str] = Field(default_factory=list)  # ContextData field names
    output_types: list[str] = Field(default_factory=list)


class AgentDescriptor(BaseModel):
    """Immutable description of a registered agent."""
    agent_type: AgentType
    name: str
    description: str
    capabilities: tuple[AgentCapability, ...] = ()

    model_config = ConfigDict(frozen=True)


class ValidationResult(BaseModel):
    valid: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def fail(cls, reason: str) -> "ValidationResult":
        return cls(valid=False, reason=reason)


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------

class CodeChange(BaseModel):
    type: ChangeType
    file_path: str
    range: Optional[Range] = None
    position: Optional[Position] = None
    old_text: Optional[str] = None
    new_text: Optional[str] = None
    description: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reasoning: Optional[str] = None


class DocumentationOutput(BaseModel):
    type: str = "module"            # function, class, module, api, readme, changelog
    path: str
    content: str
    format: str = "markdown"        # markdown, jsdoc, typescript, plain
    metadata: dict[str, Any] = Field(default_factory=dict)


class GitOperation(BaseModel):
    """A git command the user may choose to run; never executed here."""
    type: str                       # commit, branch, merge, tag, push, pull, stash
    command: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)
    requires_confirmation: bool = True
    risk_level: str = "low"


class WorkflowFile(BaseModel):
    type: str                       # github_action, gitlab_ci, docker, makefile, npm_script, config
    path: str
    content: str
    description: str = ""
    dependencies: list[str] = Field(default_factory=list)
    environment: list[str] = Field(default_factory=list)


class Location(BaseModel):
    file: str
    line: Optional[int] = None
    column: Optional[int] = None


class AnalysisResult(BaseModel):
    category: AnalysisCategory
    severity: Severity = Severity.INFO
    title: str
    description: str = ""
    location: Optional[Location] = None
    suggestion: Optional[str] = None
    tags: list[str] = Field(default_factory=list)


class Alternative(BaseModel):
    title: str
    description: str = ""
    pros: list[str] = Field(default_factory=list)
    cons: list[str] = Field(default_factory=list)
    complexity: str = "medium"      # low, medium, high
    time_estimate: Optional[str] = None


class AgentResult(BaseModel):
    """The output of a single agent execution."""

    success: bool
    # A raw string only when the requested type is unknown
    agent_type: Union[AgentType, str] = Field(union_mode="left_to_right")
    execution_time: float = 0.0     # ms
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    message: Optional[str] = None
    suggestions: list[str] = Field(default_factory=list)
    code_changes: list[CodeChange] = Field(default_factory=list)
    documentation: list[DocumentationOutput] = Field(default_factory=list)
    git_operations: list[GitOperation] = Field(default_factory=list)
    workflow_files: list[WorkflowFile] = Field(default_factory=list)
    analysis_results: list[AnalysisResult] = Field(default_factory=list)
    alternatives: list[Alternative] = Field(default_factory=list)

    # Merged into the next agent's context when chaining
    context_updates: dict[str, Any] = Field(default_factory=dict)

    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    reasoning: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)

    def summary(self) -> dict[str, bool]:
        """Short summary used by the audit trail (never the full result)."""
        return {
            "hasCodeChanges": bool(self.code_changes),
            "hasDocumentation": bool(self.documentation),
            "hasGitOperations": bool(self.git_operations),
            "hasSuggestions": bool(self.suggestions),
            "hasAnalysisResults": bool(self.analysis_results),
        }

    @classmethod
    def failure(
        cls,
        agent_type: AgentType | str,
        error: str,
        kind: ErrorKind,
        *,
        execution_time: float = 0.0,
    ) -> "AgentResult":
        return cls(
            success=False,
            agent_type=agent_type,
            error=error,
            error_kind=kind,
            execution_time=execution_time,
        )


class AgentStatus(BaseModel):
    is_ready: bool = True
    is_executing: bool = False
    success_count: int = 0
    error_count: int = 0
    average_execution_time: float = 0.0     # ms
    last_execution: Optional[datetime] = None
    current_task: Optional[str] = None


# Human-readable reasons for missing required fields.
_MISSING_REASONS: dict[str, str] = {
    "current_file": "A current file is required",
    "surrounding_code": "Surrounding code must be non-empty",
    "selected_text": "A selection is required",
    "language": "The file language must be known",
    "project_root": "A project root is required",
    "project_structure": "Project files are required",
    "diff": "A diff of the changes is required",
    "problem_statement": "A problem statement is required",
}

BASE_SYSTEM_PROMPT = (
    "You are pairmind, an expert AI pair programmer who reasons from the "
    "surrounding context, not just the code in front of you. Always give:\n"
    "1. Clear reasoning for your answer\n"
    "2. Solutions that fit the project's existing conventions\n"
    "3. Best practices and realistic alternatives\n"
    "4. Performance and security considerations\n"
)


# ---------------------------------------------------------------------------
# Abstract base agent
# ---------------------------------------------------------------------------

class AgentBase(ABC):
    """Base class for all specialized agents.

    Subclasses set the class attributes below and implement ``_run()``.

    Parameters
    ----------
    client : CompletionService
        The completion service used for every model call.
    settings : Settings | None
        Generation defaults (max tokens, temperature).
    """

    agent_type: AgentType
    name: str = ""
    description: str = ""
    specialization: str = ""
    # All must be present for validate_context() without a capability.
    required_context: tuple[str, ...] = ()
    # At least one must be present, when non-empty.
    required_any: tuple[str, ...] = ()

    def __init__(self, client: CompletionService, settings: Settings | None = None) -> None:
        self.client = client
        self.settings = settings or Settings()
        self._status = AgentStatus()

    # -- Contract -----------------------------------------------------------

    @abstractmethod
    def get_capabilities(self) -> list[AgentCapability]:
        ...

    @abstractmethod
    async def _run(
        self,
        context: ContextData,
        cancellation: CancellationToken | None,
        sink: OutputSink | None,
    ) -> AgentResult:
        """Do the agent's work; may raise, the wrapper converts."""
        ...

    @property
    def system_prompt(self) -> str:
        return f"{BASE_SYSTEM_PROMPT}\n{self.specialization}".rstrip()

    def descriptor(self) -> AgentDescriptor:
        return AgentDescriptor(
            agent_type=self.agent_type,
            name=self.name,
            description=self.description,
            capabilities=tuple(self.get_capabilities()),
        )

    def validate_context(
        self,
        context: ContextData,
        capability_type: CapabilityType | None = None,
    ) -> ValidationResult:
        """Cheap precondition check, run before any external call."""
        if capability_type is None:
            for name in self.required_context:
                if not context.has_field(name):
                    return ValidationResult.fail(_missing_reason(name, self.name))
            if self.required_any and not any(context.has_field(n) for n in self.required_any):
                fields = ", ".join(self.required_any)
                return ValidationResult.fail(f"{self.name} needs at least one of: {fields}")
            return ValidationResult.ok()

        matching = [c for c in self.get_capabilities() if c.type == capability_type]
        if not matching:
            return ValidationResult.fail(
                f"{self.name} does not support {capability_type.value}"
            )
        for capability in matching:
            if all(context.has_field(n) for n in capability.requires_context):
                return ValidationResult.ok()
        missing = [n for n in matching[0].requires_context if not context.has_field(n)]
        return ValidationResult.fail(
            f"{_missing_reason(missing[0], '')} ({matching[0].name})"
        )

    def get_status(self) -> AgentStatus:
        return self._status.model_copy()

    async def activate(self) -> None:
        self._status.is_ready = True

    async def deactivate(self) -> None:
        self._status.is_ready = False

    async def update_configuration(self, settings: Settings) -> None:
        self.settings = settings

    # -- Execution wrapper --------------------------------------------------

    async def execute(
        self,
        context: ContextData,
        cancellation: CancellationToken | None = None,
        sink: OutputSink | None = None,
    ) -> AgentResult:
        """Run the agent; never raises."""
        start = time.perf_counter()
        self._status.is_executing = True
        self._status.current_task = self.agent_type.value
        try:
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            result = await self._run(context, cancellation, sink)
        except OperationCancelled:
            result = AgentResult.failure(
                self.agent_type, "Operation was cancelled", ErrorKind.CANCELLED
            )
        except CompletionError as exc:
            logger.warning("%s: completion failed (%s): %s", self.name, exc.kind.value, exc)
            kind = ErrorKind.PRIVACY_BLOCKED if exc.kind == ServiceErrorKind.PRIVACY_BLOCKED else ErrorKind.SERVICE
            result = AgentResult.failure(self.agent_type, exc.user_message, kind)
        except Exception as exc:
            logger.exception("%s execution failed", self.name)
            result = AgentResult.failure(
                self.agent_type, f"{self.name} failed: {exc}", ErrorKind.INTERNAL
            )
        finally:
            self._status.is_executing = False
            self._status.current_task = None

        duration_ms = (time.perf_counter() - start) * 1000
        self._record(result.success, duration_ms)
        return result.model_copy(update={"execution_time": duration_ms})

    def _record(self, success: bool, duration_ms: float) -> None:
        if success:
            self._status.success_count += 1
        else:
            self._status.error_count += 1
        n = self._status.success_count + self._status.error_count
        self._status.average_execution_time = (
            self._status.average_execution_time * (n - 1) + duration_ms
        ) / n
        self._status.last_execution = datetime.now(timezone.utc)

    # -- Helpers for subclasses ---------------------------------------------

    async def _complete(
        self,
        prompt: str,
        context: ContextData,
        cancellation: CancellationToken | None,
        sink: OutputSink | None,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> Completion:
        """Issue the completion call after a last cancellation check."""
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        return await self.client.complete(
            prompt,
            system=self.system_prompt,
            context=context,
            agent_type=self.agent_type.value,
            max_tokens=max_tokens or self.settings.max_tokens,
            temperature=temperature if temperature is not None else self.settings.temperature,
            sink=sink,
        )

    def _make_result(self, **kwargs: Any) -> AgentResult:
        """Convenience factory for a successful result from this agent."""
        kwargs.setdefault("success", True)
        return AgentResult(agent_type=self.agent_type, **kwargs)


def _missing_reason(field_name: str, agent_name: str) -> str:
    base = _MISSING_REASONS.get(field_name, f"Context field '{field_name}' is required")
    return f"{base} for {agent_name}" if agent_name else base
