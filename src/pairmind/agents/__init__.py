"""Agent layer for pairmind.

Modules
-------
base         — Agent contract, result models, cancellation
parsing      — Line-oriented reply parser and confidence scoring
privacy      — Privacy modes, exclusion lists, sensitive-data patterns
registry     — Injected map of agent type to agent instance
orchestrator — Dispatch, suggestion ranking, history and audit
specialized/ — The six pair-programming agents
"""

from .base import (
    AgentBase,
    AgentResult,
    AgentType,
    CancellationToken,
    ErrorKind,
    ExecutionState,
)
from .orchestrator import AgentOrchestrator, AgentSuggestion, ExecutionRecord, ExecutionStats
from .parsing import ParsedResponse, ResponseParser
from .privacy import PrivacyGuard, PrivacyMode
from .registry import AgentRegistry

__all__ = [
    "AgentBase",
    "AgentResult",
    "AgentType",
    "CancellationToken",
    "ErrorKind",
    "ExecutionState",
    "AgentOrchestrator",
    "AgentSuggestion",
    "ExecutionRecord",
    "ExecutionStats",
    "ParsedResponse",
    "ResponseParser",
    "PrivacyGuard",
    "PrivacyMode",
    "AgentRegistry",
]
