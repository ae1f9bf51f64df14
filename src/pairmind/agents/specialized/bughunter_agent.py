"""BugHunterAgent — contextual debugging and root-cause analysis.

Classifies the likely kind of defect from the snapshot (diagnostics,
code keywords, complexity), asks the model for a focused analysis and
turns ``Issue:`` / ``Fix:`` markers and fenced code into findings,
suggestions and replacement edits.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Callable

from ...core.models import ContextData
from ...llm.base import OutputSink
from ..base import (
    AgentBase,
    AgentCapability,
    AgentResult,
    AgentType,
    Alternative,
    AnalysisCategory,
    CancellationToken,
    CapabilityType,
    ChangeType,
    CodeChange,
    Severity,
)
from ..parsing import MarkerSet, ResponseParser, clamp_confidence, code_confidence


class DebugKind(str, Enum):
    RUNTIME_ERROR = "runtime_error"
    TYPE_ERROR = "type_error"
    PERFORMANCE_ISSUE = "performance_issue"
    MEMORY_LEAK = "memory_leak"
    ASYNC_ISSUE = "async_issue"
    SECURITY_VULNERABILITY = "security_vulnerability"
    INTEGRATION_ISSUE = "integration_issue"
    LOGIC_ERROR = "logic_error"


_MEMORY_RE = re.compile(r"memory|leak|\bgc\b")


def classify_debug_task(context: ContextData) -> DebugKind:
    """Most likely defect kind; first matching rule wins."""
    code = (context.surrounding_code or "").lower()
    messages = context.error_messages or []

    if any("Error:" in m or "Exception:" in m for m in messages):
        return DebugKind.RUNTIME_ERROR
    if any("type" in m.lower() for m in messages):
        return DebugKind.TYPE_ERROR
    if (context.complexity or 0) > 15 or "performance" in code or "slow" in code:
        return DebugKind.PERFORMANCE_ISSUE
    if _MEMORY_RE.search(code):
        return DebugKind.MEMORY_LEAK
    if any(k in code for k in ("async", "await", "promise", "callback", "settimeout")):
        return DebugKind.ASYNC_ISSUE
    if any(k in code for k in ("sql", "eval", "innerhtml", "password", "token")):
        return DebugKind.SECURITY_VULNERABILITY
    production = context.dependencies.production if context.dependencies else {}
    if any(k in code for k in ("api", "fetch", "http", "request")) or len(production) > 10:
        return DebugKind.INTEGRATION_ISSUE
    return DebugKind.LOGIC_ERROR


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------

def _code_block(context: ContextData) -> str:
    return f"```{context.language or ''}\n{context.surrounding_code or ''}\n```"


def _location(context: ContextData) -> str:
    return (
        f"File: {context.current_file}\n"
        f"Function: {context.current_function or 'N/A'}\n"
        f"Class: {context.current_class or 'N/A'}"
    )


_ANSWER_FORMAT = (
    "Format every finding as a line starting with 'Issue:' (include the word "
    "critical, error, warning or minor to indicate severity), followed by one "
    "line of explanation. Put each concrete fix on a line starting with 'Fix:'. "
    "Put corrected code in a single fenced code block."
)


def _runtime_prompt(context: ContextData) -> str:
    errors = "\n".join(f"- {m}" for m in context.error_messages or []) or "- (none captured)"
    return (
        f"Analyze this runtime error.\n\n{_location(context)}\n\nError messages:\n{errors}\n\n"
        f"Code:\n{_code_block(context)}\n\n"
        "Identify the root cause, the exact failing line, and a safe fix. "
        "Explain how to prevent the same failure elsewhere.\n\n" + _ANSWER_FORMAT
    )


def _type_prompt(context: ContextData) -> str:
    errors = "\n".join(f"- {m}" for m in context.error_messages or [])
    return (
        f"Analyze these type errors.\n\n{_location(context)}\n\n{errors}\n\n"
        f"Code:\n{_code_block(context)}\n\n"
        "Explain the type mismatch, propose correct annotations or conversions, "
        "and point out unsafe casts.\n\n" + _ANSWER_FORMAT
    )


def _performance_prompt(context: ContextData) -> str:
    return (
        f"Find performance bottlenecks.\n\n{_location(context)}\n"
        f"Complexity estimate: {context.complexity}\n\nCode:\n{_code_block(context)}\n\n"
        "Look for redundant work, poor algorithmic complexity, blocking I/O and "
        "needless allocations. Estimate the impact of each fix.\n\n" + _ANSWER_FORMAT
    )


def _memory_prompt(context: ContextData) -> str:
    return (
        f"Look for memory leaks and resource-management problems.\n\n{_location(context)}\n\n"
        f"Code:\n{_code_block(context)}\n\n"
        "Check listeners that are never removed, unbounded caches, unclosed "
        "handles and reference cycles.\n\n" + _ANSWER_FORMAT
    )


def _async_prompt(context: ContextData) -> str:
    return (
        f"Review this asynchronous code for concurrency bugs.\n\n{_location(context)}\n\n"
        f"Code:\n{_code_block(context)}\n\n"
        "Check for race conditions, missing awaits, unhandled rejections, "
        "deadlocks and missing timeouts.\n\n" + _ANSWER_FORMAT
    )


def _security_prompt(context: ContextData) -> str:
    return (
        f"Audit this code for security vulnerabilities.\n\n{_location(context)}\n\n"
        f"Code:\n{_code_block(context)}\n\n"
        "Check for injection, unsafe evaluation, XSS, hard-coded secrets and "
        "weak input validation. Mark exploitable problems as critical.\n\n" + _ANSWER_FORMAT
    )


def _integration_prompt(context: ContextData) -> str:
    production = list((context.dependencies.production if context.dependencies else {}).keys())[:10]
    return (
        f"Diagnose integration problems with external services or libraries.\n\n"
        f"{_location(context)}\nKey dependencies: {', '.join(production) or 'unknown'}\n\n"
        f"Code:\n{_code_block(context)}\n\n"
        "Check request/response handling, retries, error propagation and "
        "version mismatches.\n\n" + _ANSWER_FORMAT
    )


def _logic_prompt(context: ContextData) -> str:
    problem = f"Reported problem: {context.problem_statement}\n\n" if context.problem_statement else ""
    return (
        f"Find logic errors in this code.\n\n{_location(context)}\n\n{problem}"
        f"Code:\n{_code_block(context)}\n\n"
        "Trace the control flow, check edge cases and off-by-one errors, and "
        "identify assumptions that may not hold.\n\n" + _ANSWER_FORMAT
    )


_PROMPTS: dict[DebugKind, Callable[[ContextData], str]] = {
    DebugKind.RUNTIME_ERROR: _runtime_prompt,
    DebugKind.TYPE_ERROR: _type_prompt,
    DebugKind.PERFORMANCE_ISSUE: _performance_prompt,
    DebugKind.MEMORY_LEAK: _memory_prompt,
    DebugKind.ASYNC_ISSUE: _async_prompt,
    DebugKind.SECURITY_VULNERABILITY: _security_prompt,
    DebugKind.INTEGRATION_ISSUE: _integration_prompt,
    DebugKind.LOGIC_ERROR: _logic_prompt,
}

_CATEGORIES: dict[DebugKind, AnalysisCategory] = {
    DebugKind.RUNTIME_ERROR: AnalysisCategory.BUG,
    DebugKind.TYPE_ERROR: AnalysisCategory.BUG,
    DebugKind.PERFORMANCE_ISSUE: AnalysisCategory.PERFORMANCE,
    DebugKind.MEMORY_LEAK: AnalysisCategory.PERFORMANCE,
    DebugKind.ASYNC_ISSUE: AnalysisCategory.BUG,
    DebugKind.SECURITY_VULNERABILITY: AnalysisCategory.SECURITY,
    DebugKind.INTEGRATION_ISSUE: AnalysisCategory.BUG,
    DebugKind.LOGIC_ERROR: AnalysisCategory.BUG,
}

_CONFIDENCE_BONUS: dict[DebugKind, float] = {
    DebugKind.RUNTIME_ERROR: 0.1,
    DebugKind.TYPE_ERROR: 0.1,
    DebugKind.LOGIC_ERROR: 0.05,
    DebugKind.PERFORMANCE_ISSUE: 0.05,
    DebugKind.SECURITY_VULNERABILITY: 0.15,
    DebugKind.MEMORY_LEAK: 0.0,
    DebugKind.ASYNC_ISSUE: 0.0,
    DebugKind.INTEGRATION_ISSUE: 0.0,
}

_NEXT_STEPS: dict[DebugKind, list[str]] = {
    DebugKind.RUNTIME_ERROR: [
        "Reproduce the error in a controlled environment",
        "Add logging to trace execution flow",
        "Implement error handling",
    ],
    DebugKind.LOGIC_ERROR: [
        "Write unit tests to verify expected behavior",
        "Step through the logic with a debugger",
        "Add assertions for assumptions",
    ],
    DebugKind.PERFORMANCE_ISSUE: [
        "Profile the application to measure impact",
        "Benchmark before and after optimizations",
    ],
    DebugKind.MEMORY_LEAK: [
        "Use memory profiling tools",
        "Monitor memory usage over time",
        "Implement proper resource cleanup",
    ],
    DebugKind.ASYNC_ISSUE: [
        "Add error handling for async operations",
        "Test with different timing scenarios",
        "Implement timeout mechanisms",
    ],
    DebugKind.SECURITY_VULNERABILITY: [
        "Prioritize security fixes immediately",
        "Conduct security testing",
        "Update dependencies to secure versions",
    ],
    DebugKind.TYPE_ERROR: ["Tighten type annotations around the failing call"],
    DebugKind.INTEGRATION_ISSUE: ["Add contract tests for the external service"],
}

_PERFORMANCE_ALTERNATIVES = [
    Alternative(
        title="Quick Performance Fix",
        description="Apply immediate optimizations with minimal code changes",
        pros=["Fast implementation", "Low risk", "Immediate improvement"],
        cons=["Limited impact", "May not address root cause"],
        complexity="low",
        time_estimate="low",
    ),
    Alternative(
        title="Comprehensive Optimization",
        description="Redesign the algorithm for optimal performance",
        pros=["Maximum performance gain", "Long-term solution", "Better maintainability"],
        cons=["Higher complexity", "More testing required", "Longer implementation"],
        complexity="high",
        time_estimate="high",
    ),
]

BUGHUNTER_MARKERS = MarkerSet(
    issue=("issue:", "bug:", "problem:"),
    suggestion=("fix:", "solution:", "suggestion:"),
).with_severity({
    Severity.CRITICAL: ("security",),
    Severity.ERROR: ("crash",),
    Severity.WARNING: ("performance",),
})


def debugging_confidence(findings: int, kind: DebugKind) -> float:
    confidence = 0.7
    if findings > 0:
        confidence += 0.1
    if findings > 2:
        confidence += 0.1
    return clamp_confidence(confidence + _CONFIDENCE_BONUS[kind])


class BugHunterAgent(AgentBase):
    """Finds bugs, explains root causes and proposes fixes.

    Capabilities:
    - Runtime, type and logic error analysis.
    - Performance, memory and concurrency diagnostics.
    - Security vulnerability detection.
    """

    agent_type = AgentType.BUGHUNTER
    name = "BugHunter"
    description = "Contextual debugging, root-cause analysis and vulnerability detection"
    specialization = (
        "As the BugHunter agent, you specialize in:\n"
        "- Identifying bugs and potential issues\n"
        "- Root cause analysis\n"
        "- Security vulnerability detection\n"
        "- Performance bottleneck identification"
    )
    required_context = ("current_file", "surrounding_code")

    parser = ResponseParser(BUGHUNTER_MARKERS)

    def get_capabilities(self) -> list[AgentCapability]:
        return [
            AgentCapability(
                type=CapabilityType.DEBUGGING,
                name="Runtime Error Analysis",
                description="Analyzes runtime errors and exceptions",
                requires_context=["surrounding_code", "error_messages"],
                output_types=["analysis_results", "code_changes", "suggestions"],
            ),
            AgentCapability(
                type=CapabilityType.DEBUGGING,
                name="Logic Error Detection",
                description="Identifies logical errors and incorrect behavior",
                requires_context=["current_file", "surrounding_code"],
                output_types=["analysis_results", "code_changes", "alternatives"],
            ),
            AgentCapability(
                type=CapabilityType.PERFORMANCE_OPTIMIZATION,
                name="Performance Issue Analysis",
                description="Identifies bottlenecks and optimization opportunities",
                requires_context=["surrounding_code", "complexity"],
                output_types=["analysis_results", "suggestions", "alternatives"],
            ),
            AgentCapability(
                type=CapabilityType.SECURITY_ANALYSIS,
                name="Security Vulnerability Detection",
                description="Identifies unsafe practices and vulnerabilities",
                requires_context=["surrounding_code"],
                output_types=["analysis_results", "suggestions"],
            ),
        ]

    async def _run(
        self,
        context: ContextData,
        cancellation: CancellationToken | None,
        sink: OutputSink | None,
    ) -> AgentResult:
        kind = classify_debug_task(context)
        prompt = _PROMPTS[kind](context)
        completion = await self._complete(prompt, context, cancellation, sink)

        parsed = self.parser.parse(completion.text)
        analysis = parsed.analysis_results(_CATEGORIES[kind], context.current_file)
        changes = [
            CodeChange(
                type=ChangeType.REPLACE,
                file_path=context.current_file or "",
                range=context.selection_range,
                new_text=block.code,
                description="Bug fix based on analysis",
                confidence=code_confidence(block.code),
            )
            for block in parsed.code_blocks
        ]
        alternatives = parsed.parsed_alternatives()
        if kind == DebugKind.PERFORMANCE_ISSUE:
            alternatives.extend(a.model_copy() for a in _PERFORMANCE_ALTERNATIVES)

        steps = ["Review identified issues in order of severity"] if analysis else []
        steps += _NEXT_STEPS[kind]
        steps += ["Test fixes thoroughly", "Update documentation if needed"]

        if parsed.is_structured:
            message = (
                f"Debugging analysis complete. Found {len(analysis)} issues "
                f"and {len(parsed.suggestions)} potential fixes."
            )
        else:
            message = completion.text

        return self._make_result(
            message=message,
            analysis_results=analysis,
            code_changes=changes,
            suggestions=parsed.suggestions,
            alternatives=alternatives,
            confidence=debugging_confidence(len(analysis), kind),
            reasoning=f"Performed {kind.value} analysis using contextual debugging techniques",
            next_steps=steps,
        )
