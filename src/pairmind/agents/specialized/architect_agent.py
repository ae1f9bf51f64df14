"""ArchitectAgent — project-level structure and design analysis.

Looks at the project layer of the snapshot (files, patterns,
dependencies) rather than the line under the cursor, and answers with
issues, recommendations and architectural alternatives.  Structure and
review runs also produce an ``ARCHITECTURE.md`` document.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from ...core.models import ContextData
from ...llm.base import OutputSink
from ..base import (
    AgentBase,
    AgentCapability,
    AgentResult,
    AgentType,
    AnalysisCategory,
    CancellationToken,
    CapabilityType,
    DocumentationOutput,
    Severity,
)
from ..parsing import MarkerSet, ResponseParser, findings_confidence

_SCALE_RE = re.compile(r"\b(?:scal\w*|load|throughput|traffic)\b", re.IGNORECASE)


class ArchitectureKind(str, Enum):
    PROJECT_STRUCTURE = "project_structure"
    DESIGN_PATTERNS = "design_patterns"
    SCALABILITY = "scalability"
    TECHNOLOGY_STACK = "technology_stack"
    ARCHITECTURE_REVIEW = "architecture_review"
    GENERAL = "general"


def classify_architecture_task(context: ContextData) -> ArchitectureKind:
    """First matching rule wins; an explicit command naming a kind wins first."""
    if context.command:
        try:
            return ArchitectureKind(context.command)
        except ValueError:
            pass

    files = context.file_count or 0
    if files < 5:
        return ArchitectureKind.PROJECT_STRUCTURE
    if context.current_class or context.current_function:
        return ArchitectureKind.DESIGN_PATTERNS
    if (
        (context.complexity or 0) > 15
        or files > 50
        or _SCALE_RE.search(context.problem_statement or "")
    ):
        return ArchitectureKind.SCALABILITY
    if context.dependencies and len(context.dependencies.production) > 10:
        return ArchitectureKind.TECHNOLOGY_STACK
    if context.architectural_patterns:
        return ArchitectureKind.ARCHITECTURE_REVIEW
    return ArchitectureKind.GENERAL


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------

def _overview(context: ContextData) -> str:
    structure = context.project_structure
    lines = [
        f"Project: {context.project_name or context.project_root}",
        f"Files: {context.file_count or 0}",
        f"Patterns: {', '.join(context.architectural_patterns or []) or 'none detected'}",
    ]
    if structure is not None:
        lines.append(f"Directories: {', '.join(structure.directories[:20]) or 'none'}")
        if structure.entry_points:
            lines.append(f"Entry points: {', '.join(structure.entry_points)}")
        lines.append(f"Test files: {len(structure.test_files)}")
    if context.dependencies and context.dependencies.production:
        lines.append("Dependencies: " + ", ".join(list(context.dependencies.production)[:15]))
    return "\n".join(lines)


_ANSWER_FORMAT = (
    "Start each problem on its own line with 'Issue:' followed by a short "
    "title, then one line describing it. Start each concrete improvement "
    "with 'Recommendation:'. For competing designs use 'Alternative:' lines "
    "followed by 'Pro:' and 'Con:' lines."
)


def _structure_prompt(context: ContextData) -> str:
    return (
        f"Review the structure of this project.\n\n{_overview(context)}\n\n"
        "Assess the folder layout, separation of concerns and where new code "
        "should live. Suggest a layout if the project is just starting.\n\n"
        + _ANSWER_FORMAT
    )


def _patterns_prompt(context: ContextData) -> str:
    subject = context.current_class or context.current_function
    return (
        f"Analyze the design of `{subject}` in {context.current_file}.\n\n"
        f"{_overview(context)}\n\nCode:\n```{context.language or ''}\n"
        f"{context.surrounding_code or ''}\n```\n\n"
        "Identify the design patterns in use, patterns that would fit better "
        "and any coupling problems.\n\n" + _ANSWER_FORMAT
    )


def _scalability_prompt(context: ContextData) -> str:
    focus = f"\nConcern: {context.problem_statement}" if context.problem_statement else ""
    return (
        f"Assess how this project will scale.{focus}\n\n{_overview(context)}\n"
        f"Current file complexity: {context.complexity if context.complexity is not None else 'unknown'}\n\n"
        "Point out bottlenecks, state that will not survive horizontal "
        "scaling and modules that are growing too large.\n\n" + _ANSWER_FORMAT
    )


def _stack_prompt(context: ContextData) -> str:
    return (
        f"Review the technology stack of this project.\n\n{_overview(context)}\n\n"
        "Flag overlapping or outdated libraries and dependencies that could be "
        "dropped.\n\n" + _ANSWER_FORMAT
    )


def _review_prompt(context: ContextData) -> str:
    return (
        f"Give an architecture review of this project.\n\n{_overview(context)}\n\n"
        "Check that the detected patterns are applied consistently and that "
        "module boundaries match them.\n\n" + _ANSWER_FORMAT
    )


def _general_prompt(context: ContextData) -> str:
    return (
        f"Give architectural advice for this project.\n\n{_overview(context)}\n"
        f"Current file: {context.current_file or 'N/A'}\n\n" + _ANSWER_FORMAT
    )


_PROMPTS: dict[ArchitectureKind, Callable[[ContextData], str]] = {
    ArchitectureKind.PROJECT_STRUCTURE: _structure_prompt,
    ArchitectureKind.DESIGN_PATTERNS: _patterns_prompt,
    ArchitectureKind.SCALABILITY: _scalability_prompt,
    ArchitectureKind.TECHNOLOGY_STACK: _stack_prompt,
    ArchitectureKind.ARCHITECTURE_REVIEW: _review_prompt,
    ArchitectureKind.GENERAL: _general_prompt,
}

_NEXT_STEPS: dict[ArchitectureKind, list[str]] = {
    ArchitectureKind.PROJECT_STRUCTURE: [
        "Review and reorganize folder structure",
        "Implement suggested architectural patterns",
    ],
    ArchitectureKind.DESIGN_PATTERNS: [
        "Refactor code to implement suggested patterns",
        "Add unit tests for refactored components",
    ],
    ArchitectureKind.SCALABILITY: [
        "Implement performance monitoring",
        "Plan for horizontal scaling",
    ],
    ArchitectureKind.TECHNOLOGY_STACK: ["Audit dependencies for overlap and staleness"],
    ArchitectureKind.ARCHITECTURE_REVIEW: ["Share the architecture document with the team"],
    ArchitectureKind.GENERAL: [],
}

_DOCUMENTED_KINDS = (ArchitectureKind.ARCHITECTURE_REVIEW, ArchitectureKind.PROJECT_STRUCTURE)

ARCHITECT_MARKERS = MarkerSet(
    issue=("issue:", "problem:"),
    suggestion=("recommendation:", "suggestion:"),
)


def architecture_document(text: str, context: ContextData) -> str:
    patterns = ", ".join(context.architectural_patterns or []) or "N/A"
    return (
        "# Architecture Analysis\n\n"
        "## Project Overview\n\n"
        f"- **Root:** {context.project_root}\n"
        f"- **Files:** {context.file_count or 0}\n"
        f"- **Patterns:** {patterns}\n\n"
        "## Analysis Results\n\n"
        f"{text.strip()}\n\n"
        f"*Last updated: {datetime.now(timezone.utc).isoformat()}*\n"
    )


class ArchitectAgent(AgentBase):
    """Reviews project structure and design.

    Capabilities:
    - Project structure analysis.
    - Design pattern recommendations.
    - Scalability and technology stack review.
    """

    agent_type = AgentType.ARCHITECT
    name = "Architect"
    description = "Project structure, design patterns and scalability analysis"
    specialization = (
        "As the Architect agent, you specialize in:\n"
        "- Project structure and module boundaries\n"
        "- Design patterns and their trade-offs\n"
        "- Scalability and maintainability of the whole system\n"
        "- Choosing and pruning the technology stack"
    )
    required_context = ("project_root", "project_structure")

    parser = ResponseParser(ARCHITECT_MARKERS)

    def get_capabilities(self) -> list[AgentCapability]:
        return [
            AgentCapability(
                type=CapabilityType.ARCHITECTURE,
                name="Project Structure Analysis",
                description="Assesses folder layout and separation of concerns",
                requires_context=["project_root", "project_structure"],
                output_types=["analysis_results", "documentation"],
            ),
            AgentCapability(
                type=CapabilityType.ARCHITECTURE,
                name="Design Pattern Recommendations",
                description="Identifies patterns in use and better fits",
                requires_context=["project_root", "surrounding_code"],
                output_types=["analysis_results", "alternatives"],
            ),
            AgentCapability(
                type=CapabilityType.PERFORMANCE_OPTIMIZATION,
                name="Scalability Review",
                description="Finds bottlenecks that limit growth",
                requires_context=["project_root", "project_structure"],
                output_types=["analysis_results", "suggestions"],
            ),
        ]

    async def _run(
        self,
        context: ContextData,
        cancellation: CancellationToken | None,
        sink: OutputSink | None,
    ) -> AgentResult:
        kind = classify_architecture_task(context)
        completion = await self._complete(
            _PROMPTS[kind](context), context, cancellation, sink, temperature=0.2,
        )
        parsed = self.parser.parse(completion.text)

        findings = parsed.analysis_results(AnalysisCategory.ARCHITECTURE, context.current_file)
        documentation = []
        if kind in _DOCUMENTED_KINDS:
            documentation.append(DocumentationOutput(
                type="readme",
                path="ARCHITECTURE.md",
                content=architecture_document(completion.text, context),
                format="markdown",
                metadata={"title": "Architecture Analysis", "kind": kind.value},
            ))

        steps = list(_NEXT_STEPS[kind])
        if any(f.severity == Severity.CRITICAL for f in findings):
            steps.insert(0, "Address critical architectural issues first")

        if parsed.is_structured:
            message = (
                f"Architecture analysis ({kind.value}) complete: "
                f"{len(findings)} issues, {len(parsed.suggestions)} recommendations."
            )
        else:
            message = completion.text

        return self._make_result(
            message=message,
            analysis_results=findings,
            suggestions=parsed.suggestions,
            alternatives=parsed.parsed_alternatives(),
            documentation=documentation,
            confidence=findings_confidence(len(findings) + len(parsed.suggestions)),
            reasoning=f"Performed {kind.value} analysis of {context.file_count or 0} project files",
            next_steps=steps,
        )
