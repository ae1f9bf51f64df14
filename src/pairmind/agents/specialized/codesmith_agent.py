"""CodeSmithAgent — context-aware code generation.

Picks a generation task (tests, implementation, completion, refactoring
...) from the snapshot, asks the model for code in the project's
language and conventions, and returns each fenced block as one
``CodeChange`` scored by ``code_confidence``.
"""

from __future__ import annotations

from enum import Enum
from pathlib import PurePosixPath
from typing import Callable

from ...core.context import is_test_file
from ...core.models import ContextData
from ...llm.base import OutputSink
from ..base import (
    AgentBase,
    AgentCapability,
    AgentResult,
    AgentType,
    Alternative,
    CancellationToken,
    CapabilityType,
    ChangeType,
    CodeChange,
)
from ..parsing import MarkerSet, ResponseParser, clamp_confidence, code_confidence


class GenerationKind(str, Enum):
    TEST_GENERATION = "test_generation"
    FUNCTION_IMPLEMENTATION = "function_implementation"
    CLASS_IMPLEMENTATION = "class_implementation"
    OPTIMIZATION = "optimization"
    REFACTORING = "refactoring"
    CODE_COMPLETION = "code_completion"
    BOILERPLATE = "boilerplate"
    GENERAL = "general"


def classify_generation_task(context: ContextData) -> GenerationKind:
    """First matching rule wins."""
    current = (context.current_file or "").replace("\\", "/")
    if current and is_test_file(current):
        return GenerationKind.TEST_GENERATION
    if context.command == "generate_tests":
        return GenerationKind.TEST_GENERATION
    if context.refactor_intent:
        return GenerationKind.REFACTORING

    selected = (context.selected_text or "").strip()
    if selected:
        if "TODO" in selected or "FIXME" in selected:
            return GenerationKind.FUNCTION_IMPLEMENTATION
        return GenerationKind.OPTIMIZATION

    if context.current_function:
        return GenerationKind.FUNCTION_IMPLEMENTATION
    if context.current_class and "class" in (context.surrounding_code or ""):
        return GenerationKind.CLASS_IMPLEMENTATION
    if (context.complexity or 0) > 10:
        return GenerationKind.REFACTORING
    if context.cursor_position is not None and context.surrounding_code:
        return GenerationKind.CODE_COMPLETION
    if context.file_count is not None and 0 < context.file_count < 5:
        return GenerationKind.BOILERPLATE
    return GenerationKind.GENERAL


def detect_testing_framework(context: ContextData) -> str:
    deps: dict[str, str] = {}
    if context.dependencies:
        deps = {**context.dependencies.production, **context.dependencies.development}
    for package, framework in (
        ("jest", "Jest"), ("mocha", "Mocha"), ("vitest", "Vitest"),
        ("pytest", "pytest"), ("junit", "JUnit"),
    ):
        if package in deps:
            return framework
    return {
        "python": "pytest",
        "typescript": "Jest",
        "javascript": "Jest",
        "java": "JUnit",
        "go": "the standard testing package",
    }.get(context.language or "", "the project's test framework")


def derive_test_path(file_path: str, language: str | None) -> str:
    """Where a new test file for *file_path* should go."""
    path = PurePosixPath(file_path.replace("\\", "/"))
    if language == "python" or path.suffix == ".py":
        return str(path.with_name(f"test_{path.name}"))
    if path.suffix:
        return str(path.with_name(f"{path.stem}.test{path.suffix}"))
    return str(path.with_name(f"{path.name}_test"))


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------

def _header(context: ContextData) -> str:
    deps = ""
    if context.dependencies and context.dependencies.production:
        deps = "Dependencies: " + ", ".join(list(context.dependencies.production)[:5]) + "\n"
    return (
        f"Language: {context.language}\nFile: {context.current_file}\n"
        f"Function: {context.current_function or 'N/A'}\n"
        f"Class: {context.current_class or 'N/A'}\n{deps}"
    )


def _code(context: ContextData, text: str | None = None) -> str:
    return f"```{context.language or ''}\n{text if text is not None else context.surrounding_code or ''}\n```"


_ANSWER_FORMAT = (
    "Return the code in one fenced code block. After the code, add lines "
    "starting with 'Suggestion:' for follow-up improvements and 'Note:' for "
    "anything the developer must know before applying it."
)


def _tests_prompt(context: ContextData) -> str:
    return (
        f"Write unit tests using {detect_testing_framework(context)}.\n\n{_header(context)}\n"
        f"Code under test:\n{_code(context)}\n\n"
        "Cover the happy path, edge cases and error handling. Keep tests "
        "independent and name them after the behavior they check.\n\n" + _ANSWER_FORMAT
    )


def _function_prompt(context: ContextData) -> str:
    target = context.selected_text or context.surrounding_code or ""
    return (
        f"Implement the function `{context.current_function or 'at the cursor'}`.\n\n"
        f"{_header(context)}\nCurrent code:\n{_code(context, target)}\n\n"
        "Resolve any TODO/FIXME markers, validate inputs, handle errors and "
        "document the function in the language's usual style.\n\n" + _ANSWER_FORMAT
    )


def _class_prompt(context: ContextData) -> str:
    return (
        f"Complete the implementation of class `{context.current_class}`.\n\n"
        f"{_header(context)}\nCurrent code:\n{_code(context)}\n\n"
        "Fill in missing methods, keep the public interface stable and follow "
        "the conventions already used in the file.\n\n" + _ANSWER_FORMAT
    )


def _optimization_prompt(context: ContextData) -> str:
    return (
        f"Optimize the selected code.\n\n{_header(context)}\n"
        f"Selected code:\n{_code(context, context.selected_text)}\n\n"
        "Improve performance and readability without changing behavior. "
        "Explain each change briefly.\n\n" + _ANSWER_FORMAT
    )


def _refactoring_prompt(context: ContextData) -> str:
    intent = context.refactor_intent or f"reduce complexity (currently {context.complexity})"
    return (
        f"Refactor this code to {intent}.\n\n{_header(context)}\n"
        f"Code:\n{_code(context, context.selected_text or None)}\n\n"
        "Extract helpers where it clarifies intent, remove duplication and "
        "keep behavior identical.\n\n" + _ANSWER_FORMAT
    )


def _completion_prompt(context: ContextData) -> str:
    line = context.cursor_position.line + 1 if context.cursor_position else "?"
    return (
        f"Continue the code at line {line}.\n\n{_header(context)}\n"
        f"Code around the cursor:\n{_code(context)}\n\n"
        "Write only what belongs at the cursor, matching the surrounding "
        "style.\n\n" + _ANSWER_FORMAT
    )


def _boilerplate_prompt(context: ContextData) -> str:
    return (
        f"Create starter code for a new {context.language or ''} project named "
        f"{context.project_name or 'the project'}.\n\n{_header(context)}\n"
        "Include an entry point, basic configuration and one example test.\n\n" + _ANSWER_FORMAT
    )


def _general_prompt(context: ContextData) -> str:
    return (
        f"Suggest code that improves this file.\n\n{_header(context)}\n"
        f"Code:\n{_code(context)}\n\n" + _ANSWER_FORMAT
    )


_PROMPTS: dict[GenerationKind, Callable[[ContextData], str]] = {
    GenerationKind.TEST_GENERATION: _tests_prompt,
    GenerationKind.FUNCTION_IMPLEMENTATION: _function_prompt,
    GenerationKind.CLASS_IMPLEMENTATION: _class_prompt,
    GenerationKind.OPTIMIZATION: _optimization_prompt,
    GenerationKind.REFACTORING: _refactoring_prompt,
    GenerationKind.CODE_COMPLETION: _completion_prompt,
    GenerationKind.BOILERPLATE: _boilerplate_prompt,
    GenerationKind.GENERAL: _general_prompt,
}

_CHANGE_TYPES: dict[GenerationKind, ChangeType] = {
    GenerationKind.FUNCTION_IMPLEMENTATION: ChangeType.INSERT,
    GenerationKind.CLASS_IMPLEMENTATION: ChangeType.INSERT,
    GenerationKind.BOILERPLATE: ChangeType.INSERT,
    GenerationKind.CODE_COMPLETION: ChangeType.INSERT,
    GenerationKind.OPTIMIZATION: ChangeType.REPLACE,
    GenerationKind.REFACTORING: ChangeType.REPLACE,
    GenerationKind.TEST_GENERATION: ChangeType.CREATE_FILE,
    GenerationKind.GENERAL: ChangeType.REPLACE,
}

_NEXT_STEPS: dict[GenerationKind, list[str]] = {
    GenerationKind.FUNCTION_IMPLEMENTATION: ["Add unit tests for new code", "Update documentation"],
    GenerationKind.CLASS_IMPLEMENTATION: ["Add unit tests for new code", "Update documentation"],
    GenerationKind.TEST_GENERATION: ["Run tests to verify they pass", "Check test coverage"],
    GenerationKind.OPTIMIZATION: ["Benchmark performance improvements", "Verify functionality is preserved"],
    GenerationKind.REFACTORING: ["Run existing tests", "Update related documentation"],
    GenerationKind.BOILERPLATE: ["Install dependencies", "Configure development environment"],
    GenerationKind.CODE_COMPLETION: [],
    GenerationKind.GENERAL: [],
}

# Upper bound on overall confidence per task, plus an additive bonus.
_CONFIDENCE_CAPS: dict[GenerationKind, tuple[float, float]] = {
    GenerationKind.CODE_COMPLETION: (0.9, 0.1),
    GenerationKind.TEST_GENERATION: (0.85, 0.0),
    GenerationKind.OPTIMIZATION: (0.8, 0.0),
    GenerationKind.REFACTORING: (0.8, 0.0),
}

_CAREFUL_ALTERNATIVES = [
    Alternative(
        title="Conservative Approach",
        description="Minimal changes with maximum compatibility",
        pros=["Lower risk", "Easier to review", "Maintains existing patterns"],
        cons=["Limited improvement", "May not address all issues"],
        complexity="low",
        time_estimate="low",
    ),
    Alternative(
        title="Comprehensive Rewrite",
        description="Restructure the code around a cleaner design",
        pros=["Largest improvement", "Removes accumulated complexity"],
        cons=["Higher risk", "Needs thorough testing"],
        complexity="high",
        time_estimate="high",
    ),
]

CODESMITH_MARKERS = MarkerSet(suggestion=("suggestion:", "tip:"))


def overall_confidence(changes: list[CodeChange], kind: GenerationKind) -> float:
    if not changes:
        return 0.3
    average = sum(c.confidence for c in changes) / len(changes)
    cap, bonus = _CONFIDENCE_CAPS.get(kind, (0.95, 0.0))
    return clamp_confidence(min(cap, average + bonus))


class CodeSmithAgent(AgentBase):
    """Writes code that fits the project.

    Capabilities:
    - Function and class implementation.
    - Unit test generation.
    - Code completion and boilerplate.
    - Optimization and refactoring with alternatives.
    """

    agent_type = AgentType.CODESMITH
    name = "CodeSmith"
    description = "Context-aware code generation following project conventions"
    specialization = (
        "As the CodeSmith agent, you specialize in:\n"
        "- Writing clean, efficient and tested code\n"
        "- Following language-specific best practices\n"
        "- Applying design patterns where they help\n"
        "- Optimizing for performance and readability"
    )
    required_context = ("current_file", "language")

    parser = ResponseParser(CODESMITH_MARKERS)

    def get_capabilities(self) -> list[AgentCapability]:
        return [
            AgentCapability(
                type=CapabilityType.CODE_GENERATION,
                name="Function Implementation",
                description="Implements functions from signatures, comments or TODOs",
                requires_context=["current_function", "surrounding_code"],
                output_types=["code_changes"],
            ),
            AgentCapability(
                type=CapabilityType.CODE_GENERATION,
                name="Class Implementation",
                description="Completes class bodies following existing conventions",
                requires_context=["current_class", "surrounding_code"],
                output_types=["code_changes"],
            ),
            AgentCapability(
                type=CapabilityType.TEST_GENERATION,
                name="Unit Test Generation",
                description="Generates tests with the project's test framework",
                requires_context=["current_file", "surrounding_code"],
                output_types=["code_changes"],
            ),
            AgentCapability(
                type=CapabilityType.OPTIMIZATION,
                name="Code Optimization",
                description="Optimizes the selected code",
                requires_context=["selected_text"],
                output_types=["code_changes", "alternatives"],
            ),
            AgentCapability(
                type=CapabilityType.REFACTORING,
                name="Refactoring",
                description="Restructures complex code without changing behavior",
                requires_context=["current_file", "surrounding_code"],
                output_types=["code_changes", "alternatives"],
            ),
        ]

    async def _run(
        self,
        context: ContextData,
        cancellation: CancellationToken | None,
        sink: OutputSink | None,
    ) -> AgentResult:
        kind = classify_generation_task(context)
        completion = await self._complete(_PROMPTS[kind](context), context, cancellation, sink)
        parsed = self.parser.parse(completion.text)

        change_type = _CHANGE_TYPES[kind]
        current = context.current_file or ""
        if change_type == ChangeType.CREATE_FILE and is_test_file(current.replace("\\", "/")):
            # Already in a test file: add the tests where the cursor is.
            change_type = ChangeType.INSERT
        target = derive_test_path(current, context.language) if change_type == ChangeType.CREATE_FILE else current

        changes = [
            CodeChange(
                type=change_type,
                file_path=target,
                position=context.cursor_position if change_type == ChangeType.INSERT else None,
                range=context.selection_range if change_type == ChangeType.REPLACE else None,
                new_text=block.code.strip(),
                description=f"Generated {kind.value} code",
                confidence=code_confidence(block.code.strip()),
            )
            for block in parsed.code_blocks
            if block.code.strip()
        ]

        alternatives = parsed.parsed_alternatives()
        if kind in (GenerationKind.OPTIMIZATION, GenerationKind.REFACTORING):
            alternatives.extend(a.model_copy() for a in _CAREFUL_ALTERNATIVES)

        steps = ["Review generated code for accuracy"] if changes else []
        steps += _NEXT_STEPS[kind]

        if parsed.is_structured:
            message = f"Code generation complete. Generated {len(changes)} code changes for {kind.value}."
        else:
            message = completion.text

        return self._make_result(
            message=message,
            code_changes=changes,
            analysis_results=parsed.note_results("Code Generation Note"),
            suggestions=parsed.suggestions,
            alternatives=alternatives,
            confidence=overall_confidence(changes, kind),
            reasoning=f"Generated {kind.value} code based on context analysis and project conventions",
            next_steps=steps,
        )
