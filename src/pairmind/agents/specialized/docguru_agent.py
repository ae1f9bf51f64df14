"""DocGuruAgent — documentation and code explanation."""

from __future__ import annotations

from enum import Enum
from pathlib import PurePosixPath
from typing import Callable

from ...core.models import ContextData
from ...llm.base import OutputSink
from ..base import (
    AgentBase,
    AgentCapability,
    AgentResult,
    AgentType,
    CancellationToken,
    CapabilityType,
    DocumentationOutput,
)
from ..parsing import MarkerSet, ResponseParser

_EXPLAIN_WORDS = ("explain", "what does", "how does", "why does")


class DocKind(str, Enum):
    GENERATE_DOCS = "generate_docs"
    EXPLAIN_CODE = "explain_code"


def classify_doc_task(context: ContextData) -> DocKind:
    if context.command in ("explain", DocKind.EXPLAIN_CODE.value):
        return DocKind.EXPLAIN_CODE
    if context.command in ("document", DocKind.GENERATE_DOCS.value):
        return DocKind.GENERATE_DOCS
    question = (context.problem_statement or "").lower()
    if any(word in question for word in _EXPLAIN_WORDS):
        return DocKind.EXPLAIN_CODE
    return DocKind.GENERATE_DOCS


def documentation_path(context: ContextData) -> str:
    """``<stem>.md`` next to the documented file."""
    source = context.file_path or context.current_file
    if not source:
        return "DOCUMENTATION.md"
    path = PurePosixPath(source.replace("\\", "/"))
    return str(path.with_suffix(".md")) if path.suffix != ".md" else str(path.with_name(f"{path.stem}.doc.md"))


def _code_sections(context: ContextData) -> str:
    lang = context.language or ""
    parts = []
    source = context.file_path or context.current_file
    if source:
        parts.append(f"File: {source}")
    if context.surrounding_code:
        parts.append(f"```{lang}\n{context.surrounding_code}\n```")
    if context.selected_text:
        parts.append(f"Selected code:\n```{lang}\n{context.selected_text}\n```")
    return "\n".join(parts)


def _docs_prompt(context: ContextData) -> str:
    request = f"\nConsider this request: {context.problem_statement}\n" if context.problem_statement else ""
    return (
        f"Generate documentation for the following {context.language or 'code'}:\n\n"
        f"{_code_sections(context)}\n{request}\n"
        "The documentation should include:\n"
        "- A brief overview of the code's purpose.\n"
        "- Each function or class with its parameters and return values.\n"
        "- Usage examples where they help.\n"
        "- Important considerations or dependencies.\n\n"
        "Write it in Markdown."
    )


def _explain_prompt(context: ContextData) -> str:
    question = f"\nQuestion: {context.problem_statement}\n" if context.problem_statement else ""
    return (
        f"Explain the following {context.language or 'code'}, focusing on what "
        f"it does, why, and the tricky parts:\n\n{_code_sections(context)}\n{question}\n"
        "Keep it clear and concise for a developer new to this code. End with "
        "'Note:' lines for anything surprising."
    )


_PROMPTS: dict[DocKind, Callable[[ContextData], str]] = {
    DocKind.GENERATE_DOCS: _docs_prompt,
    DocKind.EXPLAIN_CODE: _explain_prompt,
}

DOCGURU_MARKERS = MarkerSet()


class DocGuruAgent(AgentBase):
    """Writes and explains documentation.

    Capabilities:
    - Markdown documentation for a file or selection.
    - Plain-language explanation of code.
    """

    agent_type = AgentType.DOCGURU
    name = "DocGuru"
    description = "Documentation generation and code explanation"
    specialization = (
        "As the DocGuru agent, you specialize in:\n"
        "- Clear, accurate technical writing\n"
        "- Documenting APIs with parameters, return values and examples\n"
        "- Explaining unfamiliar code to other developers"
    )
    required_any = ("surrounding_code", "selected_text")

    parser = ResponseParser(DOCGURU_MARKERS)

    def get_capabilities(self) -> list[AgentCapability]:
        return [
            AgentCapability(
                type=CapabilityType.DOCUMENTATION,
                name="Documentation Generation",
                description="Generates Markdown documentation for code",
                requires_context=["surrounding_code"],
                output_types=["documentation"],
            ),
            AgentCapability(
                type=CapabilityType.DOCUMENTATION,
                name="Code Explanation",
                description="Explains a selected snippet",
                requires_context=["selected_text"],
                output_types=["message"],
            ),
        ]

    async def _run(
        self,
        context: ContextData,
        cancellation: CancellationToken | None,
        sink: OutputSink | None,
    ) -> AgentResult:
        kind = classify_doc_task(context)
        completion = await self._complete(_PROMPTS[kind](context), context, cancellation, sink)
        text = completion.text.strip()

        if kind == DocKind.EXPLAIN_CODE:
            parsed = self.parser.parse(text)
            return self._make_result(
                message=text,
                analysis_results=parsed.note_results("Explanation Note"),
                confidence=0.8 if text else 0.3,
                reasoning="Explained the code in its surrounding context",
            )

        documentation = []
        if text:
            documentation.append(DocumentationOutput(
                type="module",
                path=documentation_path(context),
                content=text,
                format="markdown",
                metadata={"source": context.file_path or context.current_file},
            ))
        return self._make_result(
            message=f"Generated documentation for {context.file_name or 'the selection'}.",
            documentation=documentation,
            confidence=0.8 if text else 0.3,
            reasoning="Generated Markdown documentation from the code and its context",
            next_steps=["Review the generated documentation", "Keep it in sync with code changes"],
            warnings=[] if text else ["The model returned no documentation"],
        )
