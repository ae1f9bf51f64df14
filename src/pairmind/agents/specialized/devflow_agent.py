"""DevFlowAgent — CI workflows and development scripts.

Capabilities:
- Generate a CI workflow (GitHub Actions by default) for the project.
- Generate a helper script for a described development task.

Generated YAML is parsed with ``yaml.safe_load`` before it is returned;
a workflow that does not parse is still returned, with a warning.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Callable

import yaml

from ...core.models import ContextData
from ...llm.base import OutputSink
from ..base import (
    AgentBase,
    AgentCapability,
    AgentResult,
    AgentType,
    CancellationToken,
    CapabilityType,
    WorkflowFile,
)
from ..parsing import MarkerSet, ResponseParser, clamp_confidence

DEFAULT_WORKFLOW_PATH = ".github/workflows/ci.yml"

_WORKFLOW_RE = re.compile(
    r"\b(?:ci|cd|pipeline|workflow|github actions?|gitlab|deploy\w*|release)\b",
    re.IGNORECASE,
)
_ENV_RE = re.compile(r"\$\{\{\s*secrets\.([A-Za-z0-9_]+)\s*\}\}|\$([A-Z][A-Z0-9_]{2,})")

_SCRIPT_EXTENSIONS: dict[str, str] = {
    "bash": ".sh",
    "sh": ".sh",
    "shell": ".sh",
    "python": ".py",
    "py": ".py",
    "powershell": ".ps1",
    "ps1": ".ps1",
    "javascript": ".js",
    "js": ".js",
    "makefile": "",
    "make": "",
}


class WorkflowKind(str, Enum):
    WORKFLOW_AUTOMATION = "workflow_automation"
    SCRIPT_GENERATION = "script_generation"


def classify_workflow_task(context: ContextData) -> WorkflowKind:
    """Explicit command first, then the wording of the request."""
    if context.command in ("automate", WorkflowKind.WORKFLOW_AUTOMATION.value):
        return WorkflowKind.WORKFLOW_AUTOMATION
    if context.command in ("script", WorkflowKind.SCRIPT_GENERATION.value):
        return WorkflowKind.SCRIPT_GENERATION
    if context.problem_statement:
        if _WORKFLOW_RE.search(context.problem_statement):
            return WorkflowKind.WORKFLOW_AUTOMATION
        return WorkflowKind.SCRIPT_GENERATION
    structure = context.project_structure
    if structure is not None and not any(p.startswith(".github/") for p in structure.config_files):
        return WorkflowKind.WORKFLOW_AUTOMATION
    if context.is_config_file:
        return WorkflowKind.WORKFLOW_AUTOMATION
    return WorkflowKind.SCRIPT_GENERATION


def validate_yaml(text: str) -> str | None:
    """Return a parse error message, or None when *text* is a YAML mapping."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        return str(exc).splitlines()[0]
    if not isinstance(data, dict):
        return "top level is not a mapping"
    return None


def referenced_environment(text: str) -> list[str]:
    """Secret and environment variable names a generated file expects."""
    names: list[str] = []
    for secret, env in _ENV_RE.findall(text):
        name = secret or env
        if name not in names:
            names.append(name)
    return names


def script_path(language: str, index: int = 0) -> str:
    ext = _SCRIPT_EXTENSIONS.get(language.lower(), ".sh")
    if not ext and language.lower() in ("makefile", "make"):
        return "Makefile"
    suffix = f"_{index + 1}" if index else ""
    return f"scripts/task{suffix}{ext}"


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------

def _project_lines(context: ContextData) -> str:
    lines = []
    if context.project_name:
        lines.append(f"Project: {context.project_name}")
    if context.language:
        lines.append(f"Language: {context.language}")
    if context.dependencies:
        names = list(context.dependencies.production) + list(context.dependencies.development)
        if names:
            lines.append("Dependencies: " + ", ".join(names[:15]))
    if context.project_structure and context.project_structure.config_files:
        lines.append("Config files: " + ", ".join(context.project_structure.config_files[:15]))
    source = context.file_path or context.current_file
    if source:
        lines.append(f"Relevant file: {source}")
    if context.surrounding_code:
        lines.append(f"Relevant code:\n```{context.language or ''}\n{context.surrounding_code}\n```")
    return "\n".join(lines)


def _workflow_prompt(context: ContextData) -> str:
    requirements = context.problem_statement or "Install dependencies, lint and run the test suite on every push and pull request."
    return (
        "Generate a CI workflow (GitHub Actions unless the request names "
        "another system).\n\n"
        f"Requirements: {requirements}\n{_project_lines(context)}\n\n"
        "Return the workflow as one ```yaml fenced block. Reference secrets "
        "with ${{ secrets.NAME }}. After the block, add 'Note:' lines for "
        "setup the developer must do by hand."
    )


def _script_prompt(context: ContextData) -> str:
    task = context.problem_statement or "Automate the common development tasks for this project."
    return (
        "Generate a script (Bash, Python or PowerShell, whichever fits the "
        "project) for this task.\n\n"
        f"Task: {task}\n{_project_lines(context)}\n\n"
        "Return the script as one fenced block tagged with its language. "
        "Fail fast on errors and print what each step does. After the block, "
        "add 'Note:' lines for prerequisites."
    )


_PROMPTS: dict[WorkflowKind, Callable[[ContextData], str]] = {
    WorkflowKind.WORKFLOW_AUTOMATION: _workflow_prompt,
    WorkflowKind.SCRIPT_GENERATION: _script_prompt,
}

DEVFLOW_MARKERS = MarkerSet(note=("note:", "important:", "prerequisite:"))


class DevFlowAgent(AgentBase):
    """Automates development workflows."""

    agent_type = AgentType.DEVFLOW
    name = "DevFlow"
    description = "CI workflow and development script generation"
    specialization = (
        "As the DevFlow agent, you specialize in:\n"
        "- CI/CD pipelines that are fast and reproducible\n"
        "- Small, robust automation scripts\n"
        "- Keeping secrets out of generated files"
    )
    required_any = ("problem_statement", "surrounding_code", "current_file")

    parser = ResponseParser(DEVFLOW_MARKERS)

    def get_capabilities(self) -> list[AgentCapability]:
        return [
            AgentCapability(
                type=CapabilityType.WORKFLOW_SETUP,
                name="Workflow Automation",
                description="Generates CI workflow configuration",
                requires_context=["project_root"],
                output_types=["workflow_files"],
            ),
            AgentCapability(
                type=CapabilityType.WORKFLOW_SETUP,
                name="Script Generation",
                description="Generates scripts for development tasks",
                requires_context=["problem_statement"],
                output_types=["workflow_files"],
            ),
        ]

    async def _run(
        self,
        context: ContextData,
        cancellation: CancellationToken | None,
        sink: OutputSink | None,
    ) -> AgentResult:
        kind = classify_workflow_task(context)
        completion = await self._complete(
            _PROMPTS[kind](context), context, cancellation, sink, temperature=0.2,
        )
        parsed = self.parser.parse(completion.text)
        blocks = [b for b in parsed.code_blocks if b.code.strip()]

        files: list[WorkflowFile] = []
        warnings: list[str] = []
        for index, block in enumerate(blocks):
            content = block.code.strip() + "\n"
            if kind == WorkflowKind.WORKFLOW_AUTOMATION:
                error = validate_yaml(content)
                if error:
                    warnings.append(f"Generated workflow is not valid YAML: {error}")
                path = DEFAULT_WORKFLOW_PATH if index == 0 else f".github/workflows/ci_{index + 1}.yml"
                files.append(WorkflowFile(
                    type="github_action",
                    path=path,
                    content=content,
                    description="CI workflow",
                    environment=referenced_environment(content),
                ))
            else:
                files.append(WorkflowFile(
                    type="script",
                    path=script_path(block.language or "bash", index),
                    content=content,
                    description=f"{block.language or 'shell'} script",
                    environment=referenced_environment(content),
                ))

        if not files:
            warnings.append("No fenced file content found in the reply")

        confidence = 0.8 if files else 0.3
        if warnings and files:
            confidence -= 0.3
        noun = "workflow" if kind == WorkflowKind.WORKFLOW_AUTOMATION else "script"

        return self._make_result(
            message=(f"Generated {len(files)} {noun} file(s)." if files else completion.text),
            workflow_files=files,
            analysis_results=parsed.note_results("Setup Note"),
            suggestions=parsed.suggestions,
            confidence=clamp_confidence(confidence),
            reasoning=f"Generated {kind.value} output from the request and project layout",
            warnings=warnings,
            next_steps=[f"Review the generated {noun} before committing it"] if files else [],
        )
