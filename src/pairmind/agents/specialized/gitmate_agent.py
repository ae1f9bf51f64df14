"""GitMateAgent — commit messages and repository status.

The agent only ever *proposes* git commands: each ``GitOperation`` it
returns has ``requires_confirmation`` set and nothing is executed here.
The diff comes from the snapshot when the caller supplied one, else from
the staged changes of the project's working tree.
"""

from __future__ import annotations

import logging
import shlex
from enum import Enum
from typing import Callable, Optional

from ...config import Settings
from ...core.models import ContextData, GitContext
from ...core.vcs import GitClient, GitError
from ...llm.base import CompletionService, OutputSink
from ..base import (
    AgentBase,
    AgentCapability,
    AgentResult,
    AgentType,
    CancellationToken,
    CapabilityType,
    GitOperation,
)

logger = logging.getLogger(__name__)

MAX_DIFF_CHARS = 12000
MAX_SUBJECT_CHARS = 72


class GitTaskKind(str, Enum):
    COMMIT_MESSAGE = "commit_message"
    STATUS_SUMMARY = "status_summary"


def classify_git_task(context: ContextData, diff: str | None) -> GitTaskKind:
    if context.command == GitTaskKind.STATUS_SUMMARY.value:
        return GitTaskKind.STATUS_SUMMARY
    if diff and diff.strip():
        return GitTaskKind.COMMIT_MESSAGE
    return GitTaskKind.STATUS_SUMMARY


def clean_commit_message(text: str) -> str:
    """Strip fences, quotes and a leading label from a model reply."""
    lines = [l for l in text.strip().splitlines() if not l.strip().startswith("```")]
    message = "\n".join(lines).strip()
    if message.lower().startswith("commit message:"):
        message = message[len("commit message:"):].strip()
    if len(message) >= 2 and message[0] == message[-1] and message[0] in "\"'`":
        message = message[1:-1].strip()
    return message


def commit_operation(message: str) -> GitOperation:
    subject = message.splitlines()[0] if message else ""
    return GitOperation(
        type="commit",
        command=f"git commit -m {shlex.quote(message)}",
        description=f"Commit staged changes: {subject}",
        parameters={"message": message},
        requires_confirmation=True,
        risk_level="low",
    )


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------

def _commit_prompt(context: ContextData, diff: str, git: Optional[GitContext]) -> str:
    style = ""
    if "Conventional Commits" in (context.team_patterns or []):
        style = "Use the Conventional Commits format (type(scope): subject).\n"
    recent = ""
    if git and git.recent_commits:
        recent = "Recent commit messages for style:\n" + "\n".join(
            f"- {c.message}" for c in git.recent_commits[:5]
        ) + "\n"
    if len(diff) > MAX_DIFF_CHARS:
        diff = diff[:MAX_DIFF_CHARS] + "\n... (diff truncated)"
    return (
        "Write a concise, descriptive git commit message for these changes.\n"
        f"{style}{recent}"
        f"Keep the subject line under {MAX_SUBJECT_CHARS} characters; add a "
        "short body only if the change needs it. Reply with the message only.\n\n"
        f"```diff\n{diff}\n```"
    )


def _status_prompt(context: ContextData, diff: str, git: Optional[GitContext]) -> str:
    git = git or GitContext()
    commits = "\n".join(f"- {c.hash[:8]} {c.message}" for c in git.recent_commits[:10]) or "none"
    changes = "\n".join(f"- {p}" for p in git.uncommitted_changes[:30]) or "none"
    return (
        "Summarize the state of this repository for the developer and suggest "
        "what to do next.\n\n"
        f"Branch: {git.current_branch or 'unknown'}\n"
        f"Recent commits:\n{commits}\n"
        f"Uncommitted changes:\n{changes}\n"
    )


_PROMPTS: dict[GitTaskKind, Callable[[ContextData, str, Optional[GitContext]], str]] = {
    GitTaskKind.COMMIT_MESSAGE: _commit_prompt,
    GitTaskKind.STATUS_SUMMARY: _status_prompt,
}


class GitMateAgent(AgentBase):
    """Proposes git operations.

    Capabilities:
    - Commit message generation from staged changes.
    - Repository status summary.
    """

    agent_type = AgentType.GITMATE
    name = "GitMate"
    description = "Commit message generation and repository status"
    specialization = (
        "As the GitMate agent, you specialize in:\n"
        "- Writing clear, conventional commit messages\n"
        "- Summarizing repository state and history"
    )

    def __init__(
        self,
        client: CompletionService,
        settings: Settings | None = None,
        *,
        git_factory: Callable[[str], GitClient] = GitClient,
    ) -> None:
        super().__init__(client, settings)
        self._git_factory = git_factory

    def get_capabilities(self) -> list[AgentCapability]:
        return [
            AgentCapability(
                type=CapabilityType.GIT_OPERATIONS,
                name="Commit Message Generation",
                description="Generates a commit message from the staged diff",
                requires_context=["diff"],
                output_types=["git_operations"],
            ),
            AgentCapability(
                type=CapabilityType.GIT_OPERATIONS,
                name="Status Summary",
                description="Summarizes branch, history and pending changes",
                requires_context=["project_root"],
                output_types=["message"],
            ),
        ]

    async def _staged_diff(self, context: ContextData) -> str | None:
        if context.diff:
            return context.diff
        if not context.project_root:
            return None
        try:
            return await self._git_factory(context.project_root).staged_diff()
        except GitError as exc:
            logger.info("No staged diff available: %s", exc)
            return None

    async def _git_context(self, context: ContextData) -> GitContext | None:
        if context.git_history is not None:
            return context.git_history
        if not context.project_root:
            return None
        try:
            return await self._git_factory(context.project_root).context()
        except GitError as exc:
            logger.info("No git context available: %s", exc)
            return None

    async def _run(
        self,
        context: ContextData,
        cancellation: CancellationToken | None,
        sink: OutputSink | None,
    ) -> AgentResult:
        diff = await self._staged_diff(context)
        kind = classify_git_task(context, diff)
        git = await self._git_context(context)

        if kind == GitTaskKind.STATUS_SUMMARY and git is None:
            return self._make_result(
                message="GitMate is ready. Stage some changes and ask for a commit message.",
                confidence=0.3,
                reasoning="No staged changes or repository information were available",
            )

        completion = await self._complete(
            _PROMPTS[kind](context, diff or "", git), context, cancellation, sink,
            temperature=0.3,
        )

        if kind == GitTaskKind.STATUS_SUMMARY:
            return self._make_result(
                message=completion.text.strip(),
                confidence=0.7,
                reasoning="Summarized branch, recent history and uncommitted changes",
            )

        message = clean_commit_message(completion.text)
        if not message:
            return self._make_result(
                message="The model returned an empty commit message.",
                confidence=0.3,
                warnings=["No commit message was generated"],
            )

        warnings = []
        subject = message.splitlines()[0]
        if len(subject) > MAX_SUBJECT_CHARS:
            warnings.append(f"Subject line is longer than {MAX_SUBJECT_CHARS} characters")
        return self._make_result(
            message=f"Generated commit message: {subject}",
            suggestions=[f"Consider committing with message: {subject}"],
            git_operations=[commit_operation(message)],
            context_updates={"diff": diff},
            confidence=0.8 if not warnings else 0.6,
            reasoning="Derived the message from the staged diff and recent commit style",
            warnings=warnings,
            next_steps=["Review the message", "Run the commit command when ready"],
        )
