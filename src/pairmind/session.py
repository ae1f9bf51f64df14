"""PairSession — the editor-facing coordinator.

Ties together the context analyzer and cache, the privacy guard, the
completion client and the agent orchestrator, and forwards results to an
``EditorAdapter``.  The editor owns applying edits and writing files;
this module only hands it descriptions of what to do.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

from .agents.base import (
    AgentResult,
    AgentType,
    CancellationToken,
    CodeChange,
    DocumentationOutput,
    ErrorKind,
)
from .agents.orchestrator import AgentOrchestrator, AgentSuggestion
from .agents.privacy import PrivacyGuard
from .agents.registry import AgentRegistry
from .config import Settings, SettingsStore, WorkspaceConfig
from .core.audit import AuditTrail
from .core.cache import ContextCache
from .core.context import ContextAnalyzer, is_configuration_file
from .core.errors import ErrorLogger
from .core.models import ContextData, EditorDocument
from .llm.base import OutputSink
from .llm.client import CompletionClient

logger = logging.getLogger(__name__)

DEFAULT_REFACTOR_INTENT = "general refactoring"


class EditorAdapter(Protocol):
    """What the session needs from the editor side."""

    async def apply_code_changes(self, changes: list[CodeChange]) -> None: ...

    async def write_documentation(self, docs: list[DocumentationOutput]) -> None: ...

    async def show_message(self, message: str, *, level: str = "info") -> None: ...

    async def show_suggestions(self, suggestions: list[str]) -> None: ...


_FAILURE_LEVELS: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "warning",
    ErrorKind.PRIVACY_BLOCKED: "warning",
    ErrorKind.CANCELLED: "info",
    ErrorKind.SERVICE: "error",
    ErrorKind.INTERNAL: "error",
}


class PairSession:
    """One editor session.

    Parameters
    ----------
    settings_store : SettingsStore
        Source of the active settings; privacy changes persist through it.
    client
        Completion service shared by every agent.  Built from the settings
        when omitted.
    editor : EditorAdapter | None
        Receives messages, edits and documentation.  Without one, results
        are only returned.
    """

    def __init__(
        self,
        settings_store: SettingsStore,
        *,
        client: CompletionClient | None = None,
        analyzer: ContextAnalyzer | None = None,
        cache: ContextCache | None = None,
        registry: AgentRegistry | None = None,
        audit: AuditTrail | None = None,
        error_logger: ErrorLogger | None = None,
        editor: EditorAdapter | None = None,
    ) -> None:
        self.settings_store = settings_store
        settings = settings_store.settings
        self.privacy = PrivacyGuard.from_settings(settings, store=settings_store)
        self.client = client or CompletionClient.from_settings(settings, privacy=self.privacy)
        self.analyzer = analyzer or ContextAnalyzer()
        self.cache = cache or ContextCache()
        self.editor = editor
        registry = registry or AgentRegistry.with_default_agents(self.client, settings)
        if audit is not None:
            audit.set_enabled(settings.audit_enabled)
        self.orchestrator = AgentOrchestrator(
            registry,
            audit=audit,
            error_logger=error_logger,
            privacy=self.privacy,
        )

    @classmethod
    def create(
        cls,
        workspace: WorkspaceConfig | None = None,
        *,
        project_root: str | Path | None = None,
        editor: EditorAdapter | None = None,
    ) -> "PairSession":
        """Build a session backed by the files of *workspace*."""
        workspace = workspace or WorkspaceConfig()
        workspace.ensure_workspace()
        store = SettingsStore(workspace.settings_path)
        return cls(
            store,
            analyzer=ContextAnalyzer(project_root),
            audit=AuditTrail(workspace.audit_log_path),
            error_logger=ErrorLogger(workspace.error_log_path),
            editor=editor,
        )

    @property
    def settings(self) -> Settings:
        return self.settings_store.settings

    # ── Context ───────────────────────────────────────────────────────

    async def get_context(
        self,
        document: EditorDocument | None,
        *,
        fast: bool = False,
        force: bool = False,
    ) -> ContextData:
        """Snapshot for *document*, served from the cache when fresh."""
        if document is None:
            return self.analyzer.empty_context()
        if fast:
            return await self.analyzer.build_fast(document)
        return await self.cache.get_or_build(
            document.uri, lambda: self.analyzer.build_full(document), force=force,
        )

    async def on_document_change(self, document: EditorDocument) -> None:
        """Rebuild the snapshot unless the throttle window is still open."""
        await self.get_context(document)

    async def on_active_editor_change(self, document: EditorDocument) -> None:
        await self.get_context(document, force=True)

    async def on_document_saved(self, document: EditorDocument) -> None:
        self.cache.invalidate(document.uri)
        if is_configuration_file(Path(document.file_name).name):
            self.analyzer.forget_project(self.analyzer.root_for(document))

    async def on_configuration_change(self, settings: Settings) -> None:
        """Apply pushed settings without writing them back."""
        if hasattr(self.client, "update_configuration"):
            self.client.update_configuration(settings)
        await self.orchestrator.update_configuration(settings)
        self.settings_store.apply(settings)

    # ── Agents ────────────────────────────────────────────────────────

    async def run_agent(
        self,
        agent_type: AgentType | str,
        document: EditorDocument | None,
        *,
        extras: dict[str, Any] | None = None,
        cancellation: CancellationToken | None = None,
        sink: OutputSink | None = None,
        apply_changes: bool = False,
        write_docs: bool = False,
    ) -> AgentResult:
        context = await self.get_context(document)
        if extras:
            context = context.model_copy(update=extras)
        result = await self.orchestrator.execute_agent(agent_type, context, cancellation, sink)
        await self._deliver(result, apply_changes=apply_changes, write_docs=write_docs)
        return result

    async def run_chain(
        self,
        agent_types: list[AgentType | str],
        document: EditorDocument | None,
        *,
        extras: dict[str, Any] | None = None,
        cancellation: CancellationToken | None = None,
        sink: OutputSink | None = None,
    ) -> list[AgentResult]:
        context = await self.get_context(document)
        if extras:
            context = context.model_copy(update=extras)
        results = await self.orchestrator.execute_agent_chain(agent_types, context, cancellation, sink)
        for result in results:
            await self._deliver(result)
        return results

    async def suggest(self, document: EditorDocument | None) -> list[AgentSuggestion]:
        context = await self.get_context(document)
        return self.orchestrator.get_all_agent_suggestions(context)

    async def run_suggested(
        self,
        document: EditorDocument | None,
        *,
        cancellation: CancellationToken | None = None,
        sink: OutputSink | None = None,
    ) -> AgentResult | None:
        """Run whichever agent ranks highest for the current snapshot."""
        context = await self.get_context(document)
        best = self.orchestrator.suggest_agent(context)
        if best is None:
            return None
        logger.info("Suggested agent %s (%.2f): %s", best.agent_type.value, best.confidence, best.reasoning)
        result = await self.orchestrator.execute_agent(best.agent_type, context, cancellation, sink)
        await self._deliver(result)
        return result

    async def review_code(self, document: EditorDocument, **kwargs: Any) -> AgentResult:
        """BugHunter over the selection, or the whole document without one."""
        selected = document.selected_text or document.text
        if not selected.strip():
            return AgentResult.failure(AgentType.BUGHUNTER, "No code selected for review.", ErrorKind.VALIDATION)
        extras = {"selected_text": selected, "command": "review"}
        if document.selection is not None:
            extras["selection_range"] = document.selection
        return await self.run_agent(AgentType.BUGHUNTER, document, extras=extras, **kwargs)

    async def refactor(self, document: EditorDocument, intent: str | None = None, **kwargs: Any) -> AgentResult:
        """CodeSmith refactoring of the current selection."""
        if not document.selected_text.strip():
            return AgentResult.failure(
                AgentType.CODESMITH, "Please select code to refactor.", ErrorKind.VALIDATION
            )
        extras = {
            "selected_text": document.selected_text,
            "selection_range": document.selection,
            "refactor_intent": intent or DEFAULT_REFACTOR_INTENT,
        }
        return await self.run_agent(AgentType.CODESMITH, document, extras=extras, **kwargs)

    async def project_summary(self, document: EditorDocument | None, **kwargs: Any) -> AgentResult:
        extras = {
            "include_project_structure": True,
            "include_git_history": True,
            "command": "document",
        }
        return await self.run_agent(AgentType.DOCGURU, document, extras=extras, **kwargs)

    async def test_connection(self) -> bool:
        return await self.client.test_connection()

    async def dispose(self) -> None:
        await self.orchestrator.dispose()
        if self.orchestrator.error_logger is not None:
            self.orchestrator.error_logger.close()

    # ── Delivery ──────────────────────────────────────────────────────

    async def _deliver(
        self,
        result: AgentResult,
        *,
        apply_changes: bool = False,
        write_docs: bool = False,
    ) -> None:
        if self.editor is None:
            return
        if not result.success:
            level = _FAILURE_LEVELS.get(result.error_kind or ErrorKind.INTERNAL, "error")
            prefix = "Privacy: " if result.error_kind == ErrorKind.PRIVACY_BLOCKED else ""
            await self.editor.show_message(f"{prefix}{result.error}", level=level)
            return

        if apply_changes and result.code_changes:
            await self.editor.apply_code_changes(result.code_changes)
        if write_docs and result.documentation:
            await self.editor.write_documentation(result.documentation)
        for operation in result.git_operations:
            # Proposed only; the user runs it.
            await self.editor.show_message(f"Suggested command: {operation.command}")
        for warning in result.warnings:
            await self.editor.show_message(warning, level="warning")
        if result.message:
            await self.editor.show_message(result.message)
        if result.suggestions:
            await self.editor.show_suggestions(result.suggestions)
