"""Tests for PairSession: context plumbing, editor events and result delivery."""

from __future__ import annotations

from pathlib import Path

import pytest

from pairmind.agents.base import (
    AgentResult,
    AgentType,
    CancellationToken,
    CodeChange,
    ChangeType,
    ErrorKind,
    GitOperation,
)
from pairmind.agents.privacy import PrivacyMode
from pairmind.config import Settings, SettingsStore, WorkspaceConfig
from pairmind.core.audit import AuditTrail
from pairmind.core.cache import ContextCache
from pairmind.core.context import ContextAnalyzer
from pairmind.core.errors import ErrorLogger
from pairmind.core.models import EditorDocument, GitContext, Position, Range
from pairmind.core.vcs import GitError
from pairmind.llm.base import CompletionError, ServiceErrorKind
from pairmind.session import PairSession

APP_PY = (
    "import os\n"
    "\n"
    "\n"
    "class Store:\n"
    "    def load(self, key):\n"
    "        return self.data[key]\n"
)

SECRET_PY = (
    "def connect():\n"
    '    password = "hunter2"\n'
    "    return password\n"
)


class FailingGit:
    def __init__(self, root: Path) -> None:
        self.root = root

    async def context(self) -> GitContext:
        raise GitError("not a git repository")

    async def recently_changed_files(self) -> list[str]:
        raise GitError("not a git repository")


class RecordingEditor:
    """Captures everything the session hands to the editor."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []
        self.applied: list[CodeChange] = []
        self.docs = []
        self.suggestions: list[list[str]] = []

    async def apply_code_changes(self, changes):
        self.applied.extend(changes)

    async def write_documentation(self, docs):
        self.docs.extend(docs)

    async def show_message(self, message, *, level="info"):
        self.messages.append((level, message))

    async def show_suggestions(self, suggestions):
        self.suggestions.append(list(suggestions))


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "proj"
    (root / "src").mkdir(parents=True)
    (root / "pyproject.toml").write_text('[project]\nname = "proj"\ndependencies = ["rich"]\n', encoding="utf-8")
    (root / "src" / "app.py").write_text(APP_PY, encoding="utf-8")
    (root / "src" / "secret.py").write_text(SECRET_PY, encoding="utf-8")
    return root


@pytest.fixture
def app_doc(project: Path) -> EditorDocument:
    return EditorDocument.from_path(project / "src" / "app.py", line=5)


@pytest.fixture
def editor() -> RecordingEditor:
    return RecordingEditor()


@pytest.fixture
def make_session(tmp_path: Path, project: Path, editor: RecordingEditor):
    def _make(client, **overrides) -> PairSession:
        store = SettingsStore(None, use_env=False)
        store.apply(Settings(api_key="test-key", **overrides))
        return PairSession(
            store,
            client=client,
            analyzer=ContextAnalyzer(project, git_factory=FailingGit),
            cache=ContextCache(clock=lambda: 0.0),
            audit=AuditTrail.in_directory(tmp_path / "ws"),
            error_logger=ErrorLogger(tmp_path / "ws" / "errors.log"),
            editor=editor,
        )
    return _make


# ===================================================================
# 1. Context
# ===================================================================

class TestContext:

    @pytest.mark.asyncio
    async def test_full_snapshot(self, make_session, fake_client, app_doc, project):
        session = make_session(fake_client)
        ctx = await session.get_context(app_doc)
        assert ctx.current_class == "Store"
        assert ctx.current_function == "load"
        assert ctx.project_root == str(project.resolve())
        assert ctx.project_structure is not None
        assert ctx.git_history is None

    @pytest.mark.asyncio
    async def test_cached_within_window(self, make_session, fake_client, app_doc):
        session = make_session(fake_client)
        first = await session.get_context(app_doc)
        assert await session.get_context(app_doc) is first
        assert await session.get_context(app_doc, force=True) is not first

    @pytest.mark.asyncio
    async def test_no_document(self, make_session, fake_client, project):
        ctx = await make_session(fake_client).get_context(None)
        assert ctx.current_file is None
        assert ctx.project_root == str(project.resolve())

    @pytest.mark.asyncio
    async def test_fast_snapshot_skips_project_scan(self, make_session, fake_client, app_doc):
        session = make_session(fake_client)
        ctx = await session.get_context(app_doc, fast=True)
        assert ctx.current_function == "load"
        assert ctx.project_structure is None


# ===================================================================
# 2. Editor events
# ===================================================================

class TestEditorEvents:

    @pytest.mark.asyncio
    async def test_save_invalidates_cache(self, make_session, fake_client, app_doc):
        session = make_session(fake_client)
        await session.on_document_change(app_doc)
        assert app_doc.uri in session.cache
        await session.on_document_saved(app_doc)
        assert app_doc.uri not in session.cache

    @pytest.mark.asyncio
    async def test_saving_config_forgets_project_layer(self, make_session, fake_client, app_doc, project):
        session = make_session(fake_client)
        await session.get_context(app_doc)
        assert (await session.get_context(app_doc, fast=True)).project_structure is not None

        await session.on_document_saved(EditorDocument.from_path(project / "pyproject.toml"))
        assert (await session.get_context(app_doc, fast=True)).project_structure is None

    @pytest.mark.asyncio
    async def test_active_editor_change_rebuilds(self, make_session, fake_client, app_doc):
        session = make_session(fake_client)
        first = await session.get_context(app_doc)
        await session.on_active_editor_change(app_doc)
        assert session.cache.get(app_doc.uri) is not first

    @pytest.mark.asyncio
    async def test_configuration_change(self, make_session, fake_client):
        session = make_session(fake_client)
        new = Settings(api_key="test-key", privacy_mode="enhanced", audit_enabled=False)
        await session.on_configuration_change(new)

        assert session.privacy.mode == PrivacyMode.ENHANCED
        assert session.settings is new
        assert session.orchestrator.audit.enabled is False


# ===================================================================
# 3. Running agents and delivering results
# ===================================================================

class TestRunAgent:

    @pytest.mark.asyncio
    async def test_message_is_shown(self, make_session, client_factory, app_doc, editor):
        session = make_session(client_factory("Looks fine to me."))
        result = await session.run_agent(AgentType.BUGHUNTER, app_doc)
        assert result.success
        assert editor.messages == [("info", "Looks fine to me.")]
        assert len(session.orchestrator.get_execution_history()) == 1

    @pytest.mark.asyncio
    async def test_changes_applied_only_when_asked(self, make_session, client_factory, app_doc, editor):
        reply = (
            "Issue: KeyError on unknown keys\n"
            "Fix: Use dict.get\n"
            "```python\n"
            "        return self.data.get(key)\n"
            "```\n"
        )
        session = make_session(client_factory(reply))

        await session.run_agent("bughunter", app_doc)
        assert editor.applied == []
        assert editor.suggestions == [["Use dict.get"]]

        await session.run_agent("bughunter", app_doc, apply_changes=True)
        assert len(editor.applied) == 1
        assert editor.applied[0].type == ChangeType.REPLACE
        assert "self.data.get(key)" in editor.applied[0].new_text

    @pytest.mark.asyncio
    async def test_extras_reach_the_agent(self, make_session, fake_client, app_doc):
        session = make_session(fake_client)
        await session.run_agent(AgentType.DEVFLOW, app_doc, extras={"problem_statement": "add CI"})
        assert fake_client.calls[0]["context"].problem_statement == "add CI"

    @pytest.mark.asyncio
    async def test_validation_failure_is_a_warning(self, make_session, fake_client, editor):
        session = make_session(fake_client)
        result = await session.run_agent(AgentType.BUGHUNTER, None)
        assert result.error_kind == ErrorKind.VALIDATION
        assert editor.messages == [("warning", result.error)]
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_privacy_block_is_prefixed(self, make_session, fake_client, project, editor):
        session = make_session(fake_client, privacy_mode="enhanced")
        doc = EditorDocument.from_path(project / "src" / "secret.py", line=1)
        result = await session.run_agent(AgentType.BUGHUNTER, doc)

        assert result.error_kind == ErrorKind.PRIVACY_BLOCKED
        [(level, message)] = editor.messages
        assert level == "warning"
        assert message.startswith("Privacy: ")
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_service_failure_is_an_error(self, make_session, client_factory, app_doc, editor):
        client = client_factory(error=CompletionError(ServiceErrorKind.SERVER))
        session = make_session(client)
        result = await session.run_agent(AgentType.BUGHUNTER, app_doc)
        assert result.error_kind == ErrorKind.SERVICE
        assert editor.messages == [("error", result.error)]

    @pytest.mark.asyncio
    async def test_cancelled_is_info(self, make_session, fake_client, app_doc, editor):
        token = CancellationToken()
        token.cancel()
        session = make_session(fake_client)
        await session.run_agent(AgentType.BUGHUNTER, app_doc, cancellation=token)
        assert editor.messages == [("info", "Operation was cancelled")]

    @pytest.mark.asyncio
    async def test_streaming_sink(self, make_session, client_factory, app_doc):
        session = make_session(client_factory("streamed reply"))
        chunks: list[str] = []
        await session.run_agent(AgentType.BUGHUNTER, app_doc, sink=chunks.append)
        assert chunks == ["streamed reply"]

    @pytest.mark.asyncio
    async def test_delivery_order(self, make_session, fake_client, editor):
        session = make_session(fake_client)
        result = AgentResult(
            success=True,
            agent_type=AgentType.GITMATE,
            message="Generated commit message: feat: add store",
            git_operations=[GitOperation(type="commit", command='git commit -m "feat: add store"')],
            warnings=["Staged diff is large"],
            suggestions=["Consider committing with message: feat: add store"],
        )
        await session._deliver(result)
        assert editor.messages == [
            ("info", 'Suggested command: git commit -m "feat: add store"'),
            ("warning", "Staged diff is large"),
            ("info", "Generated commit message: feat: add store"),
        ]
        assert editor.suggestions == [["Consider committing with message: feat: add store"]]

    @pytest.mark.asyncio
    async def test_without_editor(self, fake_client, app_doc, project):
        store = SettingsStore(None, use_env=False)
        session = PairSession(
            store, client=fake_client, analyzer=ContextAnalyzer(project, git_factory=FailingGit),
        )
        assert (await session.run_agent(AgentType.BUGHUNTER, app_doc)).success


class TestChainsAndSuggestions:

    @pytest.mark.asyncio
    async def test_chain_delivers_each_result(self, make_session, client_factory, app_doc, editor):
        session = make_session(client_factory("first", "second"))
        results = await session.run_chain(["bughunter", "codesmith"], app_doc)
        assert [r.success for r in results] == [True, True]
        assert [m for _, m in editor.messages] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_suggest_ranks_every_agent(self, make_session, fake_client, app_doc):
        suggestions = await make_session(fake_client).suggest(app_doc)
        assert len(suggestions) == 6
        scores = [s.confidence for s in suggestions]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_run_suggested_runs_the_top_agent(self, make_session, fake_client, app_doc):
        session = make_session(fake_client)
        best = (await session.suggest(app_doc))[0]
        result = await session.run_suggested(app_doc)
        assert result.agent_type == best.agent_type
        assert len(session.orchestrator.get_execution_history()) == 1


# ===================================================================
# 4. Task helpers
# ===================================================================

class TestTaskHelpers:

    @pytest.mark.asyncio
    async def test_review_empty_document(self, make_session, fake_client, project):
        doc = EditorDocument(uri="file:///empty.py", file_name=str(project / "empty.py"), text="  \n")
        result = await make_session(fake_client).review_code(doc)
        assert not result.success
        assert result.error == "No code selected for review."
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_review_uses_selection(self, make_session, fake_client, app_doc):
        selection = Range(start=Position(line=5, character=8), end=Position(line=5, character=29))
        doc = app_doc.model_copy(update={"selection": selection})
        await make_session(fake_client).review_code(doc)
        ctx = fake_client.calls[0]["context"]
        assert ctx.selected_text == "return self.data[key]"
        assert ctx.command == "review"
        assert ctx.selection_range == selection

    @pytest.mark.asyncio
    async def test_review_without_selection_uses_whole_file(self, make_session, fake_client, app_doc):
        await make_session(fake_client).review_code(app_doc)
        assert fake_client.calls[0]["context"].selected_text == APP_PY

    @pytest.mark.asyncio
    async def test_refactor_needs_selection(self, make_session, fake_client, app_doc):
        result = await make_session(fake_client).refactor(app_doc)
        assert result.error == "Please select code to refactor."
        assert result.agent_type == AgentType.CODESMITH
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_refactor_intent(self, make_session, fake_client, app_doc):
        selection = Range(start=Position(line=4, character=0), end=Position(line=5, character=29))
        doc = app_doc.model_copy(update={"selection": selection})
        session = make_session(fake_client)

        await session.refactor(doc)
        await session.refactor(doc, "extract method")

        assert fake_client.calls[0]["context"].refactor_intent == "general refactoring"
        assert fake_client.calls[1]["context"].refactor_intent == "extract method"

    @pytest.mark.asyncio
    async def test_project_summary_writes_docs(self, make_session, client_factory, app_doc, editor):
        session = make_session(client_factory("# Store\n\nLoads values by key."))
        result = await session.project_summary(app_doc, write_docs=True)
        assert result.agent_type == AgentType.DOCGURU
        assert len(editor.docs) == 1
        assert editor.docs[0].path.endswith("src/app.md")
        assert editor.docs[0].content.startswith("# Store")


class TestLifecycle:

    def test_create_uses_workspace_files(self, tmp_path: Path, project: Path):
        workspace = WorkspaceConfig(root=tmp_path / "ws")
        session = PairSession.create(workspace, project_root=project)
        assert (tmp_path / "ws").is_dir()
        assert session.orchestrator.audit.path == workspace.audit_log_path
        assert session.orchestrator.error_logger.path == workspace.error_log_path
        assert session.analyzer.project_root == project.resolve()

    @pytest.mark.asyncio
    async def test_connection_and_dispose(self, make_session, fake_client):
        session = make_session(fake_client)
        assert await session.test_connection() is True
        await session.dispose()
        assert not any(a.get_status().is_ready for a in session.orchestrator.registry)
