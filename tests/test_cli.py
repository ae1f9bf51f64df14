"""Tests for the click command line, driven through CliRunner."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from pairmind import __version__
from pairmind.cli import main
from pairmind.core.audit import LOG_FILE_NAME
from pairmind.llm.client import CompletionClient

APP_PY = (
    "class Store:\n"
    "    def load(self, key):\n"
    "        return self.data[key]\n"
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("PAIRMIND_API_URL", "PAIRMIND_API_KEY", "PAIRMIND_MODEL", "PAIRMIND_PRIVACY_MODE", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "proj"
    (root / "src").mkdir(parents=True)
    (root / "pyproject.toml").write_text('[project]\nname = "proj"\n', encoding="utf-8")
    (root / "src" / "app.py").write_text(APP_PY, encoding="utf-8")
    (root / "src" / "empty.py").write_text("", encoding="utf-8")
    return root


@pytest.fixture
def invoke(tmp_path: Path):
    workspace = tmp_path / "ws"
    runner = CliRunner()

    def _invoke(*args: str):
        return runner.invoke(main, ["--workspace", str(workspace), *args])
    _invoke.workspace = workspace
    return _invoke


@pytest.fixture
def scripted_client(monkeypatch, client_factory):
    """Route every session's completion client to a FakeCompletionClient."""
    def _install(*replies: str):
        client = client_factory(*replies)
        monkeypatch.setattr(
            CompletionClient, "from_settings", classmethod(lambda cls, settings, privacy=None: client),
        )
        return client
    return _install


class TestGeneral:

    def test_version(self, invoke):
        result = invoke("--version")
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, invoke):
        result = invoke("--help")
        assert result.exit_code == 0
        for command in ("context", "suggest", "run", "chain", "audit", "privacy", "ping"):
            assert command in result.output


class TestContextCommands:

    def test_context_fast(self, invoke, project):
        result = invoke("context", str(project / "src" / "app.py"), "--line", "3", "--fast")
        assert result.exit_code == 0, result.output
        assert "Store" in result.output
        assert "load" in result.output

    def test_context_missing_file(self, invoke, tmp_path):
        result = invoke("context", str(tmp_path / "nope.py"))
        assert result.exit_code != 0

    def test_suggest(self, invoke, project):
        result = invoke("suggest", str(project / "src" / "app.py"), "--line", "3")
        assert result.exit_code == 0, result.output
        assert "Agent Suggestions" in result.output
        assert "bughunter" in result.output
        assert "devflow" in result.output


class TestRunCommands:

    def test_run_success(self, invoke, project, scripted_client):
        client = scripted_client("All good here.")
        result = invoke("run", "bughunter", str(project / "src" / "app.py"), "--line", "3")
        assert result.exit_code == 0, result.output
        assert "All good here." in result.output
        assert client.calls[0]["context"].current_function == "load"

    def test_run_passes_problem_statement(self, invoke, project, scripted_client):
        client = scripted_client("ok")
        invoke("run", "devflow", str(project / "src" / "app.py"), "--problem", "set up CI")
        assert client.calls[0]["context"].problem_statement == "set up CI"

    def test_run_validation_failure_exits_1(self, invoke, project, scripted_client):
        client = scripted_client("unused")
        result = invoke("run", "bughunter", str(project / "src" / "empty.py"))
        assert result.exit_code == 1
        assert client.calls == []

    def test_run_writes_docs(self, invoke, project, scripted_client):
        scripted_client("# Store\n\nLoads values.")
        result = invoke("run", "docguru", str(project / "src" / "app.py"), "--write-docs")
        assert result.exit_code == 0, result.output
        assert (project / "src" / "app.md").read_text(encoding="utf-8").startswith("# Store")

    def test_run_records_audit(self, invoke, project, scripted_client):
        scripted_client("fine")
        invoke("run", "bughunter", str(project / "src" / "app.py"))
        lines = (invoke.workspace / LOG_FILE_NAME).read_text(encoding="utf-8").splitlines()
        assert {json.loads(line)["type"] for line in lines} == {"agent_execution", "agent_action"}

    def test_unknown_agent(self, invoke, project):
        result = invoke("run", "wizard", str(project / "src" / "app.py"))
        assert result.exit_code == 2

    def test_chain(self, invoke, project, scripted_client):
        scripted_client("first", "second")
        result = invoke("chain", "bughunter", "codesmith", "--file", str(project / "src" / "app.py"))
        assert result.exit_code == 0, result.output
        assert "first" in result.output
        assert "second" in result.output

    def test_chain_stops_early(self, invoke, project, scripted_client):
        scripted_client("unused")
        result = invoke("chain", "bughunter", "docguru", "--file", str(project / "src" / "empty.py"))
        assert result.exit_code == 1
        assert "Chain stopped after 1 of 2 agents." in result.output

    def test_ping(self, invoke, scripted_client):
        scripted_client()
        result = invoke("ping")
        assert result.exit_code == 0
        assert "Connected" in result.output


class TestAuditCommand:

    def test_empty(self, invoke):
        result = invoke("audit")
        assert result.exit_code == 0
        assert "No audit entries." in result.output

    def test_lists_and_clears(self, invoke):
        invoke.workspace.mkdir(parents=True)
        entry = {
            "timestamp": "2024-05-01T10:00:00+00:00",
            "type": "agent_execution",
            "agentType": "gitmate",
            "success": True,
        }
        (invoke.workspace / LOG_FILE_NAME).write_text(json.dumps(entry) + "\n", encoding="utf-8")

        listed = invoke("audit", "--limit", "5")
        assert "gitmate" in listed.output

        cleared = invoke("audit", "--clear")
        assert "Audit log cleared." in cleared.output
        assert "No audit entries." in invoke("audit").output


class TestPrivacyCommands:

    def test_show_defaults(self, invoke):
        result = invoke("privacy", "show")
        assert result.exit_code == 0
        assert "Mode: standard" in result.output

    def test_mode_is_persisted_without_key(self, invoke, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
        result = invoke("privacy", "mode", "ENHANCED")
        assert result.exit_code == 0
        saved = json.loads((invoke.workspace / "settings.json").read_text(encoding="utf-8"))
        assert saved["privacy_mode"] == "enhanced"
        assert "api_key" not in saved
        assert "Mode: enhanced" in invoke("privacy", "show").output

    def test_invalid_mode(self, invoke):
        assert invoke("privacy", "mode", "paranoid").exit_code == 2

    def test_file_exclusions(self, invoke):
        invoke("privacy", "exclude-file", "secrets/prod.env")
        assert "secrets/prod.env" in invoke("privacy", "show").output
        invoke("privacy", "include-file", "secrets/prod.env")
        assert "secrets/prod.env" not in invoke("privacy", "show").output

    def test_directory_exclusions(self, invoke):
        invoke("privacy", "exclude-dir", "vendor")
        saved = json.loads((invoke.workspace / "settings.json").read_text(encoding="utf-8"))
        assert saved["excluded_directories"] == ["vendor"]
        invoke("privacy", "include-dir", "vendor")
        saved = json.loads((invoke.workspace / "settings.json").read_text(encoding="utf-8"))
        assert saved["excluded_directories"] == []
