"""Tests for the layered context analyzer and its pure helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from pairmind.core.context import (
    ContextAnalyzer,
    calculate_complexity,
    check_missing_documentation,
    config_file_type,
    detect_architectural_patterns,
    detect_team_patterns,
    find_enclosing_class,
    find_enclosing_function,
    find_project_root,
    is_configuration_file,
    is_test_file,
    parse_package_json,
    parse_pyproject,
    parse_requirements,
    surrounding_code,
)
from pairmind.core.models import (
    CommitInfo,
    Diagnostic,
    DiagnosticSeverity,
    EditorDocument,
    GitContext,
    Position,
    Range,
)
from pairmind.core.vcs import GitError


MAIN_PY = (
    "import os\n"
    "\n"
    "\n"
    "def main():\n"
    "    if os.environ.get('X'):\n"
    "        return 1\n"
    "    return 0\n"
)

PYPROJECT = (
    "[project]\n"
    'name = "demo"\n'
    'dependencies = ["pydantic>=2.5", "httpx[http2]>=0.27", "rich"]\n'
    "\n"
    "[project.optional-dependencies]\n"
    'test = ["pytest>=8"]\n'
)


class FailingGit:
    def __init__(self, root: Path) -> None:
        self.root = root

    async def context(self) -> GitContext:
        raise GitError("not a git repository")

    async def recently_changed_files(self) -> list[str]:
        raise GitError("not a git repository")


class FakeGit:
    def __init__(self, root: Path) -> None:
        self.root = root

    async def context(self) -> GitContext:
        return GitContext(
            current_branch="main",
            recent_commits=[
                CommitInfo(hash="a1", message="feat: add login"),
                CommitInfo(hash="b2", message="fix(api): handle 404"),
            ],
            uncommitted_changes=["src/main.py"],
        )

    async def recently_changed_files(self) -> list[str]:
        return ["src/main.py"]


class FakeExternal:
    async def library_versions(self, dependencies):
        return []

    async def security_issues(self, dependencies):
        return []

    async def best_practices(self, language):
        return [f"Use type hints in {language}"]


class FailingExternal:
    async def library_versions(self, dependencies):
        raise ConnectionError("registry unreachable")

    async def security_issues(self, dependencies):
        return []

    async def best_practices(self, language):
        return []


@pytest.fixture
def project(
tmp_path: Path) -> Path:
    (tmp_path / "pyproject.toml").write_text(PYPROJECT, encoding="utf-8")
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.py").write_text(MAIN_PY, encoding="utf-8")
    (tmp_path / "tests").mkdir()
    (tmp_path / "tests" / "test_main.py").write_text("def test_main():\n    pass\n", encoding="utf-8")
    (tmp_path / "node_modules" / "left-pad").mkdir(parents=True)
    (tmp_path / "node_modules" / "left-pad" / "index.js").write_text("module.exports = 1;\n")
    (tmp_path / ".github" / "workflows").mkdir(parents=True)
    (tmp_path / ".github" / "workflows" / "ci.yml").write_text("on: push\n", encoding="utf-8")
    return tmp_path


def _document(project: Path, **kw) -> EditorDocument:
    path = project / "src" / "main.py"
    return EditorDocument(
        uri=path.as_uri(),
        file_name=str(path),
        text=MAIN_PY,
        language_id="python",
        cursor=Position(line=5),
        **kw,
    )


# ===================================================================
# 1. Pure helpers
# ===================================================================

class TestHelpers:

    def test_complexity_counts_keywords(self):
        text = "if x:\n    pass\nelse:\n    for y in z:\n        pass\n"
        assert calculate_complexity(text) == 4

    def test_complexity_of_empty_text(self):
        assert calculate_complexity("") == 1

    def test_complexity_operators_need_word_boundaries(self):
        assert calculate_complexity("a && b") == 1
        assert calculate_complexity("a&&b") == 2

    def test_complexity_ignores_embedded_words(self):
        assert calculate_complexity("format(elsewhere, forward)") == 1

    def test_missing_documentation(self):
        assert check_missing_documentation("def a():\n    pass\ndef b():\n    pass\n")
        assert not check_missing_documentation("# helper\ndef a():\n    pass\n")
        assert not check_missing_documentation("x = 1\n")

    def test_enclosing_function_and_class(self):
        lines = ["class Repo:", "    def load(self):", "        return 1"]
        assert find_enclosing_function(lines, 2) == "load"
        assert find_enclosing_class(lines, 2) == "Repo"

    def test_enclosing_arrow_function(self):
        lines = ["const handler = async (req) => {", "  return req.body;", "};"]
        assert find_enclosing_function(lines, 1) == "handler"

    def test_no_enclosing_scope(self):
        lines = ["x = 1", "y = 2"]
        assert find_enclosing_function(lines, 1) is None
        assert find_enclosing_class(lines, 1) is None

    def test_cursor_past_end_is_clamped(self):
        assert find_enclosing_function(["def only():", "    pass"], 99) == "only"

    def test_surrounding_code_window(self):
        lines = [f"line {i}" for i in range(30)]
        window = surrounding_code(lines, 15).split("\n")
        assert window[0] == "line 5"
        assert window[-1] == "line 25"
        assert len(window) == 21

    def test_surrounding_code_at_edges(self):
        lines = [f"line {i}" for i in range(5)]
        assert surrounding_code(lines, 0).split("\n") == lines
        assert surrounding_code([], 0) == ""

    @pytest.mark.parametrize("path,expected", [
        ("/src/tests/test_api.py", True),
        ("/web/app.test.ts", True),
        ("/web/__tests__/app.js", True),
        ("/src/api.py", False),
    ])
    def test_is_test_file(self, path: str, expected: bool):
        assert is_test_file(path) is expected

    def test_is_configuration_file(self):
        assert is_configuration_file("package.json")
        assert is_configuration_file("requirements-dev.txt")
        assert not is_configuration_file("service.py")

    @pytest.mark.parametrize("path,expected", [
        (".github/workflows/ci.yml", "ci"),
        (".gitlab-ci.yml", "ci"),
        ("package.json", "npm"),
        ("tsconfig.base.json", "typescript"),
        (".eslintrc.json", "linting"),
        ("Dockerfile", "containerization"),
        (".env", "environment"),
        ("pyproject.toml", "python"),
        ("requirements.txt", "python"),
        ("README.md", "other"),
    ])
    def test_config_file_type(self, path: str, expected: str):
        assert config_file_type(path) == expected

    def test_architectural_patterns(self):
        assert detect_architectural_patterns(["src", "src/components"]) == ["Component-based Architecture"]
        assert "MVC Pattern" in detect_architectural_patterns(["app/controllers", "app/models", "app/views"])
        assert "Service Layer Pattern" in detect_architectural_patterns(["services", "repositories"])
        assert detect_architectural_patterns(["lib"]) == []

    def test_team_patterns(self):
        assert detect_team_patterns(["feat: a", "fix(core): b", "random"]) == ["Conventional Commits"]
        assert detect_team_patterns(["wip", "stuff", "feat: x"]) == []
        assert detect_team_patterns([]) == []

    def test_find_project_root(self, project: Path):
        assert find_project_root(project / "src" / "main.py") == project.resolve()


# ===================================================================
# 2. Manifest parsing
# ===================================================================

class TestManifests:

    def test_pyproject(self):
        deps = parse_pyproject(PYPROJECT)
        assert deps.production == {"pydantic": ">=2.5", "httpx": ">=0.27", "rich": "*"}
        assert deps.development == {"pytest": ">=8"}

    def test_poetry(self):
        text = (
            "[tool.poetry.dependencies]\n"
            'python = "^3.11"\n'
            'click = "^8.1"\n'
            'openai = { version = "^1.0" }\n'
        )
        deps = parse_pyproject(text)
        assert deps.production == {"click": "^8.1", "openai": "*"}

    def test_invalid_pyproject_is_empty(self):
        assert parse_pyproject("not [valid").total == 0

    @pytest.mark.parametrize("text", [
        'project = "oops"',
        "[project]\ndependencies = 3\n",
        '[tool]\npoetry = "x"\n',
        '[tool.poetry]\ndependencies = ["click"]\ngroup = "dev"\n',
        '[tool.poetry.group]\ndev = "x"\n',
    ])
    def test_misshapen_pyproject_is_empty(self, text: str):
        assert parse_pyproject(text).total == 0

    def test_misshapen_section_keeps_the_rest(self):
        text = (
            "[project]\n"
            'dependencies = ["rich"]\n'
            'optional-dependencies = ["x"]\n'
        )
        deps = parse_pyproject(text)
        assert deps.production == {"rich": "*"}
        assert deps.development == {}

    def test_package_json(self):
        deps = parse_package_json('{"dependencies": {"react": "^18"}, "devDependencies": {"jest": "^29"}}')
        assert deps.production == {"react": "^18"}
        assert deps.development == {"jest": "^29"}

    @pytest.mark.parametrize("text", ["{not json", "[]", '{"dependencies": 3}'])
    def test_bad_package_json_is_empty(self, text: str):
        assert parse_package_json(text).total == 0

    def test_requirements(self):
        text = "# pinned\nrequests==2.31\n-e .\nflask ; python_version > '3'\n\n"
        deps = parse_requirements(text)
        assert deps.production == {"requests": "==2.31", "flask": "*"}


# ===================================================================
# 3. Analyzer
# ===================================================================

class TestContextAnalyzer:

    @pytest.mark.asyncio
    async def test_full_build_without_git(self, project: Path):
        analyzer = ContextAnalyzer(project, git_factory=FailingGit)
        doc = _document(project, diagnostics=[Diagnostic(message="boom", line=4)])
        ctx = await analyzer.build_full(doc)

        assert ctx.current_file == str(project / "src" / "main.py")
        assert ctx.current_function == "main"
        assert ctx.current_class is None
        assert ctx.language == "python"
        assert ctx.project_root == str(project.resolve())
        assert ctx.project_name == project.resolve().name

        assert ctx.git_history is None
        assert ctx.recent_changes is None
        assert ctx.has_git_changes is None

        assert ctx.has_errors is True
        assert ctx.error_messages == ["boom"]
        assert ctx.complexity == 2
        assert ctx.missing_documentation is True

    @pytest.mark.asyncio
    async def test_project_layer(self, project: Path):
        analyzer = ContextAnalyzer(project, git_factory=FailingGit)
        ctx = await analyzer.build_full(_document(project))
        structure = ctx.project_structure
        assert structure is not None

        paths = {f.path for f in structure.files}
        assert "src/main.py" in paths
        assert not any(p.startswith("node_modules") for p in paths)
        assert "src/main.py" in structure.entry_points
        assert structure.test_files == ["tests/test_main.py"]
        assert set(structure.config_files) == {"pyproject.toml", ".github/workflows/ci.yml"}

        assert ctx.dependencies is not None
        assert ctx.dependencies.production["pydantic"] == ">=2.5"
        types = {c.path: c.type for c in ctx.config_files or []}
        assert types == {"pyproject.toml": "python", ".github/workflows/ci.yml": "ci"}

    @pytest.mark.asyncio
    async def test_historical_layer(self, project: Path):
        analyzer = ContextAnalyzer(project, git_factory=FakeGit)
        ctx = await analyzer.build_full(_document(project))
        assert ctx.git_history is not None
        assert ctx.git_history.current_branch == "main"
        assert ctx.recent_changes == ["src/main.py"]
        assert ctx.team_patterns == ["Conventional Commits"]
        assert ctx.has_git_changes is True

    @pytest.mark.asyncio
    async def test_external_layer(self, project: Path):
        analyzer = ContextAnalyzer(project, git_factory=FailingGit, external=FakeExternal())
        ctx = await analyzer.build_full(_document(project))
        assert ctx.best_practices == ["Use type hints in python"]

    @pytest.mark.asyncio
    async def test_failing_external_provider_leaves_layer_empty(self, project: Path):
        analyzer = ContextAnalyzer(project, git_factory=FailingGit, external=FailingExternal())
        ctx = await analyzer.build_full(_document(project))
        assert ctx.current_function == "main"
        assert ctx.best_practices == []
        assert ctx.security_issues == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [b'project = "oops"\n', b"[project]\nname = \"\xff\xfe\"\n"])
    async def test_unreadable_manifest_does_not_break_build(self, project: Path, content: bytes):
        (project / "pyproject.toml").write_bytes(content)
        analyzer = ContextAnalyzer(project, git_factory=FailingGit)
        ctx = await analyzer.build_full(_document(project))
        assert ctx.current_function == "main"
        assert ctx.dependencies is not None
        assert ctx.dependencies.total == 0

    @pytest.mark.asyncio
    async def test_fast_build_reuses_project_layer(self, project: Path):
        analyzer = ContextAnalyzer(project, git_factory=FailingGit)
        doc = _document(project)

        fast = await analyzer.build_fast(doc)
        assert fast.project_structure is None
        assert fast.project_root == str(project.resolve())
        assert fast.current_function == "main"

        await analyzer.build_full(doc)
        fast = await analyzer.build_fast(doc)
        assert fast.project_structure is not None
        # fast builds never touch git
        assert fast.git_history is None

        analyzer.forget_project(project)
        assert (await analyzer.build_fast(doc)).project_structure is None

    @pytest.mark.asyncio
    async def test_selection(self, project: Path):
        analyzer = ContextAnalyzer(project, git_factory=FailingGit)
        doc = _document(project, selection=Range(start=Position(line=3), end=Position(line=3, character=10)))
        ctx = await analyzer.build_full(doc)
        assert ctx.selected_text == "def main()"
        assert ctx.selection_range is not None

    def test_empty_context(self, project: Path):
        ctx = ContextAnalyzer(project).empty_context()
        assert ctx.project_root == str(project.resolve())
        assert ctx.current_file is None

    def test_warning_diagnostics(self, project: Path):
        analyzer = ContextAnalyzer(project)
        doc = _document(project, diagnostics=[
            Diagnostic(message="unused", severity=DiagnosticSeverity.WARNING),
        ])
        quality = analyzer._quality_layer(doc)
        assert quality["has_errors"] is False
        assert quality["has_warnings"] is True
        assert quality["error_messages"] is None
