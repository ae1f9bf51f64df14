"""Layered context snapshots for agent prompts.

``ContextAnalyzer`` assembles a ``ContextData`` from four layers:

immediate
    Current file, enclosing function/class, cursor, selection and the
    lines around the cursor.  Found by scanning upward for declaration
    keywords; this is a line heuristic, not a parser, and it can pick the
    wrong scope in nested code or multi-line signatures.
project
    File enumeration, entry points, test files, config files, parsed
    dependency manifests and folder-name architecture patterns.
historical
    Git branch, recent commits and uncommitted paths.  Any git failure
    leaves the layer empty (``git_history=None``).
external
    Library / advisory metadata, only when an ``ExternalContextProvider``
    is configured.

``build_full`` runs every layer; ``build_fast`` is for keystroke paths
and only reuses a project layer that an earlier full build produced.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tomllib
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Protocol

from .models import (
    ConfigFile,
    ContextData,
    Dependencies,
    DiagnosticSeverity,
    EditorDocument,
    FileInfo,
    GitContext,
    LibraryInfo,
    ProjectStructure,
    SecurityIssue,
)
from .vcs import GitClient, GitError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Heuristic tables
# ---------------------------------------------------------------------------

IGNORED_DIRECTORIES = frozenset({"node_modules", ".git", "dist", "build"})
MAX_PROJECT_FILES = 5000
MAX_CONFIG_BYTES = 64 * 1024
SURROUNDING_LINES = 10

_PROJECT_MARKERS = (".git", "package.json", "pyproject.toml", "setup.cfg")

_ENTRY_POINT_NAMES = frozenset({
    "index.js", "index.ts", "main.js", "main.ts", "app.js", "app.ts",
    "server.js", "server.ts", "main.py", "app.py", "__main__.py", "manage.py",
})

_TEST_MARKERS = (".test.", ".spec.", "__tests__", "/tests/")

_CONFIG_NAME_MARKERS = (
    "package.json", "tsconfig.json", ".eslintrc", ".prettierrc",
    "webpack.config", "vite.config", ".env", "docker", ".git",
    "pyproject.toml", "setup.cfg", "tox.ini", "requirements",
)

_CI_MARKERS = (
    ".github/workflows/", ".gitlab-ci", "jenkinsfile", ".circleci/",
    "azure-pipelines", ".travis.yml", "bitbucket-pipelines",
)

_ARCHITECTURAL_NAME_MARKERS = ("architecture", "design", "schema", "model", "interface", "type")

_COMPLEXITY_KEYWORDS = ("if", "else", "while", "for", "switch", "case", "catch", "&&", "||")
_COMPLEXITY_PATTERNS = tuple(
    re.compile(rf"\b{re.escape(kw)}\b") for kw in _COMPLEXITY_KEYWORDS
)

_FUNCTION_RE = re.compile(
    r"(?:async\s+)?(?:function|def)\s+(\w+)"
    r"|(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s*)?\("
    r"|(?:class|interface)\s+(\w+)",
    re.IGNORECASE,
)
_CLASS_RE = re.compile(r"class\s+(\w+)", re.IGNORECASE)
_DECLARATION_RE = re.compile(r"(?:function|def|class)\s+\w+")
_COMMENT_RE = re.compile(r"/\*\*|\*/|//|#")

_CONVENTIONAL_COMMIT_RE = re.compile(
    r"^(feat|fix|docs|chore|refactor|test|ci|build|perf|style)(\([^)]*\))?!?:"
)
_REQUIREMENT_RE = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)(\[[^\]]*\])?\s*(.*)$")


# ---------------------------------------------------------------------------
# Pure helpers (independently testable)
# ---------------------------------------------------------------------------

def calculate_complexity(text: str) -> int:
    """1 + whole-word occurrences of each control-flow keyword.

    ``&&`` and ``||`` are escaped, so ``\\b&&\\b`` only counts operators
    written without spaces (``a&&b``).
    """
    return 1 + sum(len(p.findall(text)) for p in _COMPLEXITY_PATTERNS)


def check_missing_documentation(text: str) -> bool:
    declarations = len(_DECLARATION_RE.findall(text))
    comments = len(_COMMENT_RE.findall(text))
    return declarations > 0 and comments < declarations * 0.5


def find_enclosing_function(lines: list[str], line: int) -> str | None:
    for i in range(min(line, len(lines) - 1), -1, -1):
        match = _FUNCTION_RE.search(lines[i])
        if match:
            return next(g for g in match.groups() if g)
    return None


def find_enclosing_class(lines: list[str], line: int) -> str | None:
    for i in range(min(line, len(lines) - 1), -1, -1):
        match = _CLASS_RE.search(lines[i])
        if match:
            return match.group(1)
    return None


def surrounding_code(lines: list[str], line: int, radius: int = SURROUNDING_LINES) -> str:
    if not lines:
        return ""
    start = max(0, line - radius)
    end = min(len(lines) - 1, line + radius)
    return "\n".join(lines[start:end + 1])


def is_test_file(path: str) -> bool:
    return any(marker in path for marker in _TEST_MARKERS)


def is_configuration_file(file_name: str) -> bool:
    return any(marker in file_name for marker in _CONFIG_NAME_MARKERS)


def is_ci_file(path: str) -> bool:
    lowered = path.lower()
    return any(marker in lowered for marker in _CI_MARKERS)


def is_architectural_file(file_name: str) -> bool:
    lowered = file_name.lower()
    return any(marker in lowered for marker in _ARCHITECTURAL_NAME_MARKERS)


def config_file_type(path: str) -> str:
    if is_ci_file(path):
        return "ci"
    name = PurePosixPath(path).name.lower()
    if "package.json" in name:
        return "npm"
    if "tsconfig" in name:
        return "typescript"
    if "eslint" in name or name in {".flake8", "ruff.toml", ".pylintrc"}:
        return "linting"
    if "prettier" in name or name == ".editorconfig":
        return "formatting"
    if "webpack" in name or "vite" in name:
        return "bundler"
    if ".env" in name:
        return "environment"
    if "docker" in name:
        return "containerization"
    if name in {"pyproject.toml", "setup.cfg", "tox.ini"} or name.startswith("requirements"):
        return "python"
    return "other"


def detect_architectural_patterns(directories: list[str]) -> list[str]:
    names = {PurePosixPath(d).name for d in directories}
    patterns: list[str] = []
    if "src" in names and "components" in names:
        patterns.append("Component-based Architecture")
    if {"controllers", "models", "views"} <= names:
        patterns.append("MVC Pattern")
    if "services" in names and "repositories" in names:
        patterns.append("Service Layer Pattern")
    if any("micro" in n for n in names):
        patterns.append("Microservices Architecture")
    return patterns


def detect_team_patterns(messages: list[str]) -> list[str]:
    if not messages:
        return []
    conventional = sum(1 for m in messages if _CONVENTIONAL_COMMIT_RE.match(m))
    return ["Conventional Commits"] if conventional * 2 >= len(messages) else []


def find_project_root(file_path: str | Path) -> Path:
    """Closest ancestor holding a project marker, else the file's directory."""
    path = Path(file_path).resolve()
    start = path if path.is_dir() else path.parent
    for candidate in (start, *start.parents):
        if any((candidate / marker).exists() for marker in _PROJECT_MARKERS):
            return candidate
    return start


# ---------------------------------------------------------------------------
# Manifest parsing (fail soft)
# ---------------------------------------------------------------------------

def _split_requirement(requirement: str) -> tuple[str, str] | None:
    requirement = requirement.split(";", 1)[0].split("#", 1)[0].strip()
    if not requirement or requirement.startswith("-"):
        return None
    match = _REQUIREMENT_RE.match(requirement)
    if not match:
        return None
    return match.group(1), match.group(3).strip() or "*"


def parse_package_json(text: str) -> Dependencies:
    try:
        data = json.loads(text)
        return Dependencies(
            production=dict(data.get("dependencies") or {}),
            development=dict(data.get("devDependencies") or {}),
            peer_dependencies=dict(data.get("peerDependencies") or {}),
        )
    except (ValueError, TypeError, AttributeError) as exc:
        logger.warning("Failed to parse package.json: %s", exc)
        return Dependencies()


def _table(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _array(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def parse_pyproject(text: str) -> Dependencies:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        logger.warning("Failed to parse pyproject.toml: %s", exc)
        return Dependencies()

    # Sections of the wrong shape are skipped, not fatal.
    deps = Dependencies()
    project = _table(data.get("project"))
    for requirement in _array(project.get("dependencies")):
        parsed = _split_requirement(str(requirement))
        if parsed:
            deps.production[parsed[0]] = parsed[1]
    for group in _table(project.get("optional-dependencies")).values():
        for requirement in _array(group):
            parsed = _split_requirement(str(requirement))
            if parsed:
                deps.development[parsed[0]] = parsed[1]

    poetry = _table(_table(data.get("tool")).get("poetry"))
    for name, version in _table(poetry.get("dependencies")).items():
        if name != "python":
            deps.production[name] = version if isinstance(version, str) else "*"
    for group in _table(poetry.get("group")).values():
        for name, version in _table(_table(group).get("dependencies")).items():
            deps.development[name] = version if isinstance(version, str) else "*"
    return deps


def parse_requirements(text: str) -> Dependencies:
    deps = Dependencies()
    for line in text.splitlines():
        parsed = _split_requirement(line)
        if parsed:
            deps.production[parsed[0]] = parsed[1]
    return deps


_MANIFEST_PARSERS: dict[str, Callable[[str], Dependencies]] = {
    "package.json": parse_package_json,
    "pyproject.toml": parse_pyproject,
    "requirements.txt": parse_requirements,
}


# ---------------------------------------------------------------------------
# External layer
# ---------------------------------------------------------------------------

class ExternalContextProvider(Protocol):
    async def library_versions(self, dependencies: Dependencies) -> list[LibraryInfo]: ...

    async def security_issues(self, dependencies: Dependencies) -> list[SecurityIssue]: ...

    async def best_practices(self, language: str | None) -> list[str]: ...


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class ContextAnalyzer:
    """Builds ``ContextData`` snapshots for editor documents.

    Parameters
    ----------
    project_root
        Fixed workspace root.  When omitted, the root is discovered per
        document by walking up to the nearest project marker.
    git_factory
        Builds the git collaborator for a root (swapped out in tests).
    external
        Optional provider for the external layer.
    """

    def __init__(
        self,
        project_root: str | Path | None = None,
        *,
        git_factory: Callable[[Path], GitClient] = GitClient,
        external: ExternalContextProvider | None = None,
    ) -> None:
        self.project_root = Path(project_root).resolve() if project_root else None
        self._git_factory = git_factory
        self._external = external
        self._project_layers: dict[Path, dict[str, Any]] = {}

    def root_for(self, document: EditorDocument) -> Path:
        return self.project_root or find_project_root(document.file_name)

    # -- Public API ---------------------------------------------------------

    async def build_full(self, document: EditorDocument) -> ContextData:
        """All four layers plus derived flags."""
        root = self.root_for(document)
        immediate = self._immediate_layer(document)
        project = await asyncio.to_thread(self._project_layer, root)
        self._project_layers[root] = project
        historical = await self._historical_layer(root)
        external = await self._external_layer(project["dependencies"], document.language_id)
        quality = self._quality_layer(document)

        git: GitContext | None = historical["git_history"]
        quality["has_git_changes"] = bool(git.uncommitted_changes) if git is not None else None

        return ContextData(**immediate, **project, **historical, **external, **quality)

    async def build_fast(self, document: EditorDocument) -> ContextData:
        """Immediate layer and derived flags; project layer only if cached."""
        root = self.root_for(document)
        immediate = self._immediate_layer(document)
        project = self._project_layers.get(root, {"project_root": str(root)})
        return ContextData(**immediate, **project, **self._quality_layer(document))

    def empty_context(self) -> ContextData:
        """Snapshot used when no document is active."""
        root = str(self.project_root) if self.project_root else None
        return ContextData(project_root=root)

    def forget_project(self, root: str | Path | None = None) -> None:
        """Drop cached project layers (all, or one root)."""
        if root is None:
            self._project_layers.clear()
        else:
            self._project_layers.pop(Path(root).resolve(), None)

    # -- Layers -------------------------------------------------------------

    def _immediate_layer(self, document: EditorDocument) -> dict[str, Any]:
        lines = document.lines
        line = document.cursor.line
        selected = document.selected_text
        return {
            "current_file": document.file_name,
            "current_function": find_enclosing_function(lines, line),
            "current_class": find_enclosing_class(lines, line),
            "cursor_position": document.cursor,
            "selected_text": selected or None,
            "selection_range": document.selection if selected else None,
            "surrounding_code": surrounding_code(lines, line),
            "language": document.language_id,
        }

    def _project_layer(self, root: Path) -> dict[str, Any]:
        structure = self._scan_structure(root)
        return {
            "project_root": str(root),
            "project_name": root.name,
            "project_structure": structure,
            "dependencies": self._read_dependencies(root),
            "config_files": self._read_config_files(root, structure.config_files),
            "architectural_patterns": detect_architectural_patterns(structure.directories),
        }

    async def _historical_layer(self, root: Path) -> dict[str, Any]:
        empty = {"git_history": None, "recent_changes": None, "team_patterns": None}
        try:
            git = self._git_factory(root)
            history = await git.context()
            recent = await git.recently_changed_files()
        except GitError as exc:
            logger.debug("No historical context for %s: %s", root, exc)
            return empty
        return {
            "git_history": history,
            "recent_changes": recent,
            "team_patterns": detect_team_patterns([c.message for c in history.recent_commits]),
        }

    async def _external_layer(self, dependencies: Dependencies, language: str | None) -> dict[str, Any]:
        empty = {"library_versions": [], "security_issues": [], "best_practices": []}
        if self._external is None:
            return empty
        try:
            return {
                "library_versions": await self._external.library_versions(dependencies),
                "security_issues": await self._external.security_issues(dependencies),
                "best_practices": await self._external.best_practices(language),
            }
        except Exception:
            logger.warning("External context provider failed", exc_info=True)
            return empty

    def _quality_layer(self, document: EditorDocument) -> dict[str, Any]:
        text = document.text
        name = Path(document.file_name).name
        errors = [d for d in document.diagnostics if d.severity == DiagnosticSeverity.ERROR]
        warnings = [d for d in document.diagnostics if d.severity == DiagnosticSeverity.WARNING]
        return {
            "has_errors": bool(errors),
            "has_warnings": bool(warnings),
            "error_messages": [d.message for d in errors] or None,
            "missing_documentation": check_missing_documentation(text),
            "is_config_file": is_configuration_file(name),
            "is_architectural_file": is_architectural_file(name),
            "complexity": calculate_complexity(text),
        }

    # -- Filesystem ---------------------------------------------------------

    def _scan_structure(self, root: Path) -> ProjectStructure:
        directories: list[str] = []
        files: list[FileInfo] = []
        for current, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRECTORIES)
            rel_dir = Path(current).relative_to(root).as_posix()
            if rel_dir != ".":
                directories.append(rel_dir)
            for filename in sorted(filenames):
                full = Path(current) / filename
                rel = full.relative_to(root).as_posix()
                try:
                    stat = full.stat()
                except OSError:
                    continue
                files.append(FileInfo(
                    path=rel,
                    size=stat.st_size,
                    type=full.suffix.lstrip("."),
                    last_modified=stat.st_mtime,
                ))
                if len(files) >= MAX_PROJECT_FILES:
                    logger.info("Stopped enumerating %s after %d files", root, MAX_PROJECT_FILES)
                    break
            if len(files) >= MAX_PROJECT_FILES:
                break

        return ProjectStructure(
            directories=directories,
            files=files,
            entry_points=[f.path for f in files if PurePosixPath(f.path).name in _ENTRY_POINT_NAMES],
            test_files=[f.path for f in files if is_test_file("/" + f.path)],
            config_files=[
                f.path for f in files
                if is_ci_file(f.path) or ("/" not in f.path and is_configuration_file(f.path))
            ],
        )

    def _read_dependencies(self, root: Path) -> Dependencies:
        merged = Dependencies()
        for name, parser in _MANIFEST_PARSERS.items():
            path = root / name
            if not path.is_file():
                continue
            try:
                deps = parser(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Cannot read %s: %s", path, exc)
                continue
            merged.production.update(deps.production)
            merged.development.update(deps.development)
            merged.peer_dependencies.update(deps.peer_dependencies)
        return merged

    def _read_config_files(self, root: Path, paths: list[str]) -> list[ConfigFile]:
        configs: list[ConfigFile] = []
        for rel in paths:
            full = root / rel
            content: Any = None
            try:
                if full.stat().st_size <= MAX_CONFIG_BYTES:
                    text = full.read_text(encoding="utf-8")
                    content = json.loads(text) if rel.endswith(".json") else text
            except (OSError, UnicodeDecodeError, ValueError):
                content = None
            configs.append(ConfigFile(path=rel, type=config_file_type(rel), content=content))
        return configs
