"""Pydantic models for context snapshots and editor documents.

``ContextData`` is the layered snapshot every agent consumes.  It is
frozen: a snapshot is built once per request and any change (for example
context updates propagated along an agent chain) goes through
``model_copy(update=...)``.

Every field is optional.  ``None`` means *unknown*, never *false*, so
consumers must not treat a missing flag as a negative signal.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Editor primitives
# ---------------------------------------------------------------------------

class Position(BaseModel):
    """Zero-based line/character position."""
    line: int = Field(default=0, ge=0)
    character: int = Field(default=0, ge=0)


class Range(BaseModel):
    start: Position = Field(default_factory=Position)
    end: Position = Field(default_factory=Position)


class DiagnosticSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"


class Diagnostic(BaseModel):
    """A compiler/linter marker attached to a document."""
    severity: DiagnosticSeverity = DiagnosticSeverity.ERROR
    message: str
    line: int = 0


_EXTENSION_LANGUAGES: dict[str, str] = {
    ".py": "python",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".rb": "ruby",
    ".md": "markdown",
    ".json": "json",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".toml": "toml",
    ".sh": "shellscript",
}


class EditorDocument(BaseModel):
    """The active document as handed over by the editor.

    ``uri`` is the stable identity used as the context-cache key.
    """

    uri: str
    file_name: str
    text: str = ""
    language_id: str = "plaintext"
    cursor: Position = Field(default_factory=Position)
    selection: Optional[Range] = None
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    version: int = 0

    @property
    def lines(self) -> list[str]:
        return self.text.split("\n")

    @property
    def selected_text(self) -> str:
        """Text covered by the selection, or an empty string."""
        if self.selection is None:
            return ""
        lines = self.lines
        start, end = self.selection.start, self.selection.end
        if (start.line, start.character) == (end.line, end.character):
            return ""
        if start.line == end.line:
            return lines[start.line][start.character:end.character]
        parts = [lines[start.line][start.character:]]
        parts.extend(lines[start.line + 1:end.line])
        if end.line < len(lines):
            parts.append(lines[end.line][:end.character])
        return "\n".join(parts)

    @classmethod
    def from_path(
        cls,
        path: str | Path,
        *,
        line: int = 0,
        diagnostics: list[Diagnostic] | None = None,
    ) -> "EditorDocument":
        """Load a document from disk with the cursor on *line*."""
        p = Path(path).expanduser().resolve()
        text = p.read_text(encoding="utf-8", errors="replace")
        max_line = max(text.count("\n"), 0)
        return cls(
            uri=p.as_uri(),
            file_name=str(p),
            text=text,
            language_id=_EXTENSION_LANGUAGES.get(p.suffix.lower(), "plaintext"),
            cursor=Position(line=min(max(line, 0), max_line)),
            diagnostics=diagnostics or [],
        )


# ---------------------------------------------------------------------------
# Project layer
# ---------------------------------------------------------------------------

class FileInfo(BaseModel):
    path: str                      # relative, forward slashes
    size: int = 0
    type: str = ""                 # extension without the dot
    last_modified: Optional[float] = None


class ConfigFile(BaseModel):
    path: str
    type: str = "other"            # npm, typescript, linting, python, ...
    content: Any = None


class ProjectStructure(BaseModel):
    directories: list[str] = Field(default_factory=list)
    files: list[FileInfo] = Field(default_factory=list)
    entry_points: list[str] = Field(default_factory=list)
    test_files: list[str] = Field(default_factory=list)
    config_files: list[str] = Field(default_factory=list)


class Dependencies(BaseModel):
    """Name → version-string maps parsed from the project manifest(s)."""
    production: dict[str, str] = Field(default_factory=dict)
    development: dict[str, str] = Field(default_factory=dict)
    peer_dependencies: dict[str, str] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.production) + len(self.development) + len(self.peer_dependencies)


# ---------------------------------------------------------------------------
# Historical layer
# ---------------------------------------------------------------------------

class CommitInfo(BaseModel):
    hash: str
    message: str = ""
    author: str = ""
    date: str = ""
    files: list[str] = Field(default_factory=list)


class GitContext(BaseModel):
    current_branch: str = ""
    recent_commits: list[CommitInfo] = Field(default_factory=list)
    uncommitted_changes: list[str] = Field(default_factory=list)
    remote_url: Optional[str] = None


# ---------------------------------------------------------------------------
# External layer
# ---------------------------------------------------------------------------

class LibraryInfo(BaseModel):
    name: str
    current_version: str = ""
    latest_version: Optional[str] = None
    deprecated: bool = False


class SecurityIssue(BaseModel):
    id: str
    package: str = ""
    severity: str = "info"
    title: str = ""
    url: Optional[str] = None


# ---------------------------------------------------------------------------
# The snapshot
# ---------------------------------------------------------------------------

class ContextData(BaseModel):
    """Layered snapshot of what the developer is looking at."""

    model_config = ConfigDict(frozen=True)

    # -- Immediate --------------------------------------------------------
    current_file: Optional[str] = None
    current_function: Optional[str] = None
    current_class: Optional[str] = None
    cursor_position: Optional[Position] = None
    selected_text: Optional[str] = None
    selection_range: Optional[Range] = None
    surrounding_code: Optional[str] = None
    language: Optional[str] = None

    # -- Project ----------------------------------------------------------
    project_root: Optional[str] = None
    project_name: Optional[str] = None
    project_structure: Optional[ProjectStructure] = None
    dependencies: Optional[Dependencies] = None
    config_files: Optional[list[ConfigFile]] = None
    architectural_patterns: Optional[list[str]] = None

    # -- Historical -------------------------------------------------------
    git_history: Optional[GitContext] = None
    recent_changes: Optional[list[str]] = None
    team_patterns: Optional[list[str]] = None

    # -- External ---------------------------------------------------------
    library_versions: Optional[list[LibraryInfo]] = None
    security_issues: Optional[list[SecurityIssue]] = None
    best_practices: Optional[list[str]] = None

    # -- Derived flags ----------------------------------------------------
    has_errors: Optional[bool] = None
    has_warnings: Optional[bool] = None
    missing_documentation: Optional[bool] = None
    has_git_changes: Optional[bool] = None
    is_config_file: Optional[bool] = None
    is_architectural_file: Optional[bool] = None
    complexity: Optional[int] = None

    # -- Request extras ---------------------------------------------------
    error_messages: Optional[list[str]] = None
    diff: Optional[str] = None
    file_path: Optional[str] = None
    problem_statement: Optional[str] = None
    refactor_intent: Optional[str] = None
    command: Optional[str] = None
    args: Optional[dict[str, Any]] = None
    include_project_structure: Optional[bool] = None
    include_git_history: Optional[bool] = None

    @property
    def file_count(self) -> Optional[int]:
        if self.project_structure is None:
            return None
        return len(self.project_structure.files)

    @property
    def file_name(self) -> Optional[str]:
        if not self.current_file:
            return None
        return self.current_file.replace("\\", "/").rsplit("/", 1)[-1]

    def has_field(self, name: str) -> bool:
        """True when *name* is set and non-empty.

        Empty strings, lists and dicts count as absent, as do empty
        project structures (no files).
        """
        value = getattr(self, name, None)
        if value is None:
            return False
        if isinstance(value, str):
            return bool(value.strip())
        if isinstance(value, (list, dict)):
            return bool(value)
        if isinstance(value, ProjectStructure):
            return bool(value.files)
        return True

    def summary(self) -> dict[str, Any]:
        """Short summary used by the audit trail (never the full snapshot)."""
        return {
            "currentFile": self.current_file,
            "language": self.language,
            "projectName": self.project_name,
            "hasErrorMessages": bool(self.error_messages),
        }


# ---------------------------------------------------------------------------
# Outgoing completion request
# ---------------------------------------------------------------------------

class CompletionRequest(BaseModel):
    """Everything that leaves the process for one completion call."""

    prompt: str
    system: Optional[str] = None
    context: Optional[ContextData] = None
    agent_type: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    stream: bool = False
