"""pairmind CLI — run pair-programming agents against files on disk.

Usage:
    pairmind context app.py --line 42
    pairmind suggest app.py
    pairmind run bughunter app.py --line 42
    pairmind chain codesmith docguru --file app.py
    pairmind audit --limit 20
    pairmind privacy mode enhanced
    pairmind ping
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table as RichTable

from . import __version__
from .agents.base import AgentResult, AgentType, CodeChange, DocumentationOutput
from .agents.privacy import PrivacyMode
from .config import WorkspaceConfig
from .core.models import EditorDocument
from .session import PairSession

console = Console()

_AGENT_CHOICES = [t.value for t in AgentType]

_LEVEL_STYLES = {
    "info": "",
    "warning": "yellow",
    "error": "bold red",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ---------------------------------------------------------------------------
# Console-backed editor adapter
# ---------------------------------------------------------------------------

class ConsoleEditor:
    """Shows results on the console; writes documentation when allowed."""

    def __init__(self, output_root: Path | None = None) -> None:
        self.output_root = output_root or Path.cwd()
        self.streamed: list[str] = []

    def sink(self, chunk: str) -> None:
        self.streamed.append(chunk)
        console.print(chunk, end="", markup=False, highlight=False)

    async def apply_code_changes(self, changes: list[CodeChange]) -> None:
        for change in changes:
            title = f"{change.type.value} → {change.file_path} (confidence {change.confidence:.2f})"
            console.print(Panel(
                Syntax(change.new_text or "", _lexer_for(change.file_path), line_numbers=False),
                title=title,
                border_style="cyan",
            ))

    async def write_documentation(self, docs: list[DocumentationOutput]) -> None:
        for doc in docs:
            target = Path(doc.path)
            if not target.is_absolute():
                target = self.output_root / target
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(doc.content, encoding="utf-8")
            console.print(f"[green]Wrote[/] {target}")

    async def show_message(self, message: str, *, level: str = "info") -> None:
        if level == "info" and self.streamed and message.strip() == "".join(self.streamed).strip():
            return
        style = _LEVEL_STYLES.get(level, "")
        console.print(message, style=style or None, markup=False)

    async def show_suggestions(self, suggestions: list[str]) -> None:
        console.print("\n[bold]Suggestions:[/]")
        for item in suggestions:
            console.print(f"  • {item}", markup=False)


def _lexer_for(path: str) -> str:
    suffix = Path(path).suffix.lstrip(".")
    return {"py": "python", "ts": "typescript", "js": "javascript", "yml": "yaml"}.get(suffix, suffix or "text")


def _workspace(ctx: click.Context) -> WorkspaceConfig:
    root = ctx.obj.get("workspace")
    return WorkspaceConfig(root=Path(root)) if root else WorkspaceConfig()


def _session(ctx: click.Context, editor: ConsoleEditor | None = None, project_root: Path | None = None) -> PairSession:
    return PairSession.create(_workspace(ctx), project_root=project_root, editor=editor)


def _document(file: str, line: int) -> EditorDocument:
    # --line is 1-based on the command line, positions are 0-based.
    return EditorDocument.from_path(file, line=max(line - 1, 0))


def _print_result(result: AgentResult) -> None:
    status = "[green]✓[/]" if result.success else "[red]✗[/]"
    confidence = f"{result.confidence:.2f}" if result.confidence is not None else "—"
    console.print(
        f"\n{status} [bold]{getattr(result.agent_type, 'value', result.agent_type)}[/] "
        f"in {result.execution_time:.0f} ms, confidence {confidence}"
    )
    for step in result.next_steps:
        console.print(f"  [dim]next:[/] {step}", markup=True, highlight=False)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(version=__version__, prog_name="pairmind")
@click.option(
    "--workspace",
    "workspace_path",
    type=click.Path(),
    default=None,
    help="Custom workspace root (default: ~/.pairmind).",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Verbose logging.")
@click.pass_context
def main(ctx: click.Context, workspace_path: str | None, verbose: bool):
    """pairmind — context-aware AI pair-programming agents."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["workspace"] = workspace_path


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--line", type=int, default=1, help="Cursor line (1-based).")
@click.option("--fast", is_flag=True, default=False, help="Skip project scan and git queries.")
@click.pass_context
def context(ctx: click.Context, file: str, line: int, fast: bool):
    """Show the context snapshot for FILE."""
    session = _session(ctx)
    snapshot = asyncio.run(session.get_context(_document(file, line), fast=fast))

    table = RichTable(title=f"Context — {snapshot.file_name}", show_lines=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    git = snapshot.git_history
    rows: list[tuple[str, Any]] = [
        ("Language", snapshot.language),
        ("Function", snapshot.current_function),
        ("Class", snapshot.current_class),
        ("Project", snapshot.project_name),
        ("Root", snapshot.project_root),
        ("Files", snapshot.file_count),
        ("Patterns", ", ".join(snapshot.architectural_patterns or []) or None),
        ("Dependencies", snapshot.dependencies.total if snapshot.dependencies else None),
        ("Branch", git.current_branch if git else None),
        ("Uncommitted", len(git.uncommitted_changes) if git else None),
        ("Team patterns", ", ".join(snapshot.team_patterns or []) or None),
        ("Errors / warnings", f"{snapshot.has_errors} / {snapshot.has_warnings}"),
        ("Missing docs", snapshot.missing_documentation),
        ("Config file", snapshot.is_config_file),
        ("Architectural file", snapshot.is_architectural_file),
        ("Complexity", snapshot.complexity),
    ]
    for name, value in rows:
        table.add_row(name, "—" if value is None else str(value))
    console.print(table)


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--line", type=int, default=1, help="Cursor line (1-based).")
@click.pass_context
def suggest(ctx: click.Context, file: str, line: int):
    """Rank the agents for FILE."""
    session = _session(ctx)
    suggestions = asyncio.run(session.suggest(_document(file, line)))

    table = RichTable(title="Agent Suggestions")
    table.add_column("Agent", style="bold cyan")
    table.add_column("Score", justify="right")
    table.add_column("Reasoning", style="dim")
    for s in suggestions:
        table.add_row(s.agent_type.value, f"{s.confidence:.2f}", s.reasoning or "—")
    console.print(table)


@main.command()
@click.argument("agent", type=click.Choice(_AGENT_CHOICES, case_sensitive=False))
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--line", type=int, default=1, help="Cursor line (1-based).")
@click.option("--command", "agent_command", default=None, help="Task hint passed to the agent.")
@click.option("--problem", default=None, help="Problem statement or question.")
@click.option("--write-docs", is_flag=True, default=False, help="Write generated documentation files.")
@click.pass_context
def run(
    ctx: click.Context,
    agent: str,
    file: str,
    line: int,
    agent_command: str | None,
    problem: str | None,
    write_docs: bool,
):
    """Run AGENT on FILE."""
    document = _document(file, line)
    editor = ConsoleEditor()
    session = _session(ctx, editor)
    editor.output_root = session.analyzer.root_for(document)

    extras: dict[str, Any] = {}
    if agent_command:
        extras["command"] = agent_command
    if problem:
        extras["problem_statement"] = problem

    async def _go() -> AgentResult:
        try:
            return await session.run_agent(
                agent, document, extras=extras, sink=editor.sink, write_docs=write_docs,
            )
        finally:
            await session.dispose()

    result = asyncio.run(_go())
    _print_result(result)
    if not result.success:
        raise SystemExit(1)


@main.command()
@click.argument("agents", nargs=-1, required=True, type=click.Choice(_AGENT_CHOICES, case_sensitive=False))
@click.option("--file", "file", type=click.Path(exists=True, dir_okay=False), required=True)
@click.option("--line", type=int, default=1, help="Cursor line (1-based).")
@click.pass_context
def chain(ctx: click.Context, agents: tuple[str, ...], file: str, line: int):
    """Run AGENTS in order, passing context updates along."""
    editor = ConsoleEditor()
    session = _session(ctx, editor)

    async def _go() -> list[AgentResult]:
        try:
            return await session.run_chain(list(agents), _document(file, line))
        finally:
            await session.dispose()

    results = asyncio.run(_go())
    for result in results:
        _print_result(result)
    if len(results) < len(agents):
        console.print(f"[yellow]Chain stopped after {len(results)} of {len(agents)} agents.[/]")
    if not results or not results[-1].success:
        raise SystemExit(1)


@main.command()
@click.option("--limit", type=int, default=20, help="Number of entries to show.")
@click.option("--clear", is_flag=True, default=False, help="Clear the audit log.")
@click.pass_context
def audit(ctx: click.Context, limit: int, clear: bool):
    """Show or clear the audit log."""
    session = _session(ctx)
    trail = session.orchestrator.audit
    if clear:
        asyncio.run(trail.clear())
        console.print("[green]Audit log cleared.[/]")
        return

    entries = asyncio.run(trail.get_audit_log(limit))
    if not entries:
        console.print("[dim]No audit entries.[/]")
        return

    table = RichTable(title="Audit Log")
    table.add_column("Time", style="dim")
    table.add_column("Type")
    table.add_column("Agent", style="bold cyan")
    table.add_column("OK", justify="center")
    table.add_column("Detail", style="dim")
    for e in entries:
        detail = e.get("error") or e.get("actionType") or ""
        table.add_row(
            str(e.get("timestamp", ""))[:19],
            e.get("type", ""),
            e.get("agentType", ""),
            "✓" if e.get("success") else "✗",
            str(detail),
        )
    console.print(table)


@main.command()
@click.pass_context
def ping(ctx: click.Context):
    """Test the connection to the completion service."""
    session = _session(ctx)
    ok = asyncio.run(session.test_connection())
    if ok:
        console.print(f"[green]Connected[/] to {session.settings.api_url} ({session.settings.model})")
    else:
        console.print(f"[red]Could not reach[/] {session.settings.api_url}")
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# Privacy
# ---------------------------------------------------------------------------

@main.group()
def privacy():
    """Inspect and change privacy settings."""
    pass


@privacy.command("show")
@click.pass_context
def privacy_show(ctx: click.Context):
    """Show the privacy mode and exclusion lists."""
    guard = _session(ctx).privacy
    console.print(f"[bold]Mode:[/] {guard.mode.value}")
    console.print("[bold]Excluded files:[/]")
    for path in guard.excluded_files or ["—"]:
        console.print(f"  {path}", markup=False)
    console.print("[bold]Excluded directories:[/]")
    for path in guard.excluded_directories or ["—"]:
        console.print(f"  {path}", markup=False)


@privacy.command("mode")
@click.argument("mode", type=click.Choice([m.value for m in PrivacyMode], case_sensitive=False))
@click.pass_context
def privacy_mode(ctx: click.Context, mode: str):
    """Set the privacy MODE."""
    _session(ctx).privacy.set_mode(PrivacyMode(mode.lower()))
    console.print(f"Privacy mode set to [bold]{mode.lower()}[/]")


@privacy.command("exclude-file")
@click.argument("path")
@click.pass_context
def privacy_exclude_file(ctx: click.Context, path: str):
    """Never send PATH to the completion service."""
    _session(ctx).privacy.add_excluded_file(path)
    console.print(f"Excluded file {path}")


@privacy.command("include-file")
@click.argument("path")
@click.pass_context
def privacy_include_file(ctx: click.Context, path: str):
    """Remove PATH from the excluded files."""
    _session(ctx).privacy.remove_excluded_file(path)
    console.print(f"Removed file exclusion {path}")


@privacy.command("exclude-dir")
@click.argument("path")
@click.pass_context
def privacy_exclude_dir(ctx: click.Context, path: str):
    """Never send files under directory PATH."""
    _session(ctx).privacy.add_excluded_directory(path)
    console.print(f"Excluded directory {path}")


@privacy.command("include-dir")
@click.argument("path")
@click.pass_context
def privacy_include_dir(ctx: click.Context, path: str):
    """Remove directory PATH from the exclusions."""
    _session(ctx).privacy.remove_excluded_directory(path)
    console.print(f"Removed directory exclusion {path}")


if __name__ == "__main__":
    main()
