"""Line-oriented parsing of free-text completion replies.

Every agent turns the model's reply into structured data through
``ResponseParser.parse(text) -> ParsedResponse``.  The heuristics are
deliberately simple and all live in this module, so they can be
hardened (or replaced by a constrained output schema) without touching
the agents or the orchestrator.

Rules
-----
- Markers are case-insensitive keyword prefixes (``issue:``,
  ``suggestion:``, ``alternative:`` ...).  Leading list bullets,
  numbering and ``**`` emphasis are ignored when matching.
- An issue marker flushes the open finding and starts a new one.
- The first non-empty, non-marker line after an issue marker becomes the
  finding's description; a finding takes at most one such line.
- Fenced code blocks are edit boundaries.  Each fence yields one
  ``CodeBlock`` and lines inside a fence are never markers.
- Nothing here raises on odd input: a reply without markers simply
  produces empty lists, with the full text kept in ``raw_text``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from pydantic import BaseModel, Field

from .base import Alternative, AnalysisCategory, AnalysisResult, Location, Severity

CONFIDENCE_MIN = 0.3
CONFIDENCE_MAX = 0.95

_BULLET_RE = re.compile(r"^(?:[-*+•>]+|\d+[.)]|#+)(?:\s+|$)")
_EMPHASIS_RE = re.compile(r"\*\*|__")


# ---------------------------------------------------------------------------
# Parsed output
# ---------------------------------------------------------------------------

class Finding(BaseModel):
    title: str
    description: str = ""
    severity: Severity = Severity.INFO
    suggestion: str | None = None


class ParsedAlternative(BaseModel):
    title: str
    description: str = ""
    pros: list[str] = Field(default_factory=list)
    cons: list[str] = Field(default_factory=list)


class CodeBlock(BaseModel):
    language: str = ""
    code: str


class ParsedResponse(BaseModel):
    """Structured view of one reply."""

    raw_text: str = ""
    findings: list[Finding] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)
    alternatives: list[ParsedAlternative] = Field(default_factory=list)
    code_blocks: list[CodeBlock] = Field(default_factory=list)
    prose: list[str] = Field(default_factory=list)

    @property
    def is_structured(self) -> bool:
        return bool(
            self.findings or self.suggestions or self.notes
            or self.alternatives or self.code_blocks
        )

    def analysis_results(
        self,
        category: AnalysisCategory,
        file_path: str | None = None,
    ) -> list[AnalysisResult]:
        location = Location(file=file_path) if file_path else None
        return [
            AnalysisResult(
                category=category,
                severity=f.severity,
                title=f.title,
                description=f.description,
                location=location,
                suggestion=f.suggestion,
            )
            for f in self.findings
        ]

    def note_results(self, title: str) -> list[AnalysisResult]:
        """Notes become info-level maintainability findings."""
        return [
            AnalysisResult(
                category=AnalysisCategory.MAINTAINABILITY,
                severity=Severity.INFO,
                title=title,
                description=note,
            )
            for note in self.notes
        ]

    def parsed_alternatives(self) -> list[Alternative]:
        return [
            Alternative(title=a.title, description=a.description, pros=a.pros, cons=a.cons)
            for a in self.alternatives
        ]


# ---------------------------------------------------------------------------
# Marker configuration
# ---------------------------------------------------------------------------

_DEFAULT_SEVERITY_KEYWORDS: dict[Severity, tuple[str, ...]] = {
    Severity.CRITICAL: ("critical", "severe"),
    Severity.ERROR: ("error", "major"),
    Severity.WARNING: ("warning", "minor"),
}


@dataclass(frozen=True)
class MarkerSet:
    """Which prefixes an agent's replies use for each record kind."""

    issue: tuple[str, ...] = ("issue:", "problem:")
    suggestion: tuple[str, ...] = ("suggestion:", "recommendation:")
    note: tuple[str, ...] = ("note:", "important:")
    alternative: tuple[str, ...] = ("alternative:",)
    pro: tuple[str, ...] = ("pro:", "pros:")
    con: tuple[str, ...] = ("con:", "cons:")
    severity_keywords: dict[Severity, tuple[str, ...]] = field(
        default_factory=lambda: dict(_DEFAULT_SEVERITY_KEYWORDS)
    )

    def with_severity(self, extra: dict[Severity, tuple[str, ...]]) -> "MarkerSet":
        merged = {
            sev: self.severity_keywords.get(sev, ()) + extra.get(sev, ())
            for sev in (Severity.CRITICAL, Severity.ERROR, Severity.WARNING)
        }
        return MarkerSet(
            issue=self.issue,
            suggestion=self.suggestion,
            note=self.note,
            alternative=self.alternative,
            pro=self.pro,
            con=self.con,
            severity_keywords=merged,
        )


def infer_severity(line: str, keywords: dict[Severity, tuple[str, ...]] | None = None) -> Severity:
    """Keyword-based severity: critical beats error beats warning."""
    keywords = keywords or _DEFAULT_SEVERITY_KEYWORDS
    lowered = line.lower()
    for severity in (Severity.CRITICAL, Severity.ERROR, Severity.WARNING):
        if any(word in lowered for word in keywords.get(severity, ())):
            return severity
    return Severity.INFO


def clamp_confidence(value: float) -> float:
    return max(CONFIDENCE_MIN, min(CONFIDENCE_MAX, value))


def code_confidence(code: str) -> float:
    """Score generated code from textual quality signals."""
    confidence = 0.7
    if "/**" in code or '"""' in code or "'''" in code:
        confidence += 0.1
    if re.search(r"\b(?:try|catch|except)\b", code):
        confidence += 0.1
    if re.search(r"\b(?:test|expect|assert)", code):
        confidence += 0.1
    if re.search(r"\b(?:interface|type)\b", code) or ":" in code:
        confidence += 0.05

    if re.search(r"\bany\b", code) or "TODO" in code or "FIXME" in code:
        confidence -= 0.1
    if len(code) < 50:
        confidence -= 0.1
    if len(code) > 2000:
        confidence -= 0.05
    return clamp_confidence(confidence)


def findings_confidence(count: int) -> float:
    """Score an analysis from the number of distinct findings."""
    if count <= 0:
        return CONFIDENCE_MIN
    if count < 3:
        return 0.6
    if count < 6:
        return 0.8
    return 0.9


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class ResponseParser:
    """Scans a reply line by line and accumulates open records."""

    def __init__(self, markers: MarkerSet | None = None) -> None:
        self.markers = markers or MarkerSet()

    def parse(self, text: str) -> ParsedResponse:
        result = ParsedResponse(raw_text=text or "")
        if not text:
            return result

        finding: Finding | None = None
        awaiting_title = False
        awaiting_description = False
        alternative: ParsedAlternative | None = None
        in_fence = False
        fence_lang = ""
        fence_lines: list[str] = []

        def flush_finding() -> None:
            nonlocal finding
            if finding is not None:
                result.findings.append(finding)
                finding = None

        def flush_alternative() -> None:
            nonlocal alternative
            if alternative is not None:
                result.alternatives.append(alternative)
                alternative = None

        for raw in text.splitlines():
            stripped = raw.strip()

            if stripped.startswith("```"):
                if in_fence:
                    result.code_blocks.append(
                        CodeBlock(language=fence_lang, code="\n".join(fence_lines))
                    )
                    in_fence = False
                    fence_lines = []
                else:
                    in_fence = True
                    fence_lang = stripped[3:].strip()
                continue
            if in_fence:
                fence_lines.append(raw)
                continue
            if not stripped:
                continue

            line = self._clean(stripped)
            if not line:
                continue
            kind, rest = self._match(line)

            if kind == "issue":
                flush_finding()
                severity = infer_severity(line, self.markers.severity_keywords)
                finding = Finding(title=rest, severity=severity)
                awaiting_title = not rest
                awaiting_description = True
            elif kind == "suggestion":
                if rest:
                    result.suggestions.append(rest)
                    if finding is not None and finding.suggestion is None:
                        finding.suggestion = rest
                awaiting_description = False
            elif kind == "note":
                if rest:
                    result.notes.append(rest)
                awaiting_description = False
            elif kind == "alternative":
                flush_alternative()
                alternative = ParsedAlternative(title=rest or "Alternative")
                awaiting_description = False
            elif kind == "pro":
                if alternative is not None and rest:
                    alternative.pros.append(rest)
            elif kind == "con":
                if alternative is not None and rest:
                    alternative.cons.append(rest)
            elif finding is not None and awaiting_title:
                finding.title = line
                awaiting_title = False
            elif finding is not None and awaiting_description:
                finding.description = line
                awaiting_description = False
            elif alternative is not None and not alternative.description:
                alternative.description = line
            else:
                result.prose.append(line)

        # An unterminated fence still delimits one block of code.
        if in_fence and fence_lines:
            result.code_blocks.append(
                CodeBlock(language=fence_lang, code="\n".join(fence_lines))
            )
        flush_finding()
        flush_alternative()
        return result

    @staticmethod
    def _clean(line: str) -> str:
        line = _BULLET_RE.sub("", line)
        return _EMPHASIS_RE.sub("", line).strip()

    def _match(self, line: str) -> tuple[str | None, str]:
        lowered = line.lower()
        for kind in ("issue", "suggestion", "note", "alternative", "pro", "con"):
            for prefix in getattr(self.markers, kind):
                if lowered.startswith(prefix):
                    return kind, line[len(prefix):].strip()
        return None, line
