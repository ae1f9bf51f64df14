"""Privacy gating for everything sent to the completion service.

Privacy modes
-------------
STANDARD
    Everything is allowed and nothing is scanned.  Scanning costs a regex
    pass over every prompt, so the least strict mode skips it entirely.

ENHANCED
    Requests and contexts are rejected when their text matches a
    sensitive-data pattern (API-key-shaped tokens, password / secret /
    credential assignments, email addresses, SSN- and credit-card-shaped
    digit groups) or when the originating file is excluded, either
    directly or by sitting under an excluded directory.

MAXIMUM
    Everything ENHANCED rejects, plus a filename veto: files whose name
    mentions ``secret``, ``password`` or ``credential``, or that end in
    ``.env``, are never sent.

Each mode rejects a superset of what the previous one rejects.  Gating
never raises; when no rule fires the answer is *allowed*.
"""

from __future__ import annotations

import logging
import re
from enum import Enum

from ..config import Settings, SettingsStore
from ..core.models import CompletionRequest, ContextData

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Privacy modes
# ---------------------------------------------------------------------------

class PrivacyMode(str, Enum):
    """Ordered from least to most strict."""
    STANDARD = "standard"
    ENHANCED = "enhanced"
    MAXIMUM = "maximum"

    @property
    def strictness(self) -> int:
        return _STRICTNESS[self]


_STRICTNESS: dict[PrivacyMode, int] = {
    PrivacyMode.STANDARD: 0,
    PrivacyMode.ENHANCED: 1,
    PrivacyMode.MAXIMUM: 2,
}


# ---------------------------------------------------------------------------
# Sensitive-data patterns
# ---------------------------------------------------------------------------

SENSITIVE_PATTERNS: tuple[re.Pattern[str], ...] = (
    # Generic key: 24+ key characters containing both a letter and a digit
    re.compile(r"\b(?=[A-Za-z0-9_-]*[A-Za-z])(?=[A-Za-z0-9_-]*\d)[A-Za-z0-9_-]{24,}\b"),
    re.compile(r"api[_-]?key\s*[:=]\s*['\"]?[\w-]+", re.IGNORECASE),
    re.compile(r"token\s*[:=]\s*['\"]?[\w-]+", re.IGNORECASE),
    re.compile(r"secret\s*[:=]\s*['\"]?[\w-]+", re.IGNORECASE),
    re.compile(r"password\s*[:=]\s*['\"]?[^'\"\s]+", re.IGNORECASE),
    re.compile(r"passwd\s*[:=]\s*['\"]?[^'\"\s]+", re.IGNORECASE),
    re.compile(r"credential\s*[:=]\s*['\"]?[^'\"\s]+", re.IGNORECASE),
    re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE),
    re.compile(r"\b(?:\d{3}-\d{2}-\d{4}|\d{9})\b"),
    re.compile(r"\b(?:\d{4}[- ]?){3}\d{4}\b"),
)

_VETOED_NAME_PARTS = ("secret", "password", "credential")


def contains_sensitive_data(text: str) -> bool:
    """True when *text* matches any sensitive-data pattern."""
    return any(p.search(text) for p in SENSITIVE_PATTERNS)


def _normalise(path: str) -> str:
    return path.replace("\\", "/").rstrip("/")


# ---------------------------------------------------------------------------
# Privacy guard
# ---------------------------------------------------------------------------

class PrivacyGuard:
    """Decides whether a request or context may leave the process.

    Exclusion lists are mutable at runtime.  Every mutation is persisted
    through the ``SettingsStore`` and takes effect on the next evaluation.
    """

    def __init__(
        self,
        mode: PrivacyMode = PrivacyMode.STANDARD,
        *,
        store: SettingsStore | None = None,
    ) -> None:
        self.mode = mode
        self._store = store
        self._excluded_files: list[str] = []
        self._excluded_directories: list[str] = []
        if store is not None:
            settings = store.settings
            self._excluded_files = list(settings.excluded_files)
            self._excluded_directories = list(settings.excluded_directories)

    @classmethod
    def from_settings(cls, settings: Settings, *, store: SettingsStore | None = None) -> "PrivacyGuard":
        guard = cls(PrivacyMode(settings.privacy_mode), store=store)
        guard.update_from_settings(settings)
        return guard

    # -- Gates --------------------------------------------------------------

    def can_process_request(self, request: CompletionRequest) -> bool:
        """Gate a single outgoing completion request."""
        if self.mode == PrivacyMode.STANDARD:
            return True

        if request.prompt and contains_sensitive_data(request.prompt):
            logger.info("Request blocked: prompt contains sensitive data")
            return False

        if request.context is not None:
            return self._file_allowed(request.context)
        return True

    def can_process_context(self, context: ContextData) -> bool:
        """Gate a context snapshot before any agent sees it."""
        if self.mode == PrivacyMode.STANDARD:
            return True

        if not self._file_allowed(context):
            return False

        for text in (context.surrounding_code, context.selected_text):
            if text and contains_sensitive_data(text):
                logger.info("Context blocked: code contains sensitive data")
                return False
        return True

    def block_reason(self, context: ContextData) -> str:
        """Human-readable explanation for a blocked context."""
        if context.current_file and self.is_excluded(context.current_file, context.project_root):
            return f"{context.file_name} is excluded by your privacy settings."
        if self.mode == PrivacyMode.MAXIMUM and context.file_name and self._vetoed_name(context.file_name):
            return f"{context.file_name} looks like a secrets file and maximum privacy mode is on."
        return (
            f"The code contains data that looks sensitive (keys, passwords, personal data) "
            f"and privacy mode is '{self.mode.value}'."
        )

    def _file_allowed(self, context: ContextData) -> bool:
        path = context.current_file
        if not path:
            return True
        if self.is_excluded(path, context.project_root):
            logger.info("Blocked excluded path %s", path)
            return False
        if self.mode == PrivacyMode.MAXIMUM and self._vetoed_name(context.file_name or ""):
            logger.info("Blocked sensitive file name %s", path)
            return False
        return True

    @staticmethod
    def _vetoed_name(name: str) -> bool:
        lowered = name.lower()
        return any(part in lowered for part in _VETOED_NAME_PARTS) or lowered.endswith(".env")

    # -- Exclusions ---------------------------------------------------------

    def is_excluded(self, path: str, project_root: str | None = None) -> bool:
        """True when *path* is an excluded file or lies under an excluded dir.

        Relative exclusion entries are resolved against *project_root*.
        """
        target = _normalise(path)
        for entry in self._excluded_files:
            if target in self._candidates(entry, project_root):
                return True
        for entry in self._excluded_directories:
            for directory in self._candidates(entry, project_root):
                if target == directory or target.startswith(directory + "/"):
                    return True
        return False

    @staticmethod
    def _candidates(entry: str, project_root: str | None) -> list[str]:
        norm = _normalise(entry)
        out = [norm]
        if project_root and not norm.startswith("/") and ":" not in norm:
            out.append(f"{_normalise(project_root)}/{norm}")
        return out

    @property
    def excluded_files(self) -> list[str]:
        return list(self._excluded_files)

    @property
    def excluded_directories(self) -> list[str]:
        return list(self._excluded_directories)

    def add_excluded_file(self, path: str) -> None:
        if path not in self._excluded_files:
            self._excluded_files.append(path)
            self._persist()

    def remove_excluded_file(self, path: str) -> None:
        if path in self._excluded_files:
            self._excluded_files.remove(path)
            self._persist()

    def add_excluded_directory(self, path: str) -> None:
        if path not in self._excluded_directories:
            self._excluded_directories.append(path)
            self._persist()

    def remove_excluded_directory(self, path: str) -> None:
        if path in self._excluded_directories:
            self._excluded_directories.remove(path)
            self._persist()

    # -- Mode / settings ----------------------------------------------------

    def set_mode(self, mode: PrivacyMode) -> None:
        self.mode = mode
        logger.info("Privacy mode set to %s", mode.value)
        if self._store is not None:
            self._store.update(privacy_mode=mode.value)

    def update_from_settings(self, settings: Settings) -> None:
        """Apply pushed settings without writing them back."""
        self.mode = PrivacyMode(settings.privacy_mode)
        self._excluded_files = list(settings.excluded_files)
        self._excluded_directories = list(settings.excluded_directories)

    def _persist(self) -> None:
        if self._store is None:
            return
        self._store.update(
            excluded_files=list(self._excluded_files),
            excluded_directories=list(self._excluded_directories),
        )
