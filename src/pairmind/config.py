"""Configuration and workspace path management for pairmind."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default workspace root
# ---------------------------------------------------------------------------
DEFAULT_ROOT = Path.home() / ".pairmind"

DEFAULT_API_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_TOKENS = 2048
DEFAULT_TEMPERATURE = 0.7
DEFAULT_RATE_LIMIT = 60

# Env var → settings field
_ENV_OVERRIDES: dict[str, str] = {
    "PAIRMIND_API_URL": "api_url",
    "PAIRMIND_API_KEY": "api_key",
    "PAIRMIND_MODEL": "model",
    "PAIRMIND_PRIVACY_MODE": "privacy_mode",
}


@dataclass
class WorkspaceConfig:
    """Manages the pairmind workspace layout."""

    root: Path = field(default_factory=lambda: DEFAULT_ROOT)

    @property
    def settings_path(self) -> Path:
        return self.root / "settings.json"

    @property
    def audit_log_path(self) -> Path:
        return self.root / "pairmind-audit.log"

    @property
    def error_log_path(self) -> Path:
        return self.root / "errors.log"

    def ensure_workspace(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class Settings(BaseModel):
    """User-facing settings pushed into the core on change."""

    privacy_mode: Literal["standard", "enhanced", "maximum"] = "standard"
    excluded_files: list[str] = Field(default_factory=list)
    excluded_directories: list[str] = Field(default_factory=list)

    api_url: str = DEFAULT_API_URL
    api_key: str = ""
    model: str = DEFAULT_MODEL
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0)
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    max_requests_per_minute: int = Field(default=DEFAULT_RATE_LIMIT, gt=0)

    audit_enabled: bool = True


class SettingsStore:
    """Loads and persists ``Settings`` as JSON.

    With ``path=None`` the store is memory-only, which is what tests and
    embedders without a workspace use.  Environment variables override
    file values on load but are never written back.
    """

    def __init__(self, path: Path | None = None, *, use_env: bool = True) -> None:
        self.path = path
        self.use_env = use_env
        self._settings: Settings | None = None

    def load(self) -> Settings:
        data: dict[str, Any] = {}
        if self.path is not None and self.path.exists():
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Ignoring unreadable settings file %s: %s", self.path, exc)
                data = {}

        if self.use_env:
            for env_var, key in _ENV_OVERRIDES.items():
                value = os.environ.get(env_var)
                if value:
                    data[key] = value
            if not data.get("api_key") and os.environ.get("OPENAI_API_KEY"):
                data["api_key"] = os.environ["OPENAI_API_KEY"]

        try:
            self._settings = Settings(**data)
        except ValidationError as exc:
            logger.warning("Invalid settings, falling back to defaults: %s", exc)
            self._settings = Settings()
        return self._settings

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            return self.load()
        return self._settings

    def save(self, settings: Settings) -> None:
        self._settings = settings
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # The key comes from the environment or the editor, never from disk.
        payload = settings.model_dump(exclude={"api_key"})
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        logger.debug("Saved settings to %s", self.path)

    def update(self, **changes: Any) -> Settings:
        """Apply *changes* to the current settings and persist them."""
        updated = self.settings.model_copy(update=changes)
        self.save(updated)
        return updated

    def apply(self, settings: Settings) -> None:
        """Use *settings* for this process without writing them."""
        self._settings = settings
