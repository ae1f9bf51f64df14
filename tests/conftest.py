"""Shared fixtures: a scripted completion service and sample snapshots."""

from __future__ import annotations

from typing import Any

import pytest

from pairmind.config import Settings
from pairmind.core.models import (
    ConfigFile,
    ContextData,
    Dependencies,
    FileInfo,
    GitContext,
    Position,
    ProjectStructure,
)
from pairmind.llm.base import Completion


class FakeCompletionClient:
    """Implements the async ``complete`` contract with canned replies.

    Replies are consumed in order; the last one repeats.  When ``error``
    is set every call raises it instead.
    """

    def __init__(self, replies: list[str] | None = None, error: Exception | None = None) -> None:
        self.replies = list(replies or ["OK"])
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def complete(self, prompt: str, **kwargs: Any) -> Completion:
        self.calls.append({"prompt": prompt, **kwargs})
        if self.error is not None:
            raise self.error
        text = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        sink = kwargs.get("sink")
        if sink is not None:
            sink(text)
        return Completion(text=text, model="fake-model")

    async def test_connection(self) -> bool:
        return True


@pytest.fixture
def fake_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def client_factory():
    """Build a FakeCompletionClient with specific replies or an error."""
    def _make(*replies: str, error: Exception | None = None) -> FakeCompletionClient:
        return FakeCompletionClient(list(replies) or None, error=error)
    return _make


@pytest.fixture
def settings() -> Settings:
    return Settings(api_key="test-key")


@pytest.fixture
def code_context() -> ContextData:
    """A Python file with a function under the cursor."""
    return ContextData(
        current_file="/work/app/src/service.py",
        current_function="load_user",
        cursor_position=Position(line=12, character=4),
        surrounding_code=(
            "def load_user(user_id):\n"
            "    row = db.fetch(user_id)\n"
            "    return row['name']\n"
        ),
        language="python",
        project_root="/work/app",
        project_name="app",
    )


@pytest.fixture
def project_context() -> ContextData:
    """A project with structure, dependencies, config and git state."""
    files = [FileInfo(path=f"src/module_{i}.py", type="py") for i in range(12)]
    return ContextData(
        current_file="/work/app/src/module_0.py",
        language="python",
        surrounding_code="import os\n",
        project_root="/work/app",
        project_name="app",
        project_structure=ProjectStructure(
            directories=["src", "tests"],
            files=files,
            entry_points=["src/module_0.py"],
            test_files=[],
            config_files=["pyproject.toml"],
        ),
        dependencies=Dependencies(production={"pydantic": ">=2", "httpx": ">=0.27"}),
        config_files=[ConfigFile(path="pyproject.toml", type="python")],
        architectural_patterns=[],
        git_history=GitContext(current_branch="main"),
    )
