"""Specialized pair-programming agents.

Each agent classifies the snapshot into one of its task kinds, builds a
prompt for that kind, and parses the reply into structured results.

Agents:
- **ArchitectAgent**: project structure, design patterns, scalability.
- **CodeSmithAgent**: implementation, tests, completion, refactoring.
- **BugHunterAgent**: debugging by error category.
- **DocGuruAgent**: documentation and code explanation.
- **GitMateAgent**: commit messages and repository status.
- **DevFlowAgent**: CI workflows and development scripts.
"""

from .architect_agent import ArchitectAgent
from .codesmith_agent import CodeSmithAgent
from .bughunter_agent import BugHunterAgent
from .docguru_agent import DocGuruAgent
from .gitmate_agent import GitMateAgent
from .devflow_agent import DevFlowAgent

__all__ = [
    "ArchitectAgent",
    "CodeSmithAgent",
    "BugHunterAgent",
    "DocGuruAgent",
    "GitMateAgent",
    "DevFlowAgent",
]
