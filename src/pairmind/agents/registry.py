"""Agent registry: which agents exist, keyed by ``AgentType``."""

from __future__ import annotations

from typing import Callable, Iterator

from ..config import Settings
from ..core.vcs import GitClient
from ..llm.base import CompletionService
from .base import AgentBase, AgentDescriptor, AgentType
from .specialized import (
    ArchitectAgent,
    BugHunterAgent,
    CodeSmithAgent,
    DevFlowAgent,
    DocGuruAgent,
    GitMateAgent,
)

# ---------------------------------------------------------------------------
# Default agent table
# ---------------------------------------------------------------------------

_DEFAULT_AGENT_CLASSES: dict[AgentType, type[AgentBase]] = {
    AgentType.ARCHITECT: ArchitectAgent,
    AgentType.CODESMITH: CodeSmithAgent,
    AgentType.BUGHUNTER: BugHunterAgent,
    AgentType.DOCGURU: DocGuruAgent,
    AgentType.GITMATE: GitMateAgent,
    AgentType.DEVFLOW: DevFlowAgent,
}


class AgentRegistry:
    """Insertion-ordered mapping of agent type to agent instance.

    The order agents are registered in is the evaluation order used when
    ranking suggestions, so ties keep it.
    """

    def __init__(self, agents: list[AgentBase] | None = None) -> None:
        self._agents: dict[AgentType, AgentBase] = {}
        for agent in agents or []:
            self.register(agent)

    @classmethod
    def with_default_agents(
        cls,
        client: CompletionService,
        settings: Settings | None = None,
        *,
        git_factory: Callable[[str], GitClient] = GitClient,
    ) -> "AgentRegistry":
        registry = cls()
        for agent_type, agent_cls in _DEFAULT_AGENT_CLASSES.items():
            if agent_type == AgentType.GITMATE:
                registry.register(GitMateAgent(client, settings, git_factory=git_factory))
            else:
                registry.register(agent_cls(client, settings))
        return registry

    def register(self, agent: AgentBase) -> None:
        """Add or replace the agent for its type."""
        self._agents[agent.agent_type] = agent

    def unregister(self, agent_type: AgentType) -> AgentBase | None:
        return self._agents.pop(agent_type, None)

    def get(self, agent_type: AgentType | str) -> AgentBase | None:
        try:
            return self._agents.get(AgentType(agent_type))
        except ValueError:
            return None

    def types(self) -> list[AgentType]:
        return list(self._agents)

    def agents(self) -> list[AgentBase]:
        return list(self._agents.values())

    def descriptors(self) -> list[AgentDescriptor]:
        return [agent.descriptor() for agent in self._agents.values()]

    def __contains__(self, agent_type: object) -> bool:
        try:
            return AgentType(agent_type) in self._agents
        except ValueError:
            return False

    def __iter__(self) -> Iterator[AgentBase]:
        return iter(list(self._agents.values()))

    def __len__(self) -> int:
        return len(self._agents)
