"""
Agent registry.

Builds AgentDefinitions from plain dicts (or a JSON file) and checks the
delegation graph: a supervisor may only delegate to registered leaf
agents. All of this happens at construction time; an invalid graph never
reaches a run.

Dict format::

    {
        "id": "coder",
        "name": "Coder",
        "systemPromptName": "edit_code",     # or "systemPrompt": "literal template"
        "tools": ["file", "docs"],
        "iterationLimit": 5,
        "isSupervisor": false,
        "subAgentIds": []
    }
"""

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from taskpilot.errors import AgentDefinitionError
from taskpilot.types import AgentDefinition, AgentRole

logger = logging.getLogger(__name__)

DEFAULT_LEAF_PROMPT = "default_coder"
DEFAULT_SUPERVISOR_PROMPT = "supervisor"


def _as_id_set(value: Any, field_name: str, agent_id: str) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, dict):
        # {"file": true, "docs": false}
        return frozenset(str(k) for k, enabled in value.items() if enabled)
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(str(v) for v in value)
    raise AgentDefinitionError(f"Agent '{agent_id}': '{field_name}' must be a list of ids")


def agent_from_dict(data: dict[str, Any], default_iteration_limit: int = 5) -> AgentDefinition:
    """Build one AgentDefinition from its dict form."""
    if not isinstance(data, dict):
        raise AgentDefinitionError("Agent definition must be an object")
    agent_id = str(data.get("id") or "")
    is_supervisor = bool(data.get("isSupervisor", False))

    template = data.get("systemPrompt") or data.get("systemPromptName")
    if not template:
        template = DEFAULT_SUPERVISOR_PROMPT if is_supervisor else DEFAULT_LEAF_PROMPT

    try:
        iteration_limit = int(data.get("iterationLimit", default_iteration_limit))
    except (TypeError, ValueError) as e:
        raise AgentDefinitionError(f"Agent '{agent_id}': iterationLimit must be an integer") from e

    return AgentDefinition(
        id=agent_id,
        name=str(data.get("name") or agent_id),
        system_prompt_template=str(template),
        allowed_tools=_as_id_set(data.get("tools"), "tools", agent_id),
        iteration_limit=iteration_limit,
        role=AgentRole.SUPERVISOR if is_supervisor else AgentRole.LEAF,
        delegates_to=_as_id_set(data.get("subAgentIds"), "subAgentIds", agent_id),
        description=str(data.get("description") or ""),
    )


def _check_graph(agents: dict[str, AgentDefinition]) -> None:
    for agent in agents.values():
        if not agent.is_supervisor:
            continue
        for sub_id in sorted(agent.delegates_to):
            sub = agents.get(sub_id)
            if sub is None:
                raise AgentDefinitionError(
                    f"Supervisor '{agent.id}' delegates to unknown agent '{sub_id}'"
                )
            if sub.is_supervisor:
                raise AgentDefinitionError(
                    f"Supervisor '{agent.id}' cannot delegate to supervisor '{sub_id}'"
                )


class AgentRegistry:
    """Agent definitions keyed by id, with delegation-graph validation."""

    def __init__(self, default_iteration_limit: int = 5) -> None:
        self.default_iteration_limit = default_iteration_limit
        self._agents: dict[str, AgentDefinition] = {}

    def register(self, agent: AgentDefinition) -> None:
        if agent.id in self._agents:
            raise AgentDefinitionError(f"Duplicate agent id '{agent.id}'")
        self._agents[agent.id] = agent
        logger.debug(f"Registered agent: {agent.id} ({agent.role.value})")

    def register_all(self, agents: list[AgentDefinition]) -> None:
        """
        Register several agents as one unit.

        The combined graph is validated before anything is stored, so a bad
        batch leaves the registry as it was.
        """
        candidate = dict(self._agents)
        for agent in agents:
            if agent.id in candidate:
                raise AgentDefinitionError(f"Duplicate agent id '{agent.id}'")
            candidate[agent.id] = agent
        _check_graph(candidate)
        self._agents = candidate
        for agent in agents:
            logger.debug(f"Registered agent: {agent.id} ({agent.role.value})")

    def get(self, agent_id: str) -> AgentDefinition | None:
        return self._agents.get(agent_id)

    def validate(self) -> None:
        """
        Check every supervisor's delegation list.

        Raises:
            AgentDefinitionError: if a supervisor names an unknown agent or another supervisor
        """
        _check_graph(self._agents)

    def delegates_of(self, supervisor: AgentDefinition) -> list[AgentDefinition]:
        """The registered leaf agents a supervisor may delegate to, sorted by id."""
        return [
            self._agents[sub_id]
            for sub_id in sorted(supervisor.delegates_to)
            if sub_id in self._agents
        ]

    def load_dicts(self, items: list[dict[str, Any]]) -> list[AgentDefinition]:
        agents = [agent_from_dict(item, self.default_iteration_limit) for item in items]
        self.register_all(agents)
        logger.info(f"Loaded {len(agents)} agent definitions")
        return agents

    def load_json_file(self, path: Path) -> list[AgentDefinition]:
        """Load agents from a JSON file holding a list, or an object with an ``agents`` list."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(data, dict):
            data = data.get("agents", [])
        if not isinstance(data, list):
            raise AgentDefinitionError(f"{path}: expected a list of agent definitions")
        return self.load_dicts(data)

    @property
    def ids(self) -> list[str]:
        return list(self._agents.keys())

    def __iter__(self) -> Iterator[AgentDefinition]:
        return iter(list(self._agents.values()))

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents
