"""
Tests for agent definitions and the agent registry.
"""

import json
from pathlib import Path

import pytest

from taskpilot.agents import AgentRegistry, agent_from_dict
from taskpilot.errors import AgentDefinitionError
from taskpilot.types import AgentDefinition, AgentRole


class TestAgentFromDict:
    """Tests for building definitions from dicts."""

    def test_leaf_defaults(self) -> None:
        agent = agent_from_dict({"id": "coder"}, default_iteration_limit=7)
        assert agent.name == "coder"
        assert agent.system_prompt_template == "default_coder"
        assert agent.iteration_limit == 7
        assert agent.role == AgentRole.LEAF
        assert agent.allowed_tools == frozenset()

    def test_supervisor_defaults_to_supervisor_prompt(self) -> None:
        agent = agent_from_dict({"id": "boss", "isSupervisor": True, "subAgentIds": ["coder"]})
        assert agent.is_supervisor
        assert agent.system_prompt_template == "supervisor"
        assert agent.delegates_to == frozenset({"coder"})

    def test_literal_prompt_wins_over_name(self) -> None:
        agent = agent_from_dict({"id": "a", "systemPrompt": "Echo {USER_REQUEST}", "systemPromptName": "edit_code"})
        assert agent.system_prompt_template == "Echo {USER_REQUEST}"

    def test_tools_as_enabled_map(self) -> None:
        agent = agent_from_dict({"id": "a", "tools": {"file": True, "docs": False}})
        assert agent.allowed_tools == frozenset({"file"})

    def test_bad_tools_type(self) -> None:
        with pytest.raises(AgentDefinitionError, match="tools"):
            agent_from_dict({"id": "a", "tools": "file"})

    def test_bad_iteration_limit(self) -> None:
        with pytest.raises(AgentDefinitionError, match="iterationLimit"):
            agent_from_dict({"id": "a", "iterationLimit": "many"})

    def test_zero_iteration_limit(self) -> None:
        with pytest.raises(AgentDefinitionError):
            agent_from_dict({"id": "a", "iterationLimit": 0})

    def test_missing_id(self) -> None:
        with pytest.raises(AgentDefinitionError):
            agent_from_dict({"name": "nameless"})

    def test_supervisor_with_tools_rejected(self) -> None:
        with pytest.raises(AgentDefinitionError, match="cannot have tools"):
            agent_from_dict({"id": "boss", "isSupervisor": True, "tools": ["file"]})

    def test_leaf_with_delegates_rejected(self) -> None:
        with pytest.raises(AgentDefinitionError, match="cannot delegate"):
            agent_from_dict({"id": "a", "subAgentIds": ["b"]})


class TestAgentRegistry:
    """Tests for registration and graph validation."""

    def test_register_and_lookup(self) -> None:
        registry = AgentRegistry()
        registry.load_dicts([{"id": "a"}, {"id": "b"}])
        assert len(registry) == 2
        assert "a" in registry
        assert registry.get("missing") is None
        assert registry.ids == ["a", "b"]
        assert [agent.id for agent in registry] == ["a", "b"]

    def test_duplicate_id(self) -> None:
        registry = AgentRegistry()
        registry.register(AgentDefinition(id="a", name="A", system_prompt_template="t"))
        with pytest.raises(AgentDefinitionError, match="Duplicate"):
            registry.register(AgentDefinition(id="a", name="A2", system_prompt_template="t"))

    def test_unknown_delegate(self) -> None:
        with pytest.raises(AgentDefinitionError, match="unknown agent 'ghost'"):
            AgentRegistry().load_dicts([{"id": "boss", "isSupervisor": True, "subAgentIds": ["ghost"]}])

    def test_supervisor_cannot_delegate_to_supervisor(self) -> None:
        with pytest.raises(AgentDefinitionError, match="cannot delegate to supervisor"):
            AgentRegistry().load_dicts([
                {"id": "a"},
                {"id": "mid", "isSupervisor": True, "subAgentIds": ["a"]},
                {"id": "top", "isSupervisor": True, "subAgentIds": ["mid"]},
            ])

    def test_failed_load_leaves_registry_unchanged(self) -> None:
        registry = AgentRegistry()
        registry.load_dicts([{"id": "a"}])
        with pytest.raises(AgentDefinitionError, match="unknown agent 'ghost'"):
            registry.load_dicts([
                {"id": "b"},
                {"id": "boss", "isSupervisor": True, "subAgentIds": ["b", "ghost"]},
            ])
        assert registry.ids == ["a"]
        assert registry.get("b") is None
        assert registry.get("boss") is None

    def test_duplicate_within_batch_leaves_registry_unchanged(self) -> None:
        registry = AgentRegistry()
        with pytest.raises(AgentDefinitionError, match="Duplicate"):
            registry.load_dicts([{"id": "a"}, {"id": "a"}])
        assert len(registry) == 0

    def test_delegates_of_sorted(self) -> None:
        registry = AgentRegistry()
        registry.load_dicts([
            {"id": "zed"},
            {"id": "alpha"},
            {"id": "boss", "isSupervisor": True, "subAgentIds": ["zed", "alpha"]},
        ])
        assert [a.id for a in registry.delegates_of(registry.get("boss"))] == ["alpha", "zed"]

    def test_default_iteration_limit_applies(self) -> None:
        registry = AgentRegistry(default_iteration_limit=9)
        registry.load_dicts([{"id": "a"}, {"id": "b", "iterationLimit": 2}])
        assert registry.get("a").iteration_limit == 9
        assert registry.get("b").iteration_limit == 2


class TestLoadJsonFile:
    """Tests for loading agent files."""

    def test_list_form(self, tmp_path: Path) -> None:
        path = tmp_path / "agents.json"
        path.write_text(json.dumps([{"id": "a", "tools": ["file"]}]))
        agents = AgentRegistry().load_json_file(path)
        assert agents[0].allowed_tools == frozenset({"file"})

    def test_object_form(self, tmp_path: Path) -> None:
        path = tmp_path / "agents.json"
        path.write_text(json.dumps({"agents": [{"id": "a"}, {"id": "b"}]}))
        assert len(AgentRegistry().load_json_file(path)) == 2

    def test_wrong_shape(self, tmp_path: Path) -> None:
        path = tmp_path / "agents.json"
        path.write_text(json.dumps({"agents": "nope"}))
        with pytest.raises(AgentDefinitionError):
            AgentRegistry().load_json_file(path)
