"""
Tests for core types: turns, tool results, agent definitions and run results.
"""

import pytest

from taskpilot.errors import AgentDefinitionError
from taskpilot.session import history_from_dicts, history_to_dicts
from taskpilot.types import (
    AgentDefinition,
    AgentRole,
    AssistantTurn,
    DelegationRecord,
    RunCancelled,
    RunFailure,
    RunSuccess,
    SystemTurn,
    ToolCallRequest,
    ToolResult,
    ToolResultTurn,
    TurnKind,
    UserTurn,
    turn_from_dict,
)


class TestToolCallRequest:
    """Tests for ToolCallRequest."""

    def test_split_name(self) -> None:
        assert ToolCallRequest(name="file.readFile").split_name() == ("file", "readFile")

    def test_split_name_without_action(self) -> None:
        assert ToolCallRequest(name="file").split_name() == ("file", "")

    def test_round_trip_dict(self) -> None:
        request = ToolCallRequest(name="docs.search", arguments={"query": "x"}, id="call_1")
        assert ToolCallRequest.from_dict(request.to_dict()) == request


class TestToolResult:
    """Tests for ToolResult constructors."""

    def test_ok(self) -> None:
        result = ToolResult.ok("hi")
        assert result.success
        assert result.output == "hi"
        assert result.error is None

    def test_fail(self) -> None:
        result = ToolResult.fail("boom")
        assert not result.success
        assert result.output is None
        assert result.error == "boom"

    def test_to_dict_never_mixes(self) -> None:
        assert ToolResult.ok("x").to_dict() == {"success": True, "output": "x"}
        assert ToolResult.fail("e").to_dict() == {"success": False, "error": "e"}


class TestTurns:
    """Tests for turn variants and serialization."""

    def test_kinds(self) -> None:
        assert SystemTurn("s").kind == TurnKind.SYSTEM
        assert UserTurn("u").kind == TurnKind.USER
        assert AssistantTurn("a").kind == TurnKind.ASSISTANT
        assert ToolResultTurn(tool_name="t.a", success=True).kind == TurnKind.TOOL_RESULT

    def test_tool_result_turn_links_call_id(self) -> None:
        request = ToolCallRequest(name="file.readFile", id="call_7")
        turn = ToolResultTurn.from_result(request, ToolResult.fail("nope"))
        assert turn.call_id == "call_7"
        assert turn.tool_name == "file.readFile"
        assert not turn.success
        assert turn.error == "nope"
        assert turn.output is None

    def test_history_round_trip(self) -> None:
        call = ToolCallRequest(name="file.readFile", arguments={"filePath": "a"}, id="c1")
        history = [
            SystemTurn("note"),
            UserTurn("hello"),
            AssistantTurn(text="reading", tool_calls=[call]),
            ToolResultTurn.from_result(call, ToolResult.ok("content")),
            AssistantTurn(text="done"),
        ]
        restored = history_from_dicts(history_to_dicts(history))
        assert restored == history

    def test_turn_from_dict_unknown_kind(self) -> None:
        with pytest.raises(ValueError):
            turn_from_dict({"kind": "narrator", "text": "x"})


class TestAgentDefinition:
    """Construction-time validation of agent definitions."""

    def test_leaf_defaults(self) -> None:
        agent = AgentDefinition(id="coder", name="Coder", system_prompt_template="t")
        assert agent.role == AgentRole.LEAF
        assert agent.iteration_limit == 5
        assert not agent.is_supervisor

    def test_empty_id_rejected(self) -> None:
        with pytest.raises(AgentDefinitionError):
            AgentDefinition(id="", name="x", system_prompt_template="t")

    def test_zero_iteration_limit_rejected(self) -> None:
        with pytest.raises(AgentDefinitionError):
            AgentDefinition(id="a", name="a", system_prompt_template="t", iteration_limit=0)

    def test_leaf_cannot_delegate(self) -> None:
        with pytest.raises(AgentDefinitionError):
            AgentDefinition(
                id="a", name="a", system_prompt_template="t", delegates_to=frozenset({"b"})
            )

    def test_supervisor_cannot_have_tools(self) -> None:
        with pytest.raises(AgentDefinitionError):
            AgentDefinition(
                id="s",
                name="s",
                system_prompt_template="t",
                role=AgentRole.SUPERVISOR,
                allowed_tools=frozenset({"file"}),
            )

    def test_supervisor_cannot_delegate_to_itself(self) -> None:
        with pytest.raises(AgentDefinitionError):
            AgentDefinition(
                id="s",
                name="s",
                system_prompt_template="t",
                role=AgentRole.SUPERVISOR,
                delegates_to=frozenset({"s"}),
            )

    def test_frozen(self) -> None:
        agent = AgentDefinition(id="a", name="a", system_prompt_template="t")
        with pytest.raises(AttributeError):
            agent.iteration_limit = 10  # type: ignore[misc]


class TestRunResults:
    """Tests for run results and delegation records."""

    def test_success_flags(self) -> None:
        assert RunSuccess(final_answer="x", history=[]).success
        assert not RunFailure(reason="r", history=[]).success
        assert not RunCancelled(history=[]).success

    def test_delegation_summary(self) -> None:
        ok = DelegationRecord("a", "task", RunSuccess(final_answer="done", history=[]))
        failed = DelegationRecord("a", "task", RunFailure(reason="max iterations exceeded", history=[]))
        cancelled = DelegationRecord("a", "task", RunCancelled(history=[]))
        assert ok.succeeded and ok.summary() == "done"
        assert not failed.succeeded
        assert failed.summary() == "FAILED: max iterations exceeded"
        assert cancelled.summary() == "CANCELLED"
