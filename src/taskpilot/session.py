"""
ExecutionSession - the state of one run.

A session is created when ``run()`` starts, mutated only by the loop that
owns it, and discarded when the run ends. Nothing is persisted: callers
that want continuity (a chat panel, say) keep the returned history and
pass it back in as ``prior_history`` on the next run. ``history_to_dicts``
and ``history_from_dicts`` exist for that purpose.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any

from taskpilot.events import EventLog
from taskpilot.types import (
    AgentDefinition,
    AssistantTurn,
    SystemTurn,
    ToolCallRequest,
    ToolResult,
    ToolResultTurn,
    Turn,
    UserTurn,
    turn_from_dict,
)


@dataclass
class ExecutionSession:
    """
    The mutable state of a single run.

    ``history`` only ever grows. ``iteration`` counts LLM round-trips.
    """
    agent: AgentDefinition
    history: list[Turn] = field(default_factory=list)
    iteration: int = 0
    cancelled: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    events: EventLog = field(default_factory=EventLog)

    def add_system_turn(self, text: str) -> SystemTurn:
        turn = SystemTurn(text=text)
        self.history.append(turn)
        return turn

    def add_user_turn(self, text: str) -> UserTurn:
        turn = UserTurn(text=text)
        self.history.append(turn)
        return turn

    def add_assistant_turn(
        self,
        text: str | None,
        tool_calls: list[ToolCallRequest] | None = None,
    ) -> AssistantTurn:
        turn = AssistantTurn(text=text, tool_calls=list(tool_calls) if tool_calls else None)
        self.history.append(turn)
        return turn

    def add_tool_result(self, request: ToolCallRequest, result: ToolResult) -> ToolResultTurn:
        turn = ToolResultTurn.from_result(request, result)
        self.history.append(turn)
        return turn

    def snapshot(self) -> list[Turn]:
        """A copy of the history, safe to hand back to callers."""
        return list(self.history)

    @property
    def budget_exhausted(self) -> bool:
        return self.iteration >= self.agent.iteration_limit


def history_to_dicts(history: list[Turn]) -> list[dict[str, Any]]:
    return [turn.to_dict() for turn in history]


def history_from_dicts(data: list[dict[str, Any]]) -> list[Turn]:
    return [turn_from_dict(item) for item in data]
