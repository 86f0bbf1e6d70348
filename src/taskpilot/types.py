"""
Core types for the task engine.

These are the data structures that flow through the tool-calling loop and
the supervisor: conversation turns, tool call requests and results, agent
definitions, and the terminal results of a run. They are deliberately plain
dataclasses so that callers can persist history however they like.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from taskpilot.errors import AgentDefinitionError, TaskpilotError


class TurnKind(str, Enum):
    """Discriminator for the turn variants."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"


@dataclass
class ToolCallRequest:
    """
    A request from the model to run one tool action.

    The name is always ``toolId.action``. The id is only present when the
    gateway produced a native structured call; calls parsed out of text
    have no id. ``parse_error`` is set when the arguments could not be
    decoded; such a call is never executed.
    """
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    parse_error: str | None = None

    def split_name(self) -> tuple[str, str]:
        """Split ``toolId.action`` into its parts. Action is '' if absent."""
        tool_id, _, action = self.name.partition(".")
        return tool_id, action

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "arguments": self.arguments}
        if self.id is not None:
            result["id"] = self.id
        if self.parse_error is not None:
            result["parse_error"] = self.parse_error
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCallRequest":
        return cls(
            name=data["name"],
            arguments=data.get("arguments") or {},
            id=data.get("id"),
            parse_error=data.get("parse_error"),
        )


@dataclass
class ToolResult:
    """
    The outcome of exactly one tool execution.

    Either ``output`` is set (success) or ``error`` is set (failure), never
    both. Use the ``ok`` / ``fail`` constructors.
    """
    success: bool
    output: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, output: Any = None) -> "ToolResult":
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "output": self.output}
        return {"success": False, "error": self.error}


@dataclass
class SystemTurn:
    """A note injected by the engine itself, e.g. a format correction."""
    text: str
    kind: TurnKind = field(default=TurnKind.SYSTEM, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "text": self.text}


@dataclass
class UserTurn:
    text: str
    kind: TurnKind = field(default=TurnKind.USER, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "text": self.text}


@dataclass
class AssistantTurn:
    """
    A model response.

    When the model asked for tools, ``tool_calls`` holds the raw requests
    verbatim and ``text`` holds any commentary that came with them.
    """
    text: str | None = None
    tool_calls: list[ToolCallRequest] | None = None
    kind: TurnKind = field(default=TurnKind.ASSISTANT, init=False)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind.value, "text": self.text}
        if self.tool_calls:
            result["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        return result


@dataclass
class ToolResultTurn:
    """The result of one tool call, linked to the request by ``call_id`` when it has one."""
    tool_name: str
    success: bool
    output: Any = None
    error: str | None = None
    call_id: str | None = None
    kind: TurnKind = field(default=TurnKind.TOOL_RESULT, init=False)

    @classmethod
    def from_result(
        cls,
        request: ToolCallRequest,
        result: ToolResult,
    ) -> "ToolResultTurn":
        return cls(
            tool_name=request.name,
            success=result.success,
            output=result.output if result.success else None,
            error=None if result.success else result.error,
            call_id=request.id,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "kind": self.kind.value,
            "tool_name": self.tool_name,
            "success": self.success,
        }
        if self.success:
            result["output"] = self.output
        else:
            result["error"] = self.error
        if self.call_id is not None:
            result["call_id"] = self.call_id
        return result


Turn = Union[SystemTurn, UserTurn, AssistantTurn, ToolResultTurn]


def turn_from_dict(data: dict[str, Any]) -> Turn:
    """Rebuild a turn from its ``to_dict`` form."""
    kind = TurnKind(data["kind"])
    if kind == TurnKind.SYSTEM:
        return SystemTurn(text=data["text"])
    if kind == TurnKind.USER:
        return UserTurn(text=data["text"])
    if kind == TurnKind.ASSISTANT:
        calls = data.get("tool_calls")
        return AssistantTurn(
            text=data.get("text"),
            tool_calls=[ToolCallRequest.from_dict(c) for c in calls] if calls else None,
        )
    return ToolResultTurn(
        tool_name=data["tool_name"],
        success=data["success"],
        output=data.get("output"),
        error=data.get("error"),
        call_id=data.get("call_id"),
    )


class AgentRole(str, Enum):
    """Leaf agents run tools; supervisors only delegate to leaves."""
    LEAF = "leaf"
    SUPERVISOR = "supervisor"


@dataclass(frozen=True)
class AgentDefinition:
    """
    Immutable description of an agent.

    A supervisor has no tools of its own and may only name leaf agents in
    ``delegates_to``; that second rule needs the other definitions and is
    checked by ``AgentRegistry``.
    """
    id: str
    name: str
    system_prompt_template: str
    allowed_tools: frozenset[str] = frozenset()
    iteration_limit: int = 5
    role: AgentRole = AgentRole.LEAF
    delegates_to: frozenset[str] = frozenset()
    description: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            raise AgentDefinitionError("Agent id must not be empty")
        if self.iteration_limit < 1:
            raise AgentDefinitionError(
                f"Agent '{self.id}': iteration_limit must be >= 1, got {self.iteration_limit}"
            )
        if self.role == AgentRole.LEAF and self.delegates_to:
            raise AgentDefinitionError(f"Leaf agent '{self.id}' cannot delegate")
        if self.role == AgentRole.SUPERVISOR and self.allowed_tools:
            raise AgentDefinitionError(f"Supervisor '{self.id}' cannot have tools of its own")
        if self.id in self.delegates_to:
            raise AgentDefinitionError(f"Agent '{self.id}' cannot delegate to itself")

    @property
    def is_supervisor(self) -> bool:
        return self.role == AgentRole.SUPERVISOR


@dataclass
class RunSuccess:
    final_answer: str
    history: list[Turn]
    tool_log: list[ToolResult] = field(default_factory=list)
    iterations: int = 0
    delegations: list["DelegationRecord"] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return True


@dataclass
class RunFailure:
    """
    A terminal failure.

    ``reason`` is human readable; ``history`` is the full transcript.
    ``error`` is the exception that ended the run: a GatewayError or an
    IterationBudgetExceeded.
    """
    reason: str
    history: list[Turn]
    tool_log: list[ToolResult] = field(default_factory=list)
    iterations: int = 0
    delegations: list["DelegationRecord"] = field(default_factory=list)
    error: TaskpilotError | None = None

    @property
    def success(self) -> bool:
        return False


@dataclass
class RunCancelled:
    """The run stopped because its cancellation token fired. Not a failure."""
    history: list[Turn]
    tool_log: list[ToolResult] = field(default_factory=list)
    iterations: int = 0
    delegations: list["DelegationRecord"] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return False


RunResult = Union[RunSuccess, RunFailure, RunCancelled]


@dataclass
class DelegationRecord:
    """One sub-agent invocation made by a supervisor."""
    sub_agent_id: str
    task_description: str
    result: RunResult

    @property
    def succeeded(self) -> bool:
        return isinstance(self.result, RunSuccess)

    def summary(self) -> str:
        if isinstance(self.result, RunSuccess):
            return self.result.final_answer
        if isinstance(self.result, RunFailure):
            return f"FAILED: {self.result.reason}"
        return "CANCELLED"
