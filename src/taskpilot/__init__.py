"""
taskpilot - an agentic task-execution engine.

Turns a natural-language task into a bounded sequence of LLM calls and tool
invocations:

1. Bounded loop: every run has an iteration budget counted in LLM round-trips
2. Tool-mediated actions: files change only through registered tools
3. Patch-based edits: unified diffs are created and applied, never guessed
4. Hierarchical delegation: a supervisor hands sub-tasks to leaf agents
5. Session-bounded state: history is returned to the caller, not stored
"""

__version__ = "0.1.0"

from taskpilot.agent_loop import ToolCallingLoop
from taskpilot.agents import AgentRegistry, agent_from_dict
from taskpilot.cancellation import CancellationToken
from taskpilot.config import EngineConfig, LLMConfig, LoopConfig, PatchConfig, PromptConfig
from taskpilot.context import EngineContext, RunContext
from taskpilot.errors import (
    AgentDefinitionError,
    DelegationValidationError,
    GatewayError,
    IterationBudgetExceeded,
    OperationCancelled,
    PatchConflictError,
    PatchParseError,
    ProtocolParseError,
    TaskpilotError,
    ToolExecutionError,
)
from taskpilot.llm import GatewayResponse, LLMClient, LLMGateway
from taskpilot.patch import PatchResult, apply_patch, apply_sequential, create_patch, parse_patch
from taskpilot.supervisor import SupervisorLoop, run_agent
from taskpilot.tools import ActionTool, Tool, ToolAction, ToolCatalogEntry, ToolRegistry
from taskpilot.types import (
    AgentDefinition,
    AgentRole,
    AssistantTurn,
    DelegationRecord,
    RunCancelled,
    RunFailure,
    RunResult,
    RunSuccess,
    SystemTurn,
    ToolCallRequest,
    ToolResult,
    ToolResultTurn,
    UserTurn,
)

__all__ = [
    "ToolCallingLoop",
    "SupervisorLoop",
    "run_agent",
    "AgentRegistry",
    "agent_from_dict",
    "CancellationToken",
    "EngineConfig",
    "LLMConfig",
    "LoopConfig",
    "PatchConfig",
    "PromptConfig",
    "EngineContext",
    "RunContext",
    "TaskpilotError",
    "GatewayError",
    "ToolExecutionError",
    "ProtocolParseError",
    "PatchParseError",
    "PatchConflictError",
    "IterationBudgetExceeded",
    "OperationCancelled",
    "DelegationValidationError",
    "AgentDefinitionError",
    "GatewayResponse",
    "LLMClient",
    "LLMGateway",
    "PatchResult",
    "create_patch",
    "parse_patch",
    "apply_patch",
    "apply_sequential",
    "Tool",
    "ActionTool",
    "ToolAction",
    "ToolCatalogEntry",
    "ToolRegistry",
    "AgentDefinition",
    "AgentRole",
    "SystemTurn",
    "UserTurn",
    "AssistantTurn",
    "ToolResultTurn",
    "ToolCallRequest",
    "ToolResult",
    "RunSuccess",
    "RunFailure",
    "RunCancelled",
    "RunResult",
    "DelegationRecord",
]
