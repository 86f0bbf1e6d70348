"""
Tool System - the only way a run affects the world.

A tool is registered under a fixed id (``file``, ``docs``) and exposes one
or more actions; the model addresses an action as ``toolId.action``. The
registry is the controlled entry point: whatever goes wrong inside a tool
(unknown action, bad arguments, an exception) comes back as a failed
ToolResult, never as an exception into the loop.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from taskpilot.errors import ToolExecutionError
from taskpilot.types import ToolCallRequest, ToolResult

if TYPE_CHECKING:
    from taskpilot.context import RunContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCatalogEntry:
    """What the model is told about one tool action."""
    dotted_name: str
    description: str
    argument_schema: dict[str, Any]


class Tool(ABC):
    """
    A polymorphic tool with one capability: execute an action.

    ``tool_id`` is the fixed tag used in dotted names.
    """

    tool_id: str = ""
    description: str = ""

    @abstractmethod
    def execute(
        self,
        action: str,
        arguments: dict[str, Any],
        context: "RunContext",
    ) -> ToolResult:
        """Run one action. May raise; the registry converts errors to results."""
        ...

    @abstractmethod
    def catalog(self) -> list[ToolCatalogEntry]:
        """Catalog entries for every action, used to render prompts."""
        ...


ActionHandler = Callable[..., Any]


@dataclass
class ToolAction:
    """
    One action of an ActionTool.

    The handler is called as ``handler(context, **arguments)`` and may
    return a ToolResult or any plain value (wrapped as a success).
    """
    name: str
    description: str
    parameters: dict[str, Any]
    handler: ActionHandler

    @property
    def required(self) -> list[str]:
        return list(self.parameters.get("required", []))

    def unexpected(self, arguments: dict[str, Any]) -> list[str]:
        """Argument names the schema does not declare. Empty when the schema lists no properties."""
        properties = self.parameters.get("properties")
        if not isinstance(properties, dict) or self.parameters.get("additionalProperties") is True:
            return []
        return sorted(name for name in arguments if name not in properties)


class ActionTool(Tool):
    """A tool that dispatches on a table of named actions."""

    def __init__(self, tool_id: str, description: str, actions: list[ToolAction] | None = None):
        self.tool_id = tool_id
        self.description = description
        self._actions: dict[str, ToolAction] = {}
        for action in actions or []:
            self.add_action(action)

    def add_action(self, action: ToolAction) -> None:
        if action.name in self._actions:
            logger.warning(f"Overwriting action {self.tool_id}.{action.name}")
        self._actions[action.name] = action

    @property
    def action_names(self) -> list[str]:
        return list(self._actions.keys())

    def execute(
        self,
        action: str,
        arguments: dict[str, Any],
        context: "RunContext",
    ) -> ToolResult:
        entry = self._actions.get(action)
        if entry is None:
            available = ", ".join(self.action_names)
            return ToolResult.fail(
                f"Unknown action '{action}' for tool '{self.tool_id}'. Available actions: {available}"
            )

        missing = [name for name in entry.required if arguments.get(name) is None]
        if missing:
            return ToolResult.fail(
                f"Missing required argument(s) for {self.tool_id}.{action}: {', '.join(missing)}"
            )

        unexpected = entry.unexpected(arguments)
        if unexpected:
            return ToolResult.fail(
                f"Invalid arguments for '{self.tool_id}.{action}': unexpected {', '.join(unexpected)}"
            )

        output = entry.handler(context, **arguments)
        if isinstance(output, ToolResult):
            return output
        return ToolResult.ok(output)

    def catalog(self) -> list[ToolCatalogEntry]:
        return [
            ToolCatalogEntry(
                dotted_name=f"{self.tool_id}.{a.name}",
                description=a.description,
                argument_schema=a.parameters,
            )
            for a in self._actions.values()
        ]


@dataclass
class ToolRegistry:
    """
    Registry of available tools, keyed by tool id.

    Only tools registered here, and only those an agent is allowed to use,
    can be called.
    """

    _tools: dict[str, Tool] = field(default_factory=dict)

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        if not tool.tool_id:
            raise ValueError("Tool must have a tool_id")
        if tool.tool_id in self._tools:
            logger.warning(f"Overwriting existing tool: {tool.tool_id}")
        self._tools[tool.tool_id] = tool
        logger.debug(f"Registered tool: {tool.tool_id}")

    def get(self, tool_id: str) -> Tool | None:
        return self._tools.get(tool_id)

    def catalog(self, tool_ids: frozenset[str] | set[str] | None = None) -> list[ToolCatalogEntry]:
        """Catalog entries for the given tool ids (all tools if None), in registration order."""
        entries: list[ToolCatalogEntry] = []
        for tool_id, tool in self._tools.items():
            if tool_ids is None or tool_id in tool_ids:
                entries.extend(tool.catalog())
        if tool_ids is not None:
            for missing in sorted(set(tool_ids) - set(self._tools)):
                logger.warning(f"Tool with ID '{missing}' not found.")
        return entries

    def dispatch(
        self,
        request: ToolCallRequest,
        context: "RunContext",
        allowed: frozenset[str] | set[str] | None = None,
    ) -> ToolResult:
        """
        Execute one tool call request.

        This is the controlled entry point for all side effects. It never
        raises.
        """
        if request.parse_error:
            return ToolResult.fail(f"Could not parse arguments for '{request.name}': {request.parse_error}")

        tool_id, action = request.split_name()
        if not action:
            return ToolResult.fail(
                f"Tool call name '{request.name}' must have the form 'toolId.action'"
            )

        tool = self._tools.get(tool_id)
        if tool is None or (allowed is not None and tool_id not in allowed):
            return ToolResult.fail(f"Tool '{tool_id}' not found.")

        if not isinstance(request.arguments, dict):
            return ToolResult.fail(f"Arguments for '{request.name}' must be an object")

        logger.info(f"Executing tool: {request.name}")
        try:
            return tool.execute(action, request.arguments, context)
        except ToolExecutionError as e:
            logger.warning(f"Tool {request.name} failed: {e}")
            return ToolResult.fail(str(e))
        except Exception as e:
            logger.error(f"Tool {request.name} failed: {e}")
            return ToolResult.fail(f"Error: {e}")

    @property
    def tool_ids(self) -> list[str]:
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, tool_id: str) -> bool:
        return tool_id in self._tools
