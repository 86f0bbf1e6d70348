"""
Explicit engine wiring.

``EngineContext`` holds everything a run needs: configuration, the LLM
gateway, the tool registry, the agent registry and the prompt manager.
It is constructed once by the host and passed down; there are no module
level singletons. ``RunContext`` is the per-run view handed to tools.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from taskpilot.agents import AgentRegistry
from taskpilot.cancellation import CancellationToken
from taskpilot.config import EngineConfig
from taskpilot.docs_tool import DocumentationTool
from taskpilot.file_tools import FileSystemTool
from taskpilot.llm import LLMClient, LLMGateway
from taskpilot.prompts import PromptManager
from taskpilot.tools import ToolRegistry

logger = logging.getLogger(__name__)


def build_default_tools() -> ToolRegistry:
    """Registry with the built-in ``file`` and ``docs`` tools."""
    registry = ToolRegistry()
    registry.register(FileSystemTool())
    registry.register(DocumentationTool())
    return registry


class EngineContext:
    """
    Long-lived engine state shared by every run.

    Use ``reconfigure`` to apply new settings; it replaces prompt variables
    and templates and, unless a gateway was injected, rebuilds the LLM
    client.
    """

    def __init__(
        self,
        config: EngineConfig,
        gateway: LLMGateway | None = None,
        tools: ToolRegistry | None = None,
        agents: AgentRegistry | None = None,
    ) -> None:
        self.config = config
        self._owns_gateway = gateway is None
        self.gateway: LLMGateway = gateway if gateway is not None else LLMClient(config.llm)
        self.tools = tools if tools is not None else build_default_tools()
        self.agents = agents if agents is not None else AgentRegistry(default_iteration_limit=config.loop.max_iterations)
        self.prompts = PromptManager(config.prompts)

    @classmethod
    def from_env(cls, gateway: LLMGateway | None = None) -> "EngineContext":
        return cls(EngineConfig.from_env(), gateway=gateway)

    def reconfigure(self, config: EngineConfig, gateway: LLMGateway | None = None) -> None:
        """Apply a new configuration to this context."""
        self.config = config
        self.prompts.reconfigure(config.prompts)
        self.agents.default_iteration_limit = config.loop.max_iterations

        if gateway is not None:
            self._close_gateway()
            self.gateway = gateway
            self._owns_gateway = False
        elif self._owns_gateway:
            self._close_gateway()
            self.gateway = LLMClient(config.llm)
        logger.info("Engine configuration reloaded")

    def _close_gateway(self) -> None:
        if self._owns_gateway and isinstance(self.gateway, LLMClient):
            self.gateway.close()

    def close(self) -> None:
        self._close_gateway()

    def __enter__(self) -> "EngineContext":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


@dataclass
class RunContext:
    """
    What a single run (and every tool it calls) can see.

    ``variables`` are substituted into the system prompt; ``options`` are
    passed through to the gateway unchanged.
    """
    engine: EngineContext
    variables: dict[str, Any] = field(default_factory=dict)
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    options: dict[str, Any] = field(default_factory=dict)

    def child(self, variables: dict[str, Any] | None = None) -> "RunContext":
        """Context for a sub-run, cancelled whenever this one is."""
        return RunContext(
            engine=self.engine,
            variables=dict(variables if variables is not None else self.variables),
            cancel_token=self.cancel_token.child(),
            options=dict(self.options),
        )
