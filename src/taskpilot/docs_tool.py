"""
The ``docs`` tool: documentation lookup.

There is no search backend; the query is answered by a nested gateway
call with a researcher system prompt. Answers may be stale for recent
libraries.
"""

import logging
from typing import TYPE_CHECKING

from taskpilot.errors import GatewayError
from taskpilot.tools import ActionTool, ToolAction
from taskpilot.types import ToolResult, UserTurn

if TYPE_CHECKING:
    from taskpilot.context import RunContext

logger = logging.getLogger(__name__)

RESEARCHER_PROMPT = """You are a documentation researcher. Answer the following query with accurate, technical information.
Be concise but thorough. Include code examples where appropriate. If you don't know the answer, say so instead of making things up.
Only answer what is asked."""

RESEARCH_TEMPERATURE = 0.3


class DocumentationTool(ActionTool):
    """Answers documentation queries through the engine's gateway."""

    def __init__(self) -> None:
        super().__init__(
            tool_id="docs",
            description="Searches for technical documentation or answers general knowledge questions.",
        )
        self.add_action(ToolAction(
            name="search",
            description="Searches for technical documentation or answers general knowledge questions.",
            parameters={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "The search or documentation query."},
                },
                "required": ["query"],
            },
            handler=self.search,
        ))

    def search(self, context: "RunContext", query: str) -> ToolResult:
        if not isinstance(query, str) or not query.strip():
            return ToolResult.fail("'query' must be a non-empty string.")

        logger.info(f"Documentation search requested for: {query!r}")
        options = {**context.options, "temperature": RESEARCH_TEMPERATURE}
        try:
            response = context.engine.gateway.generate(
                RESEARCHER_PROMPT,
                [UserTurn(text=query)],
                [],
                options=options,
                cancel_token=context.cancel_token,
            )
        except GatewayError as e:
            logger.warning(f"Documentation search failed: {e}")
            return ToolResult.fail(f"Documentation search failed: {e}")

        if response.error:
            return ToolResult.fail(f"Documentation search failed: {response.error}")
        return ToolResult.ok(response.content or "")
