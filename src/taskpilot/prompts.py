"""
System prompt templates.

Templates use ``{NAME}`` placeholders. Rendering substitutes global
variables, then run variables, then the tool catalog; a placeholder with
no value is left in place so a missing variable is visible rather than
silently blank.
"""

import json
import logging
import re
from typing import Any

from taskpilot.config import PromptConfig
from taskpilot.tools import ToolCatalogEntry

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")

TOOLS_PLACEHOLDER = "AVAILABLE_TOOLS_LIST"

TOOL_USAGE_INSTRUCTIONS = """
You have access to the following tools:
{AVAILABLE_TOOLS_LIST}

To use a tool, output a JSON object EXACTLY in this format (no other text before or after):
{"tool_call": {"name": "tool_id.action_name", "arguments": {"arg1": "value1"}}}

After the tool executes, I will provide you with the result, and you can continue your task or call another tool.

When you have the final answer and don't need to use any more tools, output a JSON object EXACTLY in this format:
{"final_answer": "Your complete final response here."}

Think step-by-step. Analyze the request, decide if a tool is needed, call the tool if necessary, analyze the result, and repeat until you can provide the final answer.
"""

DEFAULT_TEMPLATES: dict[str, str] = {
    "default_coder": """You are an expert AI programming assistant.
- Follow the user's requirements carefully.
- Think step-by-step before writing code.
- If you need to modify files or research documentation, use the provided tools.
- If you need clarification, ask questions.
""" + TOOL_USAGE_INSTRUCTIONS,

    "edit_code": """You are an AI code editor assistant.
- Current file: {CURRENT_FILE_PATH}
- User request: {USER_REQUEST}
- Use file.readFile if you need the current content.
- Create a patch with file.createDiff and apply it with file.applyDiff.
- Only modify what's needed for the task and preserve the original code style.
- If a patch does not apply, read the file again and produce a fresh patch.
""" + TOOL_USAGE_INSTRUCTIONS,

    "debug_fix": """You are an AI debugging assistant.
- Analyze the file ({FILE_PATH}) and the error message ({ERROR_MESSAGE}).
- Identify the root cause of the error.
- Apply the fix with file.applyDiff or file.writeFile. Do not output raw code for the fix, use the tools.
- Explain the fix clearly in your final answer.
""" + TOOL_USAGE_INSTRUCTIONS,

    "documentation_researcher": """You are an AI assistant specialized in finding and summarizing technical documentation.
- Research documentation related to the user's query: {USER_REQUEST}
- Use the docs.search tool with the query.
- Summarize the findings from the tool result in your final answer.
""" + TOOL_USAGE_INSTRUCTIONS,

    "chat_agent": """You are a helpful AI assistant engaging in a conversation.
- Respond clearly and concisely to the user's messages.
- Maintain the context of the conversation history.
- You can use tools if the user asks for information retrieval or file operations.
""" + TOOL_USAGE_INSTRUCTIONS,

    "supervisor": """You are a supervisor AI agent coordinating specialist agents.
User Request: {USER_REQUEST}
Available Agents:
{AGENT_LIST}

1. Analyze the request and break it down into sub-tasks for the specialist agents.
2. Delegate ONE task per response using exactly this format:
[DELEGATE agent_id] Task Description: <the specific task for the sub-agent>
3. You will receive each agent's result. Retry, re-delegate, or continue as needed.
4. When you are done, reply with exactly:
[FINAL_ANSWER] <your complete final answer>

Constraint: Only delegate to agents listed above, by id. You have no tools of your own.""",
}


def render_template(template: str, variables: dict[str, Any]) -> str:
    """Replace ``{NAME}`` placeholders, keeping unknown ones as-is."""

    def substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in variables and variables[name] is not None:
            return str(variables[name])
        return match.group(0)

    return _PLACEHOLDER.sub(substitute, template)


def format_tool_catalog(catalog: list[ToolCatalogEntry]) -> str:
    if not catalog:
        return "(no tools available)"
    lines = []
    for entry in catalog:
        lines.append(f"- {entry.dotted_name}: {entry.description}")
        if entry.argument_schema:
            lines.append(f"  Arguments: {json.dumps(entry.argument_schema)}")
    return "\n".join(lines)


class PromptManager:
    """
    Named templates plus global variables.

    User templates override the defaults by name. ``reconfigure`` swaps in
    a new PromptConfig without touching anything else.
    """

    def __init__(self, config: PromptConfig | None = None) -> None:
        self._templates: dict[str, str] = {}
        self._variables: dict[str, str] = {}
        self.reconfigure(config or PromptConfig())

    def reconfigure(self, config: PromptConfig) -> None:
        self._templates = {**DEFAULT_TEMPLATES, **config.templates}
        self._variables = dict(config.variables)
        logger.info(
            f"Loaded {len(self._templates)} system prompts and {len(self._variables)} prompt variables."
        )

    def get_template(self, name: str) -> str | None:
        return self._templates.get(name)

    def list_template_names(self) -> list[str]:
        return list(self._templates.keys())

    def resolve(self, name_or_template: str) -> str:
        """Return the named template, or the argument itself if it is not a known name."""
        return self._templates.get(name_or_template, name_or_template)

    def render(
        self,
        template: str,
        variables: dict[str, Any] | None = None,
        catalog: list[ToolCatalogEntry] | None = None,
    ) -> str:
        merged: dict[str, Any] = {**self._variables, **(variables or {})}
        if catalog is not None:
            merged[TOOLS_PLACEHOLDER] = format_tool_catalog(catalog)
        return render_template(template, merged)
