"""
Control envelope extraction for gateways without native tool calling.

The model is asked to answer with one of two JSON objects:

    {"tool_call": {"name": "file.readFile", "arguments": {...}}}
    {"final_answer": "..."}

Models wrap these in markdown fences, add prose, or produce broken JSON.
``extract_control`` tries a fenced block first, then the bare text, and
falls back to treating the whole text as a plain answer. It never raises.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from taskpilot.errors import ProtocolParseError
from taskpilot.types import ToolCallRequest

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```[ \t]*([A-Za-z0-9_+-]*)[ \t]*\n(.*?)```", re.DOTALL)


class OutputKind(Enum):
    TOOL_CALL = "tool_call"
    FINAL_ANSWER = "final_answer"
    PLAIN_TEXT = "plain_text"


@dataclass
class ParsedOutput:
    """Model text classified into one of the three control outcomes."""
    kind: OutputKind
    text: str
    tool_call: ToolCallRequest | None = None

    @property
    def is_tool_call(self) -> bool:
        return self.kind == OutputKind.TOOL_CALL


def parse_arguments(raw: Any) -> dict[str, Any]:
    """
    Normalize tool arguments to a dict.

    Accepts a dict, a JSON object string, or None. Raises
    ProtocolParseError for anything else.
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProtocolParseError(f"Tool arguments are not valid JSON: {e}") from e
        if not isinstance(decoded, dict):
            raise ProtocolParseError("Tool arguments must be a JSON object")
        return decoded
    raise ProtocolParseError(f"Tool arguments must be an object, got {type(raw).__name__}")


def _envelope_from_obj(obj: Any, text: str) -> ParsedOutput:
    if not isinstance(obj, dict):
        raise ProtocolParseError("Control envelope must be a JSON object")

    if "tool_call" in obj:
        call = obj["tool_call"]
        if not isinstance(call, dict) or not isinstance(call.get("name"), str) or not call["name"]:
            raise ProtocolParseError("tool_call must have a non-empty string 'name'")
        try:
            arguments = parse_arguments(call.get("arguments"))
            parse_error = None
        except ProtocolParseError as e:
            arguments = {}
            parse_error = str(e)
        return ParsedOutput(
            kind=OutputKind.TOOL_CALL,
            text=text,
            tool_call=ToolCallRequest(
                name=call["name"],
                arguments=arguments,
                parse_error=parse_error,
            ),
        )

    if "final_answer" in obj:
        answer = obj["final_answer"]
        if not isinstance(answer, str):
            answer = json.dumps(answer)
        return ParsedOutput(kind=OutputKind.FINAL_ANSWER, text=answer)

    raise ProtocolParseError("JSON object has neither 'tool_call' nor 'final_answer'")


def _try_json(candidate: str, text: str) -> ParsedOutput | None:
    candidate = candidate.strip()
    if not candidate.startswith("{"):
        return None
    try:
        return _envelope_from_obj(json.loads(candidate), text)
    except (json.JSONDecodeError, ProtocolParseError) as e:
        logger.debug(f"Not a control envelope: {e}")
        return None


def extract_control(text: str | None) -> ParsedOutput:
    """Classify model text as a tool call, a final answer, or plain text."""
    text = text or ""

    for match in _FENCE.finditer(text):
        language = match.group(1).lower()
        if language and language not in ("json", "jsonc", "javascript", "js"):
            continue
        parsed = _try_json(match.group(2), text)
        if parsed is not None:
            return parsed

    parsed = _try_json(text, text)
    if parsed is not None:
        return parsed

    return ParsedOutput(kind=OutputKind.PLAIN_TEXT, text=text)
