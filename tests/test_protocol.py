"""
Tests for control envelope extraction.

Model text is classified as a tool call, a final answer or plain text.
Malformed JSON must never raise.
"""

import pytest

from taskpilot.errors import ProtocolParseError
from taskpilot.protocol import OutputKind, extract_control, parse_arguments


class TestParseArguments:
    """Tests for parse_arguments."""

    def test_dict_passes_through(self) -> None:
        assert parse_arguments({"a": 1}) == {"a": 1}

    def test_json_string_decoded(self) -> None:
        assert parse_arguments('{"filePath": "a.txt"}') == {"filePath": "a.txt"}

    def test_none_and_empty_are_empty(self) -> None:
        assert parse_arguments(None) == {}
        assert parse_arguments("") == {}

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(ProtocolParseError):
            parse_arguments("{not json")

    def test_non_object_raises(self) -> None:
        with pytest.raises(ProtocolParseError):
            parse_arguments("[1, 2]")
        with pytest.raises(ProtocolParseError):
            parse_arguments(42)


class TestExtractControl:
    """Tests for extract_control."""

    def test_bare_tool_call(self) -> None:
        text = '{"tool_call": {"name": "file.readFile", "arguments": {"filePath": "a.txt"}}}'
        parsed = extract_control(text)
        assert parsed.kind == OutputKind.TOOL_CALL
        assert parsed.tool_call is not None
        assert parsed.tool_call.name == "file.readFile"
        assert parsed.tool_call.arguments == {"filePath": "a.txt"}
        assert parsed.tool_call.id is None

    def test_fenced_tool_call_with_commentary(self) -> None:
        """A fenced block is found inside surrounding prose."""
        text = (
            "Let me read the file first.\n"
            "```json\n"
            '{"tool_call": {"name": "file.readFile", "arguments": {"filePath": "a.txt"}}}\n'
            "```\n"
        )
        parsed = extract_control(text)
        assert parsed.is_tool_call
        assert parsed.text == text

    def test_untagged_fence(self) -> None:
        text = '```\n{"final_answer": "done"}\n```'
        parsed = extract_control(text)
        assert parsed.kind == OutputKind.FINAL_ANSWER
        assert parsed.text == "done"

    def test_non_json_fence_is_skipped(self) -> None:
        """A python block is code, not a control envelope."""
        text = '```python\n{"final_answer": "no"}\n```'
        parsed = extract_control(text)
        assert parsed.kind == OutputKind.PLAIN_TEXT

    def test_bare_final_answer(self) -> None:
        parsed = extract_control('{"final_answer": "The file contains: hi"}')
        assert parsed.kind == OutputKind.FINAL_ANSWER
        assert parsed.text == "The file contains: hi"

    def test_non_string_final_answer_serialized(self) -> None:
        parsed = extract_control('{"final_answer": {"count": 2}}')
        assert parsed.kind == OutputKind.FINAL_ANSWER
        assert parsed.text == '{"count": 2}'

    def test_plain_text(self) -> None:
        parsed = extract_control("Echo: hello")
        assert parsed.kind == OutputKind.PLAIN_TEXT
        assert parsed.text == "Echo: hello"

    def test_broken_json_is_plain_text(self) -> None:
        text = '{"tool_call": {"name": "file.readFile", "arguments": '
        parsed = extract_control(text)
        assert parsed.kind == OutputKind.PLAIN_TEXT
        assert parsed.text == text

    def test_unrelated_json_is_plain_text(self) -> None:
        parsed = extract_control('{"status": "ok"}')
        assert parsed.kind == OutputKind.PLAIN_TEXT

    def test_tool_call_without_name_is_plain_text(self) -> None:
        parsed = extract_control('{"tool_call": {"arguments": {}}}')
        assert parsed.kind == OutputKind.PLAIN_TEXT

    def test_bad_argument_string_recorded_on_request(self) -> None:
        """The call is still recognised; the parse error travels with it."""
        parsed = extract_control('{"tool_call": {"name": "file.readFile", "arguments": "{oops"}}')
        assert parsed.kind == OutputKind.TOOL_CALL
        assert parsed.tool_call is not None
        assert parsed.tool_call.parse_error is not None
        assert parsed.tool_call.arguments == {}

    def test_stringified_arguments_decoded(self) -> None:
        parsed = extract_control('{"tool_call": {"name": "docs.search", "arguments": "{\\"query\\": \\"x\\"}"}}')
        assert parsed.tool_call is not None
        assert parsed.tool_call.arguments == {"query": "x"}

    def test_none_is_empty_plain_text(self) -> None:
        parsed = extract_control(None)
        assert parsed.kind == OutputKind.PLAIN_TEXT
        assert parsed.text == ""

    def test_first_valid_fence_wins(self) -> None:
        text = (
            "```json\n{broken\n```\n"
            '```json\n{"final_answer": "second"}\n```'
        )
        parsed = extract_control(text)
        assert parsed.kind == OutputKind.FINAL_ANSWER
        assert parsed.text == "second"
