"""
Tests for the tool system.

ToolRegistry.dispatch is the controlled entry point for side effects: no
matter what goes wrong it returns a ToolResult and never raises.
"""

from unittest.mock import MagicMock

import pytest

from taskpilot.errors import ToolExecutionError
from taskpilot.tools import ActionTool, ToolAction, ToolCatalogEntry, ToolRegistry
from taskpilot.types import ToolCallRequest, ToolResult


def make_echo_tool() -> ActionTool:
    def echo(context, text: str) -> str:
        return f"echo: {text}"

    def explode(context) -> str:
        raise RuntimeError("kaboom")

    def refuse(context) -> ToolResult:
        raise ToolExecutionError("not today")

    def structured(context, value: int) -> ToolResult:
        return ToolResult.ok({"doubled": value * 2})

    return ActionTool(
        tool_id="util",
        description="Utility actions",
        actions=[
            ToolAction(
                name="echo",
                description="Echo text",
                parameters={
                    "type": "object",
                    "properties": {"text": {"type": "string"}},
                    "required": ["text"],
                },
                handler=echo,
            ),
            ToolAction("explode", "Always raises", {"type": "object", "properties": {}}, explode),
            ToolAction("refuse", "Raises a tool error", {"type": "object", "properties": {}}, refuse),
            ToolAction(
                "double",
                "Double a number",
                {"type": "object", "properties": {"value": {"type": "integer"}}, "required": ["value"]},
                structured,
            ),
        ],
    )


def make_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(make_echo_tool())
    return registry


class TestActionTool:
    """Tests for ActionTool."""

    def test_catalog_uses_dotted_names(self) -> None:
        catalog = make_echo_tool().catalog()
        assert [e.dotted_name for e in catalog] == ["util.echo", "util.explode", "util.refuse", "util.double"]
        assert catalog[0].argument_schema["required"] == ["text"]

    def test_plain_value_wrapped_as_success(self) -> None:
        result = make_echo_tool().execute("echo", {"text": "hi"}, MagicMock())
        assert result.success
        assert result.output == "echo: hi"

    def test_tool_result_passed_through(self) -> None:
        result = make_echo_tool().execute("double", {"value": 4}, MagicMock())
        assert result.output == {"doubled": 8}

    def test_unknown_action_lists_available(self) -> None:
        result = make_echo_tool().execute("nope", {}, MagicMock())
        assert not result.success
        assert "Unknown action 'nope'" in (result.error or "")
        assert "echo" in (result.error or "")

    def test_missing_required_argument(self) -> None:
        result = make_echo_tool().execute("echo", {}, MagicMock())
        assert not result.success
        assert "text" in (result.error or "")


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_register_and_get(self) -> None:
        registry = make_registry()
        assert "util" in registry
        assert len(registry) == 1
        assert registry.get("util") is not None
        assert registry.get("missing") is None

    def test_catalog_filtered_by_ids(self) -> None:
        registry = make_registry()
        other = ActionTool("other", "Other", [
            ToolAction("noop", "Nothing", {"type": "object", "properties": {}}, lambda context: None),
        ])
        registry.register(other)
        names = [e.dotted_name for e in registry.catalog(frozenset({"other", "ghost"}))]
        assert names == ["other.noop"]
        assert len(registry.catalog()) == 5

    def test_catalog_entry_is_frozen(self) -> None:
        entry = ToolCatalogEntry("a.b", "desc", {})
        with pytest.raises(AttributeError):
            entry.dotted_name = "c.d"  # type: ignore[misc]


class TestDispatch:
    """dispatch never raises."""

    def test_success(self) -> None:
        result = make_registry().dispatch(ToolCallRequest("util.echo", {"text": "x"}), MagicMock())
        assert result.success
        assert result.output == "echo: x"

    def test_unknown_tool(self) -> None:
        result = make_registry().dispatch(ToolCallRequest("ghost.read", {}), MagicMock())
        assert not result.success
        assert result.error == "Tool 'ghost' not found."

    def test_disallowed_tool_treated_as_unknown(self) -> None:
        result = make_registry().dispatch(
            ToolCallRequest("util.echo", {"text": "x"}), MagicMock(), allowed=frozenset({"file"})
        )
        assert not result.success
        assert result.error == "Tool 'util' not found."

    def test_name_without_action(self) -> None:
        result = make_registry().dispatch(ToolCallRequest("util", {}), MagicMock())
        assert not result.success
        assert "toolId.action" in (result.error or "")

    def test_parse_error_not_executed(self) -> None:
        handler = MagicMock()
        registry = ToolRegistry()
        registry.register(ActionTool("t", "T", [ToolAction("a", "A", {}, handler)]))
        result = registry.dispatch(ToolCallRequest("t.a", {}, parse_error="bad json"), MagicMock())
        assert not result.success
        assert "bad json" in (result.error or "")
        handler.assert_not_called()

    def test_exception_becomes_failure(self) -> None:
        result = make_registry().dispatch(ToolCallRequest("util.explode", {}), MagicMock())
        assert not result.success
        assert "kaboom" in (result.error or "")

    def test_tool_execution_error_message_kept(self) -> None:
        result = make_registry().dispatch(ToolCallRequest("util.refuse", {}), MagicMock())
        assert result.error == "not today"

    def test_unexpected_argument(self) -> None:
        handler = MagicMock()
        registry = ToolRegistry()
        registry.register(ActionTool("t", "T", [
            ToolAction("a", "A", {"type": "object", "properties": {"text": {"type": "string"}}}, handler),
        ]))
        result = registry.dispatch(ToolCallRequest("t.a", {"text": "x", "colour": "red"}), MagicMock())
        assert not result.success
        assert result.error == "Invalid arguments for 't.a': unexpected colour"
        handler.assert_not_called()

    def test_type_error_inside_handler_is_not_an_argument_error(self) -> None:
        def buggy(context, text: str) -> str:
            return text + 1

        registry = ToolRegistry()
        registry.register(ActionTool("t", "T", [
            ToolAction("a", "A", {"type": "object", "properties": {"text": {"type": "string"}}}, buggy),
        ]))
        result = registry.dispatch(ToolCallRequest("t.a", {"text": "x"}), MagicMock())
        assert not result.success
        assert (result.error or "").startswith("Error: ")
        assert "Invalid arguments" not in (result.error or "")

    def test_non_dict_arguments(self) -> None:
        result = make_registry().dispatch(ToolCallRequest("util.echo", ["x"]), MagicMock())  # type: ignore[arg-type]
        assert not result.success
