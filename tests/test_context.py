"""
Tests for EngineContext wiring and RunContext.
"""

from pathlib import Path

from taskpilot.config import EngineConfig, LLMConfig, LoopConfig, PatchConfig, PromptConfig
from taskpilot.context import EngineContext, RunContext, build_default_tools
from taskpilot.llm import LLMClient


class NullGateway:
    def generate(self, *args, **kwargs):
        raise AssertionError("not called")


def make_config(**overrides) -> EngineConfig:
    values = {
        "llm": LLMConfig(base_url="http://localhost:8000/v1", api_key="", model="test"),
        "loop": LoopConfig(),
        "patch": PatchConfig(),
        "prompts": PromptConfig(),
        "workspace": Path("."),
    }
    values.update(overrides)
    return EngineConfig(**values)


class TestEngineContext:
    def test_default_tools(self) -> None:
        assert build_default_tools().tool_ids == ["file", "docs"]

    def test_builds_client_when_no_gateway(self) -> None:
        with EngineContext(make_config()) as engine:
            assert isinstance(engine.gateway, LLMClient)

    def test_injected_gateway_kept(self) -> None:
        gateway = NullGateway()
        engine = EngineContext(make_config(), gateway=gateway)
        assert engine.gateway is gateway
        engine.reconfigure(make_config(llm=LLMConfig(base_url="http://other/v1", api_key="", model="m")))
        assert engine.gateway is gateway

    def test_reconfigure_rebuilds_owned_client(self) -> None:
        engine = EngineContext(make_config())
        first = engine.gateway
        engine.reconfigure(make_config(llm=LLMConfig(base_url="http://other/v1", api_key="", model="m")))
        assert engine.gateway is not first
        assert engine.gateway.config.base_url == "http://other/v1"
        engine.close()

    def test_reconfigure_applies_prompts_and_limits(self) -> None:
        engine = EngineContext(make_config(), gateway=NullGateway())
        engine.reconfigure(make_config(
            loop=LoopConfig(max_iterations=11),
            prompts=PromptConfig(variables={"LANG": "Go"}),
        ))
        assert engine.agents.default_iteration_limit == 11
        assert engine.prompts.render("{LANG}") == "Go"

    def test_reconfigure_with_new_gateway(self) -> None:
        engine = EngineContext(make_config())
        replacement = NullGateway()
        engine.reconfigure(make_config(), gateway=replacement)
        assert engine.gateway is replacement


class TestRunContext:
    def test_child_shares_engine_and_links_token(self) -> None:
        parent = RunContext(
            engine=EngineContext(make_config(), gateway=NullGateway()),
            variables={"A": "1"},
            options={"temperature": 0.1},
        )
        child = parent.child()
        assert child.engine is parent.engine
        assert child.variables == {"A": "1"}
        assert child.options == {"temperature": 0.1}

        child.cancel_token.cancel()
        assert not parent.cancel_token.cancelled

        other = parent.child(variables={"B": "2"})
        parent.cancel_token.cancel()
        assert other.cancel_token.cancelled
        assert other.variables == {"B": "2"}
