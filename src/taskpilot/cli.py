"""
Command line entry point.

    taskpilot run "Add a docstring to utils.py" --agents agents.json --agent coder
    taskpilot agents --agents agents.json
    taskpilot prompts
"""

import json
import logging
import os
import sys
from pathlib import Path

from taskpilot.config import EngineConfig
from taskpilot.context import EngineContext, RunContext
from taskpilot.errors import AgentDefinitionError
from taskpilot.llm import LLMGateway
from taskpilot.logging_setup import configure_logging
from taskpilot.session import history_to_dicts
from taskpilot.supervisor import loop_for
from taskpilot.types import RunCancelled, RunFailure, RunSuccess

logger = logging.getLogger(__name__)

DEFAULT_AGENT = {
    "id": "default",
    "name": "Default Coder",
    "systemPromptName": "default_coder",
    "tools": ["file", "docs"],
}


def _parse_vars(pairs: list[str]) -> dict[str, str]:
    variables: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected KEY=VALUE, got '{pair}'")
        variables[key] = value
    return variables


def build_engine(args, gateway: LLMGateway | None = None) -> EngineContext:
    config = EngineConfig.from_env()
    if getattr(args, "workspace", None):
        config.workspace = Path(args.workspace).expanduser()
    if getattr(args, "model", None):
        config.llm.model = args.model
    if getattr(args, "max_iterations", None):
        config.loop.max_iterations = args.max_iterations

    engine = EngineContext(config, gateway=gateway)
    if getattr(args, "agents", None):
        engine.agents.load_json_file(Path(args.agents))
    else:
        engine.agents.load_dicts([DEFAULT_AGENT])
    return engine


def cmd_run(args, gateway: LLMGateway | None = None) -> int:
    with build_engine(args, gateway) as engine:
        agent_id = args.agent or engine.agents.ids[0]
        context = RunContext(engine=engine, variables=_parse_vars(args.var or []))
        agent = engine.agents.get(agent_id)
        if agent is None:
            raise ValueError(f"Unknown agent '{agent_id}'. Registered agents: {', '.join(engine.agents.ids)}")
        loop = loop_for(agent)

        try:
            result = loop.run(args.prompt, context, agent)
        except KeyboardInterrupt:
            context.cancel_token.cancel("Interrupted")
            print("Cancelled.", file=sys.stderr)
            return 130

        if args.events and loop.last_session is not None:
            loop.last_session.events.save(Path(args.events))
        if args.history:
            Path(args.history).write_text(json.dumps(history_to_dicts(result.history), indent=2, default=str))

        if isinstance(result, RunSuccess):
            for record in result.delegations:
                status = "ok" if record.succeeded else "failed"
                print(f"[{record.sub_agent_id}: {status}] {record.task_description}", file=sys.stderr)
            print(result.final_answer)
            return 0
        if isinstance(result, RunFailure):
            print(f"Run failed after {result.iterations} iteration(s): {result.reason}", file=sys.stderr)
            return 1
        if isinstance(result, RunCancelled):
            print("Cancelled.", file=sys.stderr)
            return 130
    return 1


def cmd_agents(args) -> int:
    with build_engine(args, gateway=_NO_GATEWAY) as engine:
        for agent in engine.agents:
            tools = ", ".join(sorted(agent.allowed_tools)) or "-"
            line = f"{agent.id}\t{agent.role.value}\t{agent.name}\ttools: {tools}"
            if agent.is_supervisor:
                line += f"\tdelegates: {', '.join(sorted(agent.delegates_to))}"
            print(line)
    return 0


def cmd_prompts(args) -> int:
    with build_engine(args, gateway=_NO_GATEWAY) as engine:
        for name in engine.prompts.list_template_names():
            print(name)
    return 0


class _OfflineGateway:
    """Placeholder gateway for commands that never call the model."""

    def generate(self, *args, **kwargs):
        raise RuntimeError("This command does not call the LLM")


_NO_GATEWAY = _OfflineGateway()


def main(argv: list[str] | None = None, gateway: LLMGateway | None = None) -> int:
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(prog="taskpilot", description="Agentic task execution engine")
    parser.add_argument("--log-level", default=None, help="Logging level (default: TASKPILOT_LOG_LEVEL or INFO)")
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--agents", help="JSON file with agent definitions")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", parents=[common], help="Run a task through an agent")
    run_parser.add_argument("prompt", help="The task to perform")
    run_parser.add_argument("--agent", help="Agent id (default: first agent defined)")
    run_parser.add_argument("--workspace", help="Workspace root for file tools")
    run_parser.add_argument("--model", help="Override LLM_MODEL")
    run_parser.add_argument("--max-iterations", type=int, help="Default iteration budget")
    run_parser.add_argument("--var", action="append", metavar="KEY=VALUE",
                            help="Prompt variable, may be repeated")
    run_parser.add_argument("--events", help="Write the session event log (JSON lines) here")
    run_parser.add_argument("--history", help="Write the final history (JSON) here")

    subparsers.add_parser("agents", parents=[common], help="List configured agents")
    subparsers.add_parser("prompts", parents=[common], help="List available system prompts")

    args = parser.parse_args(argv)
    configure_logging(args.log_level or os.getenv("TASKPILOT_LOG_LEVEL", "INFO"))

    try:
        if args.command == "run":
            return cmd_run(args, gateway)
        elif args.command == "agents":
            return cmd_agents(args)
        elif args.command == "prompts":
            return cmd_prompts(args)
    except (AgentDefinitionError, ValueError, OSError) as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 2

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
