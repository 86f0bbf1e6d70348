"""
SupervisorLoop - delegation to leaf agents.

A supervisor has no tools. Each model response must be exactly one of:

    [DELEGATE agent_id] Task Description: <task for the sub-agent>
    [FINAL_ANSWER] <answer>

A ``{"final_answer": "..."}`` envelope is accepted as a final answer too.
A delegation to an agent outside ``delegates_to`` gets a corrective system
note and the loop continues; so does a response in neither format. A valid
delegation runs the sub-agent through ToolCallingLoop with a child
cancellation token, and its outcome is fed back as a user turn. A failed
sub-agent never fails the supervisor.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum

from taskpilot.agent_loop import MAX_ITERATIONS_REASON, ToolCallingLoop
from taskpilot.context import RunContext
from taskpilot.errors import (
    DelegationValidationError,
    GatewayError,
    IterationBudgetExceeded,
    OperationCancelled,
    TaskpilotError,
)
from taskpilot.events import EventType
from taskpilot.protocol import OutputKind, extract_control
from taskpilot.session import ExecutionSession
from taskpilot.types import (
    AgentDefinition,
    DelegationRecord,
    RunCancelled,
    RunFailure,
    RunResult,
    RunSuccess,
    Turn,
)

logger = logging.getLogger(__name__)

_DELEGATE = re.compile(
    r"\[DELEGATE\s+([^\]\s]+)\s*\]\s*Task Description:\s*(.*)",
    re.DOTALL | re.IGNORECASE,
)
_FINAL_ANSWER = re.compile(r"\[FINAL_ANSWER\]\s*(.*)", re.DOTALL | re.IGNORECASE)

FORMAT_CORRECTION = (
    "Your last response did not follow the required format. Reply with exactly one of:\n"
    "[DELEGATE agent_id] Task Description: <task>\n"
    "[FINAL_ANSWER] <answer>"
)


class DirectiveKind(Enum):
    DELEGATE = "delegate"
    FINAL_ANSWER = "final_answer"
    INVALID = "invalid"


@dataclass
class Directive:
    kind: DirectiveKind
    text: str = ""
    agent_id: str | None = None


def parse_directive(text: str | None) -> Directive:
    """Parse one supervisor response. Whichever marker appears first wins."""
    text = text or ""
    delegate = _DELEGATE.search(text)
    final = _FINAL_ANSWER.search(text)

    if final and (delegate is None or final.start() < delegate.start()):
        return Directive(kind=DirectiveKind.FINAL_ANSWER, text=final.group(1).strip())
    if delegate:
        task = delegate.group(2).strip()
        if task:
            return Directive(kind=DirectiveKind.DELEGATE, text=task, agent_id=delegate.group(1))
        return Directive(kind=DirectiveKind.INVALID, text=text)

    parsed = extract_control(text)
    if parsed.kind == OutputKind.FINAL_ANSWER:
        return Directive(kind=DirectiveKind.FINAL_ANSWER, text=parsed.text)
    return Directive(kind=DirectiveKind.INVALID, text=text)


def format_agent_list(agents: list[AgentDefinition]) -> str:
    if not agents:
        return "(no agents available)"
    lines = []
    for agent in agents:
        line = f"- {agent.id}: {agent.name}"
        if agent.description:
            line += f" - {agent.description}"
        lines.append(line)
    return "\n".join(lines)


class SupervisorLoop:
    """Runs a supervisor agent, delegating sub-tasks to leaf agents."""

    def __init__(self, leaf_loop: ToolCallingLoop | None = None) -> None:
        self.leaf_loop = leaf_loop or ToolCallingLoop()
        self.last_session: ExecutionSession | None = None

    def validate_delegation(
        self,
        context: RunContext,
        supervisor: AgentDefinition,
        agent_id: str,
    ) -> AgentDefinition:
        """
        Resolve the target of a delegation.

        Raises:
            DelegationValidationError: if the id is not one this supervisor may use
        """
        sub = context.engine.agents.get(agent_id) if agent_id in supervisor.delegates_to else None
        if sub is None or sub.is_supervisor:
            available = ", ".join(sorted(supervisor.delegates_to)) or "none"
            raise DelegationValidationError(
                f"Agent '{agent_id}' is not available for delegation. Available agents: {available}."
            )
        return sub

    def render_system_prompt(self, prompt: str, context: RunContext, agent: AgentDefinition) -> str:
        engine = context.engine
        template = engine.prompts.resolve(agent.system_prompt_template)
        variables = {
            **context.variables,
            "USER_REQUEST": prompt,
            "AGENT_LIST": format_agent_list(engine.agents.delegates_of(agent)),
        }
        return engine.prompts.render(template, variables)

    def run(
        self,
        prompt: str,
        context: RunContext,
        agent: AgentDefinition,
        prior_history: list[Turn] | None = None,
    ) -> RunResult:
        engine = context.engine
        token = context.cancel_token
        session = ExecutionSession(agent=agent, history=list(prior_history or []))
        self.last_session = session
        delegations: list[DelegationRecord] = []

        system_prompt = self.render_system_prompt(prompt, context, agent)
        session.add_user_turn(prompt)

        logger.info(f"Supervisor '{agent.id}' starting task: {prompt}")
        session.events.log_event(EventType.RUN_START, agent_id=agent.id, prompt=prompt)

        while not session.budget_exhausted:
            if token.cancelled:
                return self._cancelled(session, delegations)

            session.iteration += 1
            logger.debug(f"Supervisor iteration {session.iteration}")
            session.events.log_event(
                EventType.LLM_REQUEST, session.iteration, turn_count=len(session.history)
            )

            try:
                response = engine.gateway.generate(
                    system_prompt,
                    session.snapshot(),
                    [],
                    options=context.options,
                    cancel_token=token,
                )
            except OperationCancelled:
                return self._cancelled(session, delegations)
            except GatewayError as e:
                return self._failed(session, delegations, f"Gateway error: {e}", e)

            if response.error:
                return self._failed(
                    session, delegations, f"Gateway error: {response.error}", GatewayError(response.error)
                )

            text = response.content or ""
            session.add_assistant_turn(text)
            directive = parse_directive(text) if not response.has_tool_calls else Directive(DirectiveKind.INVALID)

            if directive.kind == DirectiveKind.FINAL_ANSWER:
                logger.info(f"Supervisor '{agent.id}' finished after {session.iteration} iteration(s)")
                session.events.log_event(EventType.RUN_END, session.iteration, outcome="success")
                return RunSuccess(
                    final_answer=directive.text,
                    history=session.snapshot(),
                    iterations=session.iteration,
                    delegations=delegations,
                )

            if directive.kind == DirectiveKind.INVALID:
                logger.warning("Supervisor response did not follow the delegation format")
                session.events.log_event(EventType.FORMAT_CORRECTION, session.iteration)
                session.add_system_turn(FORMAT_CORRECTION)
                continue

            agent_id = directive.agent_id or ""
            try:
                sub = self.validate_delegation(context, agent, agent_id)
            except DelegationValidationError as e:
                logger.warning(f"Rejected delegation: {e}")
                session.events.log_event(
                    EventType.DELEGATION_REJECTED, session.iteration, agent_id=agent_id, reason=str(e)
                )
                session.add_system_turn(f"{e} Delegate only to the agents listed, by id.")
                continue

            logger.info(f"Delegating to '{sub.id}': {directive.text}")
            session.events.log_event(
                EventType.DELEGATION, session.iteration, agent_id=sub.id, task=directive.text
            )
            sub_result = self.leaf_loop.run(directive.text, context.child(), sub)
            record = DelegationRecord(sub_agent_id=sub.id, task_description=directive.text, result=sub_result)
            delegations.append(record)

            if isinstance(sub_result, RunCancelled) and token.cancelled:
                return self._cancelled(session, delegations)

            session.add_user_turn(f"Result from agent {sub.id}: {record.summary()}")

        logger.warning(f"Supervisor '{agent.id}' reached max iterations ({agent.iteration_limit})")
        return self._failed(
            session, delegations, MAX_ITERATIONS_REASON, IterationBudgetExceeded(MAX_ITERATIONS_REASON)
        )

    def _failed(
        self,
        session: ExecutionSession,
        delegations: list[DelegationRecord],
        reason: str,
        error: TaskpilotError,
    ) -> RunFailure:
        logger.error(f"Supervisor '{session.agent.id}' failed: {reason}")
        session.events.log_event(EventType.RUN_END, session.iteration, outcome="failure", reason=reason)
        return RunFailure(
            reason=reason,
            history=session.snapshot(),
            iterations=session.iteration,
            delegations=delegations,
            error=error,
        )

    def _cancelled(self, session: ExecutionSession, delegations: list[DelegationRecord]) -> RunCancelled:
        session.cancelled = True
        logger.warning(f"Supervisor '{session.agent.id}' run cancelled.")
        session.events.log_event(EventType.CANCELLED, session.iteration)
        session.events.log_event(EventType.RUN_END, session.iteration, outcome="cancelled")
        return RunCancelled(
            history=session.snapshot(),
            iterations=session.iteration,
            delegations=delegations,
        )


def loop_for(agent: AgentDefinition) -> "ToolCallingLoop | SupervisorLoop":
    """Pick the loop that matches the agent's role."""
    return SupervisorLoop() if agent.is_supervisor else ToolCallingLoop()


def run_agent(
    prompt: str,
    context: RunContext,
    agent_id: str,
    prior_history: list[Turn] | None = None,
) -> RunResult:
    """Look up ``agent_id`` and run it with the loop that matches its role."""
    agent = context.engine.agents.get(agent_id)
    if agent is None:
        raise ValueError(f"Unknown agent '{agent_id}'. Registered agents: {', '.join(context.engine.agents.ids)}")
    return loop_for(agent).run(prompt, context, agent, prior_history)
