"""
ToolCallingLoop - bounded LLM/tool iteration for one leaf agent.

One iteration is one LLM round-trip:
1. Send the system prompt, history and tool catalog to the gateway
2. Classify the response: native tool calls, a JSON control envelope, or plain text
3. Tool calls: record them, execute each in order, record each result, go to 1
4. Otherwise: the text is the final answer

The loop stops with RunFailure when the iteration budget runs out or the
gateway fails, and with RunCancelled when the token fires. Everything else
(unknown tools, bad arguments, tool exceptions, patch conflicts) becomes a
failed tool result in the transcript so the model can correct itself.
"""

import logging
from dataclasses import dataclass

from taskpilot.context import RunContext
from taskpilot.errors import GatewayError, IterationBudgetExceeded, OperationCancelled, TaskpilotError
from taskpilot.events import EventType
from taskpilot.llm import GatewayResponse
from taskpilot.protocol import OutputKind, extract_control
from taskpilot.session import ExecutionSession
from taskpilot.tools import ToolCatalogEntry
from taskpilot.types import (
    AgentDefinition,
    RunCancelled,
    RunFailure,
    RunResult,
    RunSuccess,
    ToolCallRequest,
    ToolResult,
    Turn,
)

logger = logging.getLogger(__name__)

MAX_ITERATIONS_REASON = "max iterations exceeded"
SKIPPED_ON_CANCEL = "Cancelled before execution."


@dataclass
class Classified:
    """What the loop should do with one gateway response."""
    tool_calls: list[ToolCallRequest]
    text: str | None
    via: str


def classify_response(response: GatewayResponse) -> Classified:
    """
    Decide between tool calls and a final answer.

    Native tool calls win over anything in the text. Without them the
    text is searched for a control envelope; failing that, the whole text
    is the answer.
    """
    if response.has_tool_calls:
        return Classified(tool_calls=list(response.tool_calls), text=response.content, via="native")

    parsed = extract_control(response.content)
    if parsed.kind == OutputKind.TOOL_CALL and parsed.tool_call is not None:
        return Classified(tool_calls=[parsed.tool_call], text=parsed.text, via="envelope")
    if parsed.kind == OutputKind.FINAL_ANSWER:
        return Classified(tool_calls=[], text=parsed.text, via="envelope")
    return Classified(tool_calls=[], text=parsed.text, via="plain_text")


class ToolCallingLoop:
    """
    Runs a leaf agent to a final answer.

    The loop itself is stateless between runs; ``last_session`` keeps the
    most recent session around so callers can inspect its event log.
    """

    def __init__(self) -> None:
        self.last_session: ExecutionSession | None = None

    def render_system_prompt(
        self,
        prompt: str,
        context: RunContext,
        agent: AgentDefinition,
        catalog: list[ToolCatalogEntry] | None = None,
    ) -> str:
        engine = context.engine
        template = engine.prompts.resolve(agent.system_prompt_template)
        if catalog is None:
            catalog = engine.tools.catalog(agent.allowed_tools)
        variables = {**context.variables, "USER_REQUEST": prompt}
        return engine.prompts.render(template, variables, catalog)

    def run(
        self,
        prompt: str,
        context: RunContext,
        agent: AgentDefinition,
        prior_history: list[Turn] | None = None,
    ) -> RunResult:
        """
        Run ``agent`` on ``prompt``.

        Returns RunSuccess, RunFailure or RunCancelled; never raises for
        gateway, tool or protocol problems.
        """
        engine = context.engine
        token = context.cancel_token
        session = ExecutionSession(agent=agent, history=list(prior_history or []))
        self.last_session = session
        tool_log: list[ToolResult] = []

        catalog = engine.tools.catalog(agent.allowed_tools)
        system_prompt = self.render_system_prompt(prompt, context, agent, catalog)
        session.add_user_turn(prompt)

        logger.info(f"Agent '{agent.id}' starting task (budget {agent.iteration_limit} iterations)")
        session.events.log_event(EventType.RUN_START, agent_id=agent.id, prompt=prompt)

        while not session.budget_exhausted:
            if token.cancelled:
                return self._cancelled(session, tool_log)

            session.iteration += 1
            logger.debug(f"Agent '{agent.id}' iteration {session.iteration}")
            session.events.log_event(
                EventType.LLM_REQUEST, session.iteration, turn_count=len(session.history)
            )

            try:
                response = engine.gateway.generate(
                    system_prompt,
                    session.snapshot(),
                    catalog,
                    options=context.options,
                    cancel_token=token,
                )
            except OperationCancelled:
                return self._cancelled(session, tool_log)
            except GatewayError as e:
                return self._failed(session, tool_log, f"Gateway error: {e}", e)

            if response.error:
                return self._failed(
                    session, tool_log, f"Gateway error: {response.error}", GatewayError(response.error)
                )

            classified = classify_response(response)
            session.events.log_event(
                EventType.LLM_RESPONSE,
                session.iteration,
                via=classified.via,
                tool_calls=[tc.name for tc in classified.tool_calls],
                finish_reason=response.finish_reason,
            )
            if classified.via == "plain_text":
                session.events.log_event(EventType.PROTOCOL_FALLBACK, session.iteration)

            if not classified.tool_calls:
                answer = classified.text or ""
                session.add_assistant_turn(answer)
                logger.info(f"Agent '{agent.id}' finished after {session.iteration} iteration(s)")
                session.events.log_event(EventType.RUN_END, session.iteration, outcome="success")
                return RunSuccess(
                    final_answer=answer,
                    history=session.snapshot(),
                    tool_log=tool_log,
                    iterations=session.iteration,
                )

            session.add_assistant_turn(classified.text, classified.tool_calls)
            for index, call in enumerate(classified.tool_calls):
                if token.cancelled:
                    # every recorded call still gets a result turn
                    for skipped in classified.tool_calls[index:]:
                        session.add_tool_result(skipped, ToolResult.fail(SKIPPED_ON_CANCEL))
                    return self._cancelled(session, tool_log)

                session.events.log_event(
                    EventType.TOOL_DISPATCH, session.iteration, name=call.name, call_id=call.id
                )
                result = engine.tools.dispatch(call, context, allowed=agent.allowed_tools)
                tool_log.append(result)
                session.add_tool_result(call, result)
                session.events.log_event(
                    EventType.TOOL_RESULT,
                    session.iteration,
                    name=call.name,
                    call_id=call.id,
                    success=result.success,
                    error=result.error,
                )

        logger.warning(f"Agent '{agent.id}' reached max iterations ({agent.iteration_limit})")
        return self._failed(
            session, tool_log, MAX_ITERATIONS_REASON, IterationBudgetExceeded(MAX_ITERATIONS_REASON)
        )

    def _failed(
        self,
        session: ExecutionSession,
        tool_log: list[ToolResult],
        reason: str,
        error: TaskpilotError,
    ) -> RunFailure:
        logger.error(f"Agent '{session.agent.id}' failed: {reason}")
        session.events.log_event(EventType.RUN_END, session.iteration, outcome="failure", reason=reason)
        return RunFailure(
            reason=reason,
            history=session.snapshot(),
            tool_log=tool_log,
            iterations=session.iteration,
            error=error,
        )

    def _cancelled(self, session: ExecutionSession, tool_log: list[ToolResult]) -> RunCancelled:
        session.cancelled = True
        logger.warning(f"Agent '{session.agent.id}' run cancelled.")
        session.events.log_event(EventType.CANCELLED, session.iteration)
        session.events.log_event(EventType.RUN_END, session.iteration, outcome="cancelled")
        return RunCancelled(
            history=session.snapshot(),
            tool_log=tool_log,
            iterations=session.iteration,
        )
