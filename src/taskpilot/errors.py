"""
Error taxonomy for the engine.

Only GatewayError and an exhausted iteration budget end a run as a failure.
Cancellation ends it as a normal stop. Everything else is caught where it
happens, written into the transcript, and fed back to the model.
"""


class TaskpilotError(Exception):
    """Base class for all engine errors."""
    pass


class GatewayError(TaskpilotError):
    """Transport, auth or rate-limit failure talking to the LLM backend."""
    pass


class ToolExecutionError(TaskpilotError):
    """A tool failed while executing. Becomes a failed ToolResult."""
    pass


class ProtocolParseError(TaskpilotError):
    """Malformed tool-call JSON or arguments in model output."""
    pass


class PatchParseError(TaskpilotError):
    """Patch text is not a well-formed unified diff."""
    pass


class PatchConflictError(TaskpilotError):
    """A hunk could not be located in the target text."""

    def __init__(self, message: str, hunk_index: int | None = None) -> None:
        super().__init__(message)
        self.hunk_index = hunk_index


class IterationBudgetExceeded(TaskpilotError):
    """The run used all of its LLM round-trips without a final answer."""
    pass


class OperationCancelled(TaskpilotError):
    """The cancellation token fired."""
    pass


class DelegationValidationError(TaskpilotError):
    """A supervisor named an agent it may not delegate to."""
    pass


class AgentDefinitionError(TaskpilotError):
    """An agent definition or delegation graph is invalid. Raised at build time."""
    pass
