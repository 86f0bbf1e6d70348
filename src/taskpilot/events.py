"""
Per-session event log.

Every LLM round-trip, tool dispatch and delegation is recorded as an event
so a finished run can be inspected or saved as JSON lines. The log is
append-only and lives on the ExecutionSession.
"""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


class EventType(Enum):
    """Types of events recorded during a run."""
    RUN_START = "run_start"
    RUN_END = "run_end"
    LLM_REQUEST = "llm_request"
    LLM_RESPONSE = "llm_response"
    TOOL_DISPATCH = "tool_dispatch"
    TOOL_RESULT = "tool_result"
    PROTOCOL_FALLBACK = "protocol_fallback"
    DELEGATION = "delegation"
    DELEGATION_REJECTED = "delegation_rejected"
    FORMAT_CORRECTION = "format_correction"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class RunEvent:
    """A single event in a session's event log."""
    timestamp: datetime
    event_type: EventType
    iteration: int
    data: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "iteration": self.iteration,
            "data": self.data,
        }


@dataclass
class EventLog:
    """Append-only event log for one session."""
    events: list[RunEvent] = field(default_factory=list)

    def log_event(
        self,
        event_type: EventType,
        iteration: int = 0,
        **data: Any,
    ) -> RunEvent:
        event = RunEvent(
            timestamp=datetime.now(UTC),
            event_type=event_type,
            iteration=iteration,
            data=data,
        )
        self.events.append(event)
        return event

    def of_type(self, event_type: EventType) -> list[RunEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def save(self, path: Path) -> None:
        lines = [json.dumps(e.to_dict(), default=str) for e in self.events]
        path.write_text("\n".join(lines), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> "EventLog":
        log = cls()
        for line in path.read_text(encoding="utf-8").strip().split("\n"):
            if line:
                data = json.loads(line)
                log.events.append(RunEvent(
                    timestamp=datetime.fromisoformat(data["timestamp"]),
                    event_type=EventType(data["event_type"]),
                    iteration=data["iteration"],
                    data=data["data"],
                ))
        return log
