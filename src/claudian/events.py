"""Event types for one run of the coding agent.

A run is reported as an ordered sequence of these events. Together they
form a tagged union: consumers switch on the concrete class and must
handle every member of ``AgentEvent``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Union


class SessionStatus(Enum):
    """Status of a session controller."""
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.DONE, SessionStatus.ERROR, SessionStatus.CANCELLED)


@dataclass(frozen=True)
class SystemInitEvent:
    """Advisory metadata sent once when the agent session starts."""
    session_id: str
    tool_names: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class TextDeltaEvent:
    """A fragment of narration text."""
    text: str


@dataclass(frozen=True)
class ToolUseEvent:
    """The agent invoked a named tool."""
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultEvent:
    """The outcome of an earlier tool invocation, correlated by id."""
    tool_use_id: str
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class CompletionEvent:
    """The run finished normally."""
    turns: int
    cost_usd: float


@dataclass(frozen=True)
class ErrorEvent:
    """The run failed. Terminal for the run."""
    message: str


AgentEvent = Union[
    SystemInitEvent,
    TextDeltaEvent,
    ToolUseEvent,
    ToolResultEvent,
    CompletionEvent,
    ErrorEvent,
]

TERMINAL_EVENTS = (CompletionEvent, ErrorEvent)
