"""
Claudian - watch a coding agent work, live.

This package runs the ``claude`` CLI on a natural-language instruction and
renders its progress as it happens:
- The runner spawns the agent and decodes its stream-json output
- The session controller correlates tool calls with their results
- Output sinks render text, tool cards and status
- Runs can be cancelled mid-flight
"""

from .config import Permissions, Settings, load_settings
from .controller import SessionController, SessionState, ToolCard, reduce
from .events import (
    AgentEvent,
    CompletionEvent,
    ErrorEvent,
    SessionStatus,
    SystemInitEvent,
    TextDeltaEvent,
    ToolResultEvent,
    ToolUseEvent,
)
from .runner import ClaudeProcessRunner, RunOptions
from .sinks import OutputSink, RecordingSink, TerminalSink

__all__ = [
    "AgentEvent",
    "ClaudeProcessRunner",
    "CompletionEvent",
    "ErrorEvent",
    "OutputSink",
    "Permissions",
    "RecordingSink",
    "RunOptions",
    "SessionController",
    "SessionState",
    "SessionStatus",
    "Settings",
    "SystemInitEvent",
    "TerminalSink",
    "TextDeltaEvent",
    "ToolCard",
    "ToolResultEvent",
    "ToolUseEvent",
    "load_settings",
    "reduce",
]
