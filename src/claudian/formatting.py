"""Display rules for tool cards and the status line.

Everything here is a pure function of controller state.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .events import SessionStatus

RESULT_DISPLAY_LIMIT = 500
TRUNCATION_MARKER = "\n… (truncated)"
RESULT_PLACEHOLDER = "Waiting for result..."


@dataclass(frozen=True)
class SummaryRule:
    """Which input field labels a tool card, and what to show when it's missing."""
    field: str
    default: str = ""


# Tools not listed here fall back to the first two input keys.
SUMMARY_RULES: Dict[str, SummaryRule] = {
    "Read": SummaryRule("file_path"),
    "Edit": SummaryRule("file_path"),
    "Write": SummaryRule("file_path"),
    "Glob": SummaryRule("pattern"),
    "Grep": SummaryRule("pattern"),
    "LS": SummaryRule("path", default="."),
}


def _display_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _fallback_summary(tool_input: Mapping[str, Any]) -> str:
    return ", ".join(list(tool_input.keys())[:2])


def summarize_tool_input(tool_name: str, tool_input: Optional[Mapping[str, Any]]) -> str:
    """Header label for a tool card."""
    tool_input = tool_input or {}
    rule = SUMMARY_RULES.get(tool_name)
    if rule is None:
        return _fallback_summary(tool_input)
    value = tool_input.get(rule.field)
    if value is None:
        return rule.default
    return _display_value(value)


def format_tool_input(tool_input: Optional[Mapping[str, Any]]) -> str:
    return json.dumps(dict(tool_input or {}), indent=2, ensure_ascii=False, default=str)


def format_tool_result(content: str, limit: int = RESULT_DISPLAY_LIMIT) -> str:
    if len(content) > limit:
        return content[:limit] + TRUNCATION_MARKER
    return content


def format_done(turns: int, cost_usd: float) -> str:
    suffix = "" if turns == 1 else "s"
    return f"Done ({turns} turn{suffix} · ${cost_usd:.4f})"


def format_status(status: SessionStatus, turns: int = 0, cost_usd: float = 0.0) -> str:
    if status is SessionStatus.RUNNING:
        return "Running..."
    if status is SessionStatus.DONE:
        return format_done(turns, cost_usd)
    if status is SessionStatus.ERROR:
        return "Error occurred. See output above."
    if status is SessionStatus.CANCELLED:
        return "Cancelled."
    return ""
