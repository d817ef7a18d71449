"""Decoder for the ``claude`` CLI's ``--output-format stream-json`` output.

Each line of output is one JSON object tagged by ``type``. ``decode_line``
projects it onto zero or more ``AgentEvent`` values.
"""

import json
from typing import Any, Dict, List

from .events import (
    AgentEvent,
    CompletionEvent,
    ErrorEvent,
    SystemInitEvent,
    TextDeltaEvent,
    ToolResultEvent,
    ToolUseEvent,
)


class StreamDecodeError(ValueError):
    """A line on the agent's stdout could not be decoded."""


def _flatten_content(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for item in content:
            if isinstance(item, dict):
                if item.get("type") == "text":
                    parts.append(str(item.get("text", "")))
            elif isinstance(item, str):
                parts.append(item)
        return "\n".join(parts)
    return json.dumps(content, ensure_ascii=False)


def _content_blocks(message: Dict[str, Any]) -> List[Dict[str, Any]]:
    inner = message.get("message") or {}
    blocks = inner.get("content") if isinstance(inner, dict) else None
    if not isinstance(blocks, list):
        return []
    return [b for b in blocks if isinstance(b, dict)]


def _decode_system(message: Dict[str, Any]) -> List[AgentEvent]:
    if message.get("subtype") != "init":
        return []
    tools = message.get("tools") or []
    return [
        SystemInitEvent(
            session_id=str(message.get("session_id", "")),
            tool_names=[str(t) for t in tools],
        )
    ]


def _decode_stream_event(message: Dict[str, Any], partial_text: bool) -> List[AgentEvent]:
    if not partial_text:
        return []
    event = message.get("event") or {}
    if event.get("type") != "content_block_delta":
        return []
    delta = event.get("delta") or {}
    if delta.get("type") != "text_delta":
        return []
    text = delta.get("text", "")
    return [TextDeltaEvent(text=text)] if text else []


def _decode_assistant(message: Dict[str, Any], partial_text: bool) -> List[AgentEvent]:
    events: List[AgentEvent] = []
    for block in _content_blocks(message):
        kind = block.get("type")
        if kind == "text" and not partial_text:
            text = block.get("text", "")
            if text:
                events.append(TextDeltaEvent(text=text))
        elif kind == "tool_use":
            tool_input = block.get("input")
            events.append(
                ToolUseEvent(
                    id=str(block.get("id", "")),
                    name=str(block.get("name", "")),
                    input=tool_input if isinstance(tool_input, dict) else {},
                )
            )
    return events


def _decode_user(message: Dict[str, Any]) -> List[AgentEvent]:
    events: List[AgentEvent] = []
    for block in _content_blocks(message):
        if block.get("type") != "tool_result":
            continue
        events.append(
            ToolResultEvent(
                tool_use_id=str(block.get("tool_use_id", "")),
                content=_flatten_content(block.get("content")),
                is_error=bool(block.get("is_error", False)),
            )
        )
    return events


def _decode_result(message: Dict[str, Any]) -> List[AgentEvent]:
    subtype = str(message.get("subtype", ""))
    if message.get("is_error") or subtype.startswith("error"):
        detail = message.get("result") or subtype or "unknown error"
        return [ErrorEvent(message=f"Agent reported an error: {detail}")]
    return [
        CompletionEvent(
            turns=int(message.get("num_turns") or 0),
            cost_usd=float(message.get("total_cost_usd") or 0.0),
        )
    ]


def decode_message(message: Dict[str, Any], partial_text: bool = True) -> List[AgentEvent]:
    """Map one decoded stream-json object onto events.

    With ``partial_text`` the narration comes from ``stream_event`` deltas
    and the text blocks of complete ``assistant`` messages are skipped, so
    the same text is never delivered twice.
    """
    kind = message.get("type")
    if kind == "system":
        return _decode_system(message)
    if kind == "stream_event":
        return _decode_stream_event(message, partial_text)
    if kind == "assistant":
        return _decode_assistant(message, partial_text)
    if kind == "user":
        return _decode_user(message)
    if kind == "result":
        return _decode_result(message)
    return []


def decode_line(line: str, partial_text: bool = True) -> List[AgentEvent]:
    line = line.strip()
    if not line:
        return []
    try:
        message = json.loads(line)
    except json.JSONDecodeError as exc:
        raise StreamDecodeError(f"Malformed output from agent: {exc.msg} in {line[:120]!r}") from exc
    if not isinstance(message, dict):
        raise StreamDecodeError(f"Unexpected output from agent: {line[:120]!r}")
    try:
        return decode_message(message, partial_text=partial_text)
    except (TypeError, ValueError, AttributeError) as exc:
        raise StreamDecodeError(f"Unexpected {message.get('type')!r} message from agent: {exc}") from exc
