"""Output sinks: passive renderers of the controller's presentation model."""

import sys
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, TextIO, Tuple

from .events import SessionStatus

if TYPE_CHECKING:
    from .controller import ToolCard


class OutputSink(Protocol):
    def clear(self) -> None:
        ...

    def append_text(self, text: str, new_block: bool) -> None:
        ...

    def open_tool_card(self, card: "ToolCard") -> Any:
        ...

    def update_tool_result(self, tool_use_id: str, display_text: str) -> None:
        ...

    def show_error(self, message: str) -> None:
        ...

    def set_status(self, status: SessionStatus, summary: str) -> None:
        ...


@dataclass
class RecordingSink:
    """Keeps every call in memory, plus the rendered blocks in display order."""
    calls: List[Tuple[str, Tuple[Any, ...]]] = field(default_factory=list)
    blocks: List[Dict[str, Any]] = field(default_factory=list)
    status: Optional[SessionStatus] = None
    summary: str = ""

    def clear(self) -> None:
        self.calls.append(("clear", ()))
        self.blocks = []

    def append_text(self, text: str, new_block: bool) -> None:
        self.calls.append(("append_text", (text, new_block)))
        if new_block or not self.blocks or self.blocks[-1]["kind"] != "text":
            self.blocks.append({"kind": "text", "text": text})
        else:
            self.blocks[-1]["text"] += text

    def open_tool_card(self, card: "ToolCard") -> int:
        self.calls.append(("open_tool_card", (card,)))
        self.blocks.append({
            "kind": "tool",
            "id": card.id,
            "name": card.name,
            "label": card.header_label,
            "result": None,
        })
        return len(self.blocks) - 1

    def update_tool_result(self, tool_use_id: str, display_text: str) -> None:
        self.calls.append(("update_tool_result", (tool_use_id, display_text)))
        for block in reversed(self.blocks):
            if block["kind"] == "tool" and block["id"] == tool_use_id:
                block["result"] = display_text
                break

    def show_error(self, message: str) -> None:
        self.calls.append(("show_error", (message,)))
        self.blocks.append({"kind": "error", "text": message})

    def set_status(self, status: SessionStatus, summary: str) -> None:
        self.calls.append(("set_status", (status, summary)))
        self.status = status
        self.summary = summary

    def texts(self) -> List[str]:
        return [b["text"] for b in self.blocks if b["kind"] == "text"]

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]


class TerminalSink:
    """Writes the run to a terminal: narration on stdout, status on stderr."""

    def __init__(self, out: Optional[TextIO] = None, err: Optional[TextIO] = None, result_lines: int = 8):
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self.result_lines = result_lines
        self._mid_line = False

    def _write(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()
        self._mid_line = bool(text) and not text.endswith("\n")

    def _newline(self) -> None:
        if self._mid_line:
            self._write("\n")

    def clear(self) -> None:
        self._mid_line = False

    def append_text(self, text: str, new_block: bool) -> None:
        if new_block:
            self._newline()
        self._write(text)

    def open_tool_card(self, card: "ToolCard") -> str:
        self._newline()
        label = card.header_label
        self._write(f"▶ {card.name}" + (f"  {label}" if label else "") + "\n")
        return card.id

    def update_tool_result(self, tool_use_id: str, display_text: str) -> None:
        self._newline()
        lines = display_text.splitlines() or [""]
        shown = lines[: self.result_lines]
        for line in shown:
            self._write(f"  ⎿ {line}\n")
        if len(lines) > len(shown):
            self._write(f"  ⎿ ... {len(lines) - len(shown)} more lines\n")

    def show_error(self, message: str) -> None:
        self._newline()
        print(f"Error: {message}", file=self.err)

    def set_status(self, status: SessionStatus, summary: str) -> None:
        if not summary:
            return
        if status is not SessionStatus.RUNNING:
            self._newline()
        print(summary, file=self.err)
