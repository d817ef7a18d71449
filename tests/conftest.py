import json
import os
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from claudian.config import Settings
from claudian.controller import SessionController
from claudian.events import AgentEvent
from claudian.runner import RunOptions
from claudian.sinks import RecordingSink


class FakeHandle:
    """Run handle that only counts kill requests."""

    def __init__(self):
        self.kill_calls = 0

    def kill(self):
        self.kill_calls += 1


class FakeRunner:
    """Process runner driven by the test.

    Events listed in ``script`` are delivered synchronously from ``start``;
    anything else is pushed later with ``emit``.
    """

    def __init__(self, script: Optional[List[AgentEvent]] = None):
        self.script = list(script or [])
        self.starts: List[RunOptions] = []
        self.handles: List[FakeHandle] = []
        self.callbacks: List[Callable[[AgentEvent], None]] = []

    def start(self, options, on_event):
        self.starts.append(options)
        handle = FakeHandle()
        self.handles.append(handle)
        self.callbacks.append(on_event)
        for event in self.script:
            on_event(event)
        return handle

    def emit(self, event: AgentEvent, run: int = -1):
        self.callbacks[run](event)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def controller(runner, sink, tmp_path):
    return SessionController(runner=runner, sink=sink, cwd=str(tmp_path))


@pytest.fixture
def fake_claude(tmp_path):
    """Write an executable stand-in for the claude CLI and return settings using it."""

    def make(body: str, partial_text: bool = False) -> Settings:
        script = tmp_path / "fake-claude"
        script.write_text("#!/bin/sh\n" + body, encoding="utf-8")
        os.chmod(script, 0o755)
        return Settings(claude_bin=str(script), partial_text=partial_text)

    return make


def stream_lines(*messages: dict) -> str:
    """Shell snippet printing each message as one stream-json line."""
    lines = []
    for message in messages:
        payload = json.dumps(message).replace("'", "'\"'\"'")
        lines.append(f"printf '%s\\n' '{payload}'")
    return "\n".join(lines) + "\n"


def read_lines(path: Path) -> List[str]:
    return path.read_text(encoding="utf-8").splitlines()
