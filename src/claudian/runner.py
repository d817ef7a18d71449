import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Set

from .config import Settings
from .events import TERMINAL_EVENTS, AgentEvent, ErrorEvent
from .stream import StreamDecodeError, decode_line

logger = logging.getLogger(__name__)

EventCallback = Callable[[AgentEvent], None]

# stream-json lines carry whole tool results, well past asyncio's 64 KiB default
STREAM_LIMIT = 16 * 1024 * 1024
STDERR_TAIL = 1000


class RunnerError(Exception):
    """Base class for failures of the agent subprocess."""


class SpawnFailure(RunnerError):
    """The agent subprocess could not be started."""


class ProcessFailure(RunnerError):
    """The agent subprocess crashed or exited without a result."""


@dataclass(frozen=True)
class RunOptions:
    prompt: str
    cwd: str
    current_file: Optional[str]
    settings: Settings


class RunHandle(Protocol):
    def kill(self) -> None:
        ...


class ProcessRunner(Protocol):
    def start(self, options: RunOptions, on_event: EventCallback) -> RunHandle:
        ...


def build_command(options: RunOptions) -> List[str]:
    """Build the ``claude`` command line for one run."""
    settings = options.settings
    permissions = settings.permissions
    cmd = [settings.claude_bin, "-p", "--output-format", "stream-json", "--verbose"]
    if settings.partial_text:
        cmd.append("--include-partial-messages")
    if settings.model:
        cmd.extend(["--model", settings.model])
    if settings.max_turns:
        cmd.extend(["--max-turns", str(settings.max_turns)])
    cmd.extend(["--permission-mode", permissions.permission_mode])
    cmd.extend(["--allowedTools", ",".join(permissions.allowed_tools())])
    disallowed = permissions.disallowed_tools()
    if disallowed:
        cmd.extend(["--disallowedTools", ",".join(disallowed)])
    if options.current_file:
        cmd.extend([
            "--append-system-prompt",
            f"The user currently has the file '{options.current_file}' open. "
            "Paths are relative to the working directory.",
        ])
    cmd.extend(["--", options.prompt])
    return cmd


class ClaudeRun:
    """Handle for one running ``claude`` subprocess."""

    def __init__(
        self,
        options: RunOptions,
        on_event: EventCallback,
        grace_period: float = 2.0,
        line_limit: int = STREAM_LIMIT,
    ):
        self.options = options
        self.on_event = on_event
        self.grace_period = grace_period
        self.line_limit = line_limit
        self.process: Optional[asyncio.subprocess.Process] = None
        self.killed = False
        self.finished = False
        self._terminator: Optional[asyncio.Future] = None

    def kill(self) -> None:
        if self.killed:
            return
        self.killed = True
        logger.info("Kill requested for agent run in %s", self.options.cwd)
        if self.process is not None and self.process.returncode is None:
            self._terminator = asyncio.ensure_future(self._terminate())

    async def _terminate(self) -> None:
        process = self.process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.grace_period)
        except asyncio.TimeoutError:
            logger.warning("Agent process %s ignored SIGTERM, killing", process.pid)
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    def _deliver(self, event: AgentEvent) -> None:
        if self.killed or self.finished:
            return
        if isinstance(event, TERMINAL_EVENTS):
            self.finished = True
        self.on_event(event)

    def _fail(self, exc: Exception) -> None:
        self._deliver(ErrorEvent(message=str(exc)))

    async def run(self) -> None:
        try:
            await self._run()
        except Exception as exc:
            logger.exception("Agent run failed unexpectedly")
            self._fail(ProcessFailure(f"Agent run failed: {exc}"))
            await self._terminate()

    async def _run(self) -> None:
        cmd = build_command(self.options)
        env = os.environ.copy()
        logger.info("Starting %s in %s", cmd[0], self.options.cwd)
        try:
            self.process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=self.options.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=self.line_limit,
            )
        except OSError as exc:
            logger.error("Failed to spawn %s: %s", cmd[0], exc)
            self._fail(SpawnFailure(f"Failed to start {cmd[0]}: {exc}"))
            return

        if self.killed:
            await self._terminate()
            return

        stderr_task = asyncio.ensure_future(self.process.stderr.read())
        try:
            while not self.killed:
                try:
                    raw = await self.process.stdout.readline()
                    if not raw:
                        break
                    line = raw.decode("utf-8", errors="replace")
                    events = decode_line(line, partial_text=self.options.settings.partial_text)
                except (ValueError, asyncio.LimitOverrunError) as exc:
                    # readline raises ValueError for a line longer than line_limit
                    error = exc if isinstance(exc, StreamDecodeError) else StreamDecodeError(
                        f"Malformed output from agent: {exc}"
                    )
                    logger.error("%s", error)
                    self._fail(error)
                    await self._terminate()
                    return
                for event in events:
                    self._deliver(event)
            returncode = await self.process.wait()
        finally:
            stderr = await stderr_task
        logger.info("Agent process exited with code %s", returncode)

        if self.killed or self.finished:
            return
        if returncode != 0:
            message = f"{cmd[0]} exited with code {returncode}"
            tail = stderr.decode("utf-8", errors="replace").strip()[-STDERR_TAIL:]
            if tail:
                message = f"{message}: {tail}"
            self._fail(ProcessFailure(message))
        else:
            self._fail(ProcessFailure(f"{cmd[0]} exited without reporting a result"))


class ClaudeProcessRunner:
    """Runs the ``claude`` CLI as an asyncio subprocess.

    ``start`` must be called from inside a running event loop. Events are
    delivered on that loop, one at a time, in stdout order.
    """

    def __init__(self, grace_period: float = 2.0, line_limit: int = STREAM_LIMIT):
        self.grace_period = grace_period
        self.line_limit = line_limit
        self._tasks: Set[asyncio.Task] = set()

    def start(self, options: RunOptions, on_event: EventCallback) -> ClaudeRun:
        loop = asyncio.get_running_loop()
        run = ClaudeRun(options, on_event, grace_period=self.grace_period, line_limit=self.line_limit)
        task = loop.create_task(run.run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return run

    async def wait_idle(self) -> None:
        """Wait for every started run, including killed ones, to wind down."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
