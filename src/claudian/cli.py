import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import List, Optional

from . import server
from .config import Settings, load_settings
from .controller import SessionController
from .events import SessionStatus
from .runner import ClaudeProcessRunner, ProcessRunner
from .sinks import TerminalSink

logger = logging.getLogger(__name__)

EXIT_CODES = {
    SessionStatus.DONE: 0,
    SessionStatus.ERROR: 1,
    SessionStatus.CANCELLED: 130,
}


class _FinishingSink(TerminalSink):
    """Terminal sink that also signals when the run reaches a terminal status."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.finished = asyncio.Event()

    def set_status(self, status: SessionStatus, summary: str) -> None:
        super().set_status(status, summary)
        if status.is_terminal:
            self.finished.set()


async def run_prompt(
    prompt: str,
    cwd: str,
    current_file: Optional[str] = None,
    settings: Optional[Settings] = None,
    runner: Optional[ProcessRunner] = None,
    sink: Optional[_FinishingSink] = None,
) -> Optional[SessionStatus]:
    """Run one prompt to completion. Returns None if the prompt was rejected."""
    runner = runner or ClaudeProcessRunner()
    sink = sink or _FinishingSink()
    controller = SessionController(
        runner=runner,
        sink=sink,
        cwd=cwd,
        current_file=current_file,
        settings=settings or load_settings(),
    )
    if not controller.start(prompt):
        return None

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, controller.cancel)
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler not available; Ctrl+C will abort without cancelling")

    try:
        await sink.finished.wait()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
        controller.dispose()
    if isinstance(runner, ClaudeProcessRunner):
        await runner.wait_idle()
    return controller.status


def _run_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="claudian",
        description="Run a prompt through the claude CLI and watch it work. "
        "Use 'claudian serve' to start the WebSocket server instead.",
    )
    parser.add_argument("prompt", nargs="+", help="Instruction for the agent")
    parser.add_argument("--cwd", default=os.getcwd(), help="Working directory root (default: current directory)")
    parser.add_argument("--file", dest="current_file", default=None, help="File the agent should treat as open")
    parser.add_argument("--log-level", default="WARNING")
    return parser


def _serve_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="claudian serve", description="Run the Claudian WebSocket server.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--log-level", default="INFO")
    return parser


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)

    if argv and argv[0] == "serve":
        args = _serve_parser().parse_args(argv[1:])
        _configure_logging(args.log_level)
        server.main(host=args.host, port=args.port, log_level=args.log_level.lower())
        return 0

    args = _run_parser().parse_args(argv)
    _configure_logging(args.log_level)
    try:
        settings = load_settings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    status = asyncio.run(
        run_prompt(
            " ".join(args.prompt),
            cwd=os.path.abspath(args.cwd),
            current_file=args.current_file,
            settings=settings,
        )
    )
    if status is None:
        print("Nothing to run: the prompt is empty.", file=sys.stderr)
        return 2
    return EXIT_CODES.get(status, 1)


if __name__ == "__main__":
    sys.exit(main())
