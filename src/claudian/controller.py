"""Session controller: owns one run of the agent at a time.

The run's events are folded into a ``SessionState`` by ``reduce``, a pure
function that also returns the sink calls (effects) each transition
produces. ``SessionController`` wires a ``ProcessRunner`` to the reducer
and applies the effects to an ``OutputSink``.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from .config import Settings
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
from .formatting import (
    RESULT_PLACEHOLDER,
    format_status,
    format_tool_input,
    format_tool_result,
    summarize_tool_input,
)
from .runner import ProcessRunner, RunHandle, RunOptions
from .sinks import OutputSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCard:
    """A tool invocation and, once it arrives, its result."""
    tool_use: ToolUseEvent
    tool_result: Optional[ToolResultEvent] = None
    is_expanded: bool = False

    @property
    def id(self) -> str:
        return self.tool_use.id

    @property
    def name(self) -> str:
        return self.tool_use.name

    @property
    def resolved(self) -> bool:
        return self.tool_result is not None

    @property
    def header_label(self) -> str:
        return summarize_tool_input(self.tool_use.name, self.tool_use.input)

    @property
    def input_text(self) -> str:
        return format_tool_input(self.tool_use.input)

    @property
    def result_text(self) -> str:
        if self.tool_result is None:
            return RESULT_PLACEHOLDER
        return format_tool_result(self.tool_result.content)


@dataclass(frozen=True)
class SessionState:
    status: SessionStatus = SessionStatus.IDLE
    # tool_use id -> card; insertion order is display order
    cards: Mapping[str, ToolCard] = field(default_factory=dict)
    text_blocks: Tuple[str, ...] = ()
    text_open: bool = False
    turns: int = 0
    cost_usd: float = 0.0
    error_message: Optional[str] = None
    session_id: Optional[str] = None
    tool_names: Tuple[str, ...] = ()

    @property
    def open_text_block(self) -> Optional[str]:
        if self.text_open and self.text_blocks:
            return self.text_blocks[-1]
        return None

    @property
    def summary(self) -> str:
        return format_status(self.status, self.turns, self.cost_usd)


@dataclass(frozen=True)
class ClearOutput:
    pass


@dataclass(frozen=True)
class AppendText:
    text: str
    new_block: bool


@dataclass(frozen=True)
class OpenToolCard:
    card: ToolCard


@dataclass(frozen=True)
class UpdateToolResult:
    tool_use_id: str
    display_text: str


@dataclass(frozen=True)
class ShowError:
    message: str


@dataclass(frozen=True)
class SetStatus:
    status: SessionStatus
    summary: str


Effect = Union[ClearOutput, AppendText, OpenToolCard, UpdateToolResult, ShowError, SetStatus]
Transition = Tuple[SessionState, List[Effect]]


def _status_effect(state: SessionState) -> SetStatus:
    return SetStatus(status=state.status, summary=state.summary)


def start_run(state: SessionState) -> Transition:
    """Fresh running state; nothing from the previous run carries over."""
    new_state = SessionState(status=SessionStatus.RUNNING)
    return new_state, [ClearOutput(), _status_effect(new_state)]


def cancel_run(state: SessionState) -> Transition:
    if state.status is not SessionStatus.RUNNING:
        return state, []
    new_state = replace(state, status=SessionStatus.CANCELLED, text_open=False)
    return new_state, [_status_effect(new_state)]


def toggle_card(state: SessionState, tool_use_id: str) -> Tuple[SessionState, Optional[ToolCard]]:
    card = state.cards.get(tool_use_id)
    if card is None:
        return state, None
    card = replace(card, is_expanded=not card.is_expanded)
    cards = dict(state.cards)
    cards[tool_use_id] = card
    return replace(state, cards=cards), card


def reduce(state: SessionState, event: AgentEvent) -> Transition:
    """Apply one runner event. Events outside a running session are no-ops."""
    if state.status is not SessionStatus.RUNNING:
        return state, []

    if isinstance(event, SystemInitEvent):
        return replace(state, session_id=event.session_id, tool_names=tuple(event.tool_names)), []

    if isinstance(event, TextDeltaEvent):
        if state.text_open and state.text_blocks:
            blocks = state.text_blocks[:-1] + (state.text_blocks[-1] + event.text,)
            return replace(state, text_blocks=blocks), [AppendText(event.text, new_block=False)]
        blocks = state.text_blocks + (event.text,)
        return replace(state, text_blocks=blocks, text_open=True), [AppendText(event.text, new_block=True)]

    if isinstance(event, ToolUseEvent):
        card = ToolCard(tool_use=event)
        cards = dict(state.cards)
        # a reused id is a new card at the end, not an update in place
        cards.pop(event.id, None)
        cards[event.id] = card
        return replace(state, cards=cards, text_open=False), [OpenToolCard(card)]

    if isinstance(event, ToolResultEvent):
        card = state.cards.get(event.tool_use_id)
        if card is None:
            return state, []
        cards = dict(state.cards)
        cards[event.tool_use_id] = replace(card, tool_result=event)
        return replace(state, cards=cards), [
            UpdateToolResult(event.tool_use_id, format_tool_result(event.content))
        ]

    if isinstance(event, CompletionEvent):
        new_state = replace(
            state,
            status=SessionStatus.DONE,
            turns=event.turns,
            cost_usd=event.cost_usd,
            text_open=False,
        )
        return new_state, [_status_effect(new_state)]

    if isinstance(event, ErrorEvent):
        new_state = replace(
            state,
            status=SessionStatus.ERROR,
            error_message=event.message,
            text_open=False,
        )
        return new_state, [ShowError(event.message), _status_effect(new_state)]

    raise TypeError(f"Unhandled event type: {type(event).__name__}")


def emit(sink: OutputSink, effect: Effect) -> None:
    if isinstance(effect, ClearOutput):
        sink.clear()
    elif isinstance(effect, AppendText):
        sink.append_text(effect.text, effect.new_block)
    elif isinstance(effect, OpenToolCard):
        sink.open_tool_card(effect.card)
    elif isinstance(effect, UpdateToolResult):
        sink.update_tool_result(effect.tool_use_id, effect.display_text)
    elif isinstance(effect, ShowError):
        sink.show_error(effect.message)
    elif isinstance(effect, SetStatus):
        sink.set_status(effect.status, effect.summary)
    else:
        raise TypeError(f"Unhandled effect type: {type(effect).__name__}")


class SessionController:
    """Runs one agent invocation at a time and renders it to a sink.

    Created by the embedding shell, which then calls ``start``, ``cancel``
    and finally ``dispose``. All methods must be called from the thread
    (event loop) the runner delivers events on.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        sink: OutputSink,
        cwd: str,
        current_file: Optional[str] = None,
        settings: Optional[Settings] = None,
        on_close: Optional[Callable[[], None]] = None,
    ) -> None:
        self.runner = runner
        self.sink = sink
        self.cwd = cwd
        self.current_file = current_file
        self.settings = settings or Settings()
        self.on_close = on_close
        self.state = SessionState()
        self._handle: Optional[RunHandle] = None
        self._generation = 0
        self._disposed = False

    @property
    def status(self) -> SessionStatus:
        return self.state.status

    @property
    def cards(self) -> Mapping[str, ToolCard]:
        return self.state.cards

    @property
    def has_live_handle(self) -> bool:
        return self._handle is not None

    @property
    def disposed(self) -> bool:
        return self._disposed

    def update_settings(self, settings: Settings) -> None:
        """Takes effect on the next ``start``."""
        self.settings = settings

    def set_current_file(self, current_file: Optional[str]) -> None:
        self.current_file = current_file

    def start(self, prompt: str) -> bool:
        if self._disposed:
            logger.warning("Ignoring start on a disposed session")
            return False
        if self.state.status is SessionStatus.RUNNING:
            logger.debug("Ignoring start while a run is in progress")
            return False
        prompt = (prompt or "").strip()
        if not prompt:
            return False

        self._generation += 1
        generation = self._generation
        self._apply(*start_run(self.state))
        options = RunOptions(
            prompt=prompt,
            cwd=self.cwd,
            current_file=self.current_file,
            settings=self.settings,
        )
        logger.info("Starting run %d in %s", generation, self.cwd)

        def on_event(event: AgentEvent) -> None:
            self._on_runner_event(generation, event)

        try:
            handle = self.runner.start(options, on_event)
        except Exception as exc:
            logger.exception("Runner failed to start")
            self.dispatch(ErrorEvent(message=f"Failed to start agent: {exc}"))
            return True

        # the runner may already have finished the run synchronously
        if self.state.status is SessionStatus.RUNNING and generation == self._generation:
            self._handle = handle
        return True

    def cancel(self) -> bool:
        """Stop the live run, or close the session when nothing is running."""
        if self.state.status is not SessionStatus.RUNNING:
            if self.on_close is not None:
                self.on_close()
            return False
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.kill()
        self._apply(*cancel_run(self.state))
        logger.info("Run %d cancelled", self._generation)
        return True

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.kill()
        # the view is gone, so the status change is not rendered
        self.state, _ = cancel_run(self.state)
        logger.debug("Session disposed")

    def toggle_card(self, tool_use_id: str) -> Optional[ToolCard]:
        self.state, card = toggle_card(self.state, tool_use_id)
        return card

    def dispatch(self, event: AgentEvent) -> None:
        if self.state.status is not SessionStatus.RUNNING:
            logger.debug("Ignoring %s, session is %s", type(event).__name__, self.state.status.value)
            return
        state, effects = reduce(self.state, event)
        self._apply(state, effects)
        if state.status is not SessionStatus.RUNNING:
            self._handle = None
            logger.info("Run %d finished: %s", self._generation, state.summary)

    def on_text_delta(self, text: str) -> None:
        self.dispatch(TextDeltaEvent(text=text))

    def on_tool_use(self, event: ToolUseEvent) -> None:
        self.dispatch(event)

    def on_tool_result(self, event: ToolResultEvent) -> None:
        self.dispatch(event)

    def on_completion(self, turns: int, cost_usd: float) -> None:
        self.dispatch(CompletionEvent(turns=turns, cost_usd=cost_usd))

    def on_error(self, message: str) -> None:
        self.dispatch(ErrorEvent(message=message))

    def _on_runner_event(self, generation: int, event: AgentEvent) -> None:
        if self._disposed or generation != self._generation:
            logger.debug("Dropping %s from a stale run", type(event).__name__)
            return
        self.dispatch(event)

    def _apply(self, state: SessionState, effects: List[Effect]) -> None:
        self.state = state
        for effect in effects:
            emit(self.sink, effect)

    def snapshot(self) -> Dict[str, Any]:
        state = self.state
        data: Dict[str, Any] = {
            "status": state.status.value,
            "summary": state.summary,
            "session_id": state.session_id,
            "text_blocks": list(state.text_blocks),
            "cards": [
                {
                    "id": card.id,
                    "name": card.name,
                    "label": card.header_label,
                    "resolved": card.resolved,
                    "expanded": card.is_expanded,
                }
                for card in state.cards.values()
            ],
        }
        if state.status is SessionStatus.DONE:
            data["turns"] = state.turns
            data["cost_usd"] = state.cost_usd
        if state.error_message is not None:
            data["error"] = state.error_message
        return data
