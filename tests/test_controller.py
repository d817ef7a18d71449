"""Tests for the session controller state machine."""
from claudian.config import Settings
from claudian.controller import SessionController, SessionState, reduce, start_run
from claudian.events import (
    CompletionEvent,
    ErrorEvent,
    SessionStatus,
    SystemInitEvent,
    TextDeltaEvent,
    ToolResultEvent,
    ToolUseEvent,
)
from claudian.formatting import TRUNCATION_MARKER
from claudian.sinks import RecordingSink

from conftest import FakeRunner


def tool_use(tool_id, name="Read", **tool_input):
    return ToolUseEvent(id=tool_id, name=name, input=tool_input or {"file_path": f"{tool_id}.md"})


class TestStart:

    def test_start_passes_options_to_runner(self, runner, tmp_path):
        settings = Settings(model="sonnet")
        controller = SessionController(
            runner=runner,
            sink=RecordingSink(),
            cwd=str(tmp_path),
            current_file="notes/today.md",
            settings=settings,
        )
        assert controller.start("  Summarize this note  ")
        options = runner.starts[0]
        assert options.prompt == "Summarize this note"
        assert options.cwd == str(tmp_path)
        assert options.current_file == "notes/today.md"
        assert options.settings is settings
        assert controller.status is SessionStatus.RUNNING

    def test_empty_prompts_are_rejected(self, controller, runner):
        assert not controller.start("")
        assert not controller.start("   ")
        assert controller.status is SessionStatus.IDLE
        assert runner.starts == []
        assert not controller.has_live_handle

    def test_start_while_running_is_rejected(self, controller, runner, sink):
        controller.start("first")
        controller.on_text_delta("working")
        calls_before = list(sink.calls)

        assert not controller.start("second")
        assert len(runner.handles) == 1
        assert controller.status is SessionStatus.RUNNING
        assert controller.state.text_blocks == ("working",)
        assert sink.calls == calls_before

    def test_start_resets_previous_run(self, controller, runner):
        controller.start("first")
        controller.on_text_delta("old text")
        controller.on_tool_use(tool_use("t1"))
        controller.on_completion(2, 0.5)

        assert controller.start("second")
        state = controller.state
        assert state.status is SessionStatus.RUNNING
        assert dict(state.cards) == {}
        assert state.open_text_block is None
        assert state.text_blocks == ()
        assert state.turns == 0
        assert state.cost_usd == 0.0

    def test_restart_allowed_from_every_terminal_state(self, controller):
        controller.start("one")
        controller.on_completion(1, 0)
        assert controller.start("two")
        controller.on_error("boom")
        assert controller.start("three")
        controller.cancel()
        assert controller.start("four")
        assert controller.status is SessionStatus.RUNNING

    def test_new_settings_apply_to_next_run_only(self, controller, runner):
        controller.start("one")
        controller.update_settings(Settings(model="opus"))
        assert runner.starts[0].settings.model is None
        controller.on_completion(1, 0)
        controller.start("two")
        assert runner.starts[1].settings.model == "opus"

    def test_runner_exception_becomes_error(self, sink, tmp_path):
        class BrokenRunner:
            def start(self, options, on_event):
                raise RuntimeError("no event loop")

        controller = SessionController(runner=BrokenRunner(), sink=sink, cwd=str(tmp_path))
        assert controller.start("go")
        assert controller.status is SessionStatus.ERROR
        assert "no event loop" in controller.state.error_message
        assert not controller.has_live_handle

    def test_runner_finishing_synchronously_releases_handle(self, sink, tmp_path):
        runner = FakeRunner(script=[TextDeltaEvent("hi"), CompletionEvent(turns=1, cost_usd=0.01)])
        controller = SessionController(runner=runner, sink=sink, cwd=str(tmp_path))
        controller.start("go")
        assert controller.status is SessionStatus.DONE
        assert not controller.has_live_handle


class TestTextAndTools:

    def test_text_deltas_coalesce(self, controller, sink):
        controller.start("go")
        controller.on_text_delta("Hello, ")
        controller.on_text_delta("world")
        assert controller.state.text_blocks == ("Hello, world",)
        assert controller.state.open_text_block == "Hello, world"
        assert sink.texts() == ["Hello, world"]

    def test_tool_use_splits_text_blocks(self, controller, sink):
        controller.start("go")
        controller.on_text_delta("before")
        controller.on_tool_use(tool_use("t1"))
        assert controller.state.open_text_block is None
        controller.on_text_delta("after")
        assert controller.state.text_blocks == ("before", "after")
        assert sink.texts() == ["before", "after"]
        assert [b["kind"] for b in sink.blocks] == ["text", "tool", "text"]

    def test_results_attach_to_matching_cards(self, controller):
        controller.start("go")
        for tool_id in ("a", "b", "c"):
            controller.on_tool_use(tool_use(tool_id))
        controller.on_tool_result(ToolResultEvent(tool_use_id="c", content="C"))
        controller.on_tool_result(ToolResultEvent(tool_use_id="a", content="A"))

        cards = controller.cards
        assert list(cards) == ["a", "b", "c"]
        assert cards["a"].resolved and cards["a"].tool_result.content == "A"
        assert not cards["b"].resolved
        assert cards["c"].resolved and cards["c"].tool_result.content == "C"
        assert all(not card.is_expanded for card in cards.values())

    def test_unknown_result_is_ignored(self, controller, sink):
        controller.start("go")
        controller.on_tool_use(tool_use("a"))
        before = dict(controller.cards)
        calls_before = len(sink.calls)

        controller.on_tool_result(ToolResultEvent(tool_use_id="missing", content="x"))

        assert dict(controller.cards) == before
        assert len(sink.calls) == calls_before
        assert controller.status is SessionStatus.RUNNING

    def test_reused_id_replaces_card(self, controller):
        controller.start("go")
        controller.on_tool_use(tool_use("a", name="Read", file_path="one.md"))
        controller.on_tool_use(tool_use("b"))
        controller.on_tool_result(ToolResultEvent(tool_use_id="a", content="old"))
        controller.on_tool_use(tool_use("a", name="Grep", pattern="TODO"))

        cards = controller.cards
        assert list(cards) == ["b", "a"]
        assert cards["a"].name == "Grep"
        assert not cards["a"].resolved

    def test_long_result_is_truncated_for_display_only(self, controller, sink):
        controller.start("go")
        controller.on_tool_use(tool_use("a"))
        controller.on_tool_result(ToolResultEvent(tool_use_id="a", content="a" * 1000))

        name, (tool_id, display) = sink.calls[-1]
        assert name == "update_tool_result"
        assert tool_id == "a"
        assert display == "a" * 500 + TRUNCATION_MARKER
        card = controller.cards["a"]
        assert len(card.tool_result.content) == 1000
        assert card.result_text == display

    def test_card_header_and_placeholder(self, controller):
        controller.start("go")
        controller.on_tool_use(ToolUseEvent(id="x", name="LS", input={}))
        card = controller.cards["x"]
        assert card.header_label == "."
        assert card.result_text == "Waiting for result..."
        assert card.input_text == "{}"

    def test_toggle_card_flips_expansion(self, controller):
        controller.start("go")
        controller.on_tool_use(tool_use("a"))
        assert controller.toggle_card("a").is_expanded
        assert not controller.toggle_card("a").is_expanded
        assert controller.toggle_card("nope") is None

    def test_system_init_is_recorded(self, controller):
        controller.start("go")
        controller.dispatch(SystemInitEvent(session_id="sess-1", tool_names=["Read", "Edit"]))
        assert controller.state.session_id == "sess-1"
        assert controller.state.tool_names == ("Read", "Edit")
        assert controller.status is SessionStatus.RUNNING


class TestTermination:

    def test_completion_summary_plural(self, controller, sink):
        controller.start("go")
        controller.on_completion(3, 0.0123)
        assert controller.status is SessionStatus.DONE
        assert controller.state.summary == "Done (3 turns · $0.0123)"
        assert sink.summary == "Done (3 turns · $0.0123)"
        assert not controller.has_live_handle

    def test_completion_summary_singular(self, controller):
        controller.start("go")
        controller.on_completion(1, 0)
        assert controller.state.summary == "Done (1 turn · $0.0000)"

    def test_error_is_shown_and_terminal(self, controller, sink):
        controller.start("go")
        controller.on_text_delta("partial")
        controller.on_error("claude exited with code 1")
        assert controller.status is SessionStatus.ERROR
        assert controller.state.error_message == "claude exited with code 1"
        assert sink.blocks[-1] == {"kind": "error", "text": "claude exited with code 1"}
        assert sink.summary == "Error occurred. See output above."

        controller.on_completion(5, 1.0)
        assert controller.status is SessionStatus.ERROR
        assert controller.state.turns == 0

    def test_cancel_kills_once(self, controller, runner, sink):
        controller.start("go")
        assert controller.cancel()
        assert runner.handles[0].kill_calls == 1
        assert controller.status is SessionStatus.CANCELLED
        assert sink.summary == "Cancelled."
        assert not controller.has_live_handle

    def test_events_after_cancel_are_ignored(self, controller, runner, sink):
        controller.start("go")
        controller.on_text_delta("thinking")
        controller.cancel()
        calls_before = list(sink.calls)

        runner.emit(TextDeltaEvent("late"))
        runner.emit(ToolUseEvent(id="late", name="Read", input={}))
        runner.emit(CompletionEvent(turns=4, cost_usd=0.2))
        runner.emit(ErrorEvent(message="killed"))

        state = controller.state
        assert state.status is SessionStatus.CANCELLED
        assert state.open_text_block is None
        assert state.text_blocks == ("thinking",)
        assert dict(state.cards) == {}
        assert state.turns == 0
        assert sink.calls == calls_before
        assert runner.handles[0].kill_calls == 1

    def test_cancel_when_idle_closes_session(self, runner, sink, tmp_path):
        closed = []
        controller = SessionController(
            runner=runner, sink=sink, cwd=str(tmp_path), on_close=lambda: closed.append(True)
        )
        assert not controller.cancel()
        assert closed == [True]
        assert controller.status is SessionStatus.IDLE

    def test_stale_run_events_are_dropped(self, controller, runner):
        controller.start("first")
        controller.cancel()
        controller.start("second")

        runner.emit(TextDeltaEvent("from first run"), run=0)
        runner.emit(CompletionEvent(turns=1, cost_usd=0.1), run=0)

        assert controller.status is SessionStatus.RUNNING
        assert controller.state.text_blocks == ()

        runner.emit(TextDeltaEvent("from second run"), run=1)
        assert controller.state.text_blocks == ("from second run",)

    def test_dispose_kills_live_run_and_blocks_restart(self, controller, runner):
        controller.start("go")
        controller.dispose()
        controller.dispose()
        assert runner.handles[0].kill_calls == 1
        assert controller.disposed
        assert controller.state.status is SessionStatus.CANCELLED
        assert controller.snapshot()["status"] == "cancelled"

        runner.emit(TextDeltaEvent("late"))
        assert controller.state.text_blocks == ()
        assert not controller.start("again")
        assert len(runner.starts) == 1


class TestReducer:

    def test_reduce_does_not_mutate_input(self):
        state, _ = start_run(SessionState())
        state, _ = reduce(state, ToolUseEvent(id="a", name="Read", input={"file_path": "x"}))
        snapshot = dict(state.cards)

        new_state, effects = reduce(state, ToolResultEvent(tool_use_id="a", content="done"))

        assert dict(state.cards) == snapshot
        assert not state.cards["a"].resolved
        assert new_state.cards["a"].resolved
        assert len(effects) == 1

    def test_reduce_ignores_events_when_not_running(self):
        state = SessionState()
        new_state, effects = reduce(state, TextDeltaEvent("hi"))
        assert new_state is state
        assert effects == []

    def test_snapshot_hides_counters_until_done(self, controller):
        controller.start("go")
        controller.on_tool_use(tool_use("a"))
        data = controller.snapshot()
        assert data["status"] == "running"
        assert "turns" not in data
        assert data["cards"][0]["label"] == "a.md"

        controller.on_completion(2, 0.25)
        data = controller.snapshot()
        assert data["turns"] == 2
        assert data["cost_usd"] == 0.25
