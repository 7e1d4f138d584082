import chess
import pytest

from config import MonitorConfig
from main import build_monitor
from position import PositionSnapshot
from strength import Mode, resolve
from utils import QUIET_REPORTER
from watcher import Transition, classify_transition

from fakes import (
    AlwaysAdmit,
    ChannelRecorder,
    FakeTimers,
    ListSource,
    NeverAdmit,
    RecordingPresenter,
    snapshot_after,
)

START = PositionSnapshot(chess.STARTING_FEN)


class Monitor:
    def __init__(
        self, *, local_color=chess.WHITE, prefetch=False, move_filter=None, start=True, **settings
    ) -> None:
        self.recorder = ChannelRecorder()
        self.timers = FakeTimers()
        self.presenter = RecordingPresenter()
        self.source = ListSource(local_color=local_color)
        self.history = []
        config = MonitorConfig(engine_path="engine", level="2800", prefetch_enabled=prefetch, **settings)
        self.components = build_monitor(
            config,
            channel_factory=self.recorder,
            call_later=self.timers.call_later,
            presenter=self.presenter,
            source=self.source,
            reporter=QUIET_REPORTER,
            move_filter=move_filter or AlwaysAdmit(),
            on_history=self.history.append,
        )
        self.watcher = self.components.watcher
        if start:
            self.start_engine()

    def start_engine(self) -> None:
        self.components.session.start()
        self.recorder.latest.emit("uciok")

    @property
    def channel(self):
        return self.recorder.latest

    def show(self, snapshot):
        self.source.snapshot = snapshot
        return self.watcher.tick()


def test_classify_transition() -> None:
    after_e4 = snapshot_after("e2e4")
    assert classify_transition(None, START) is Transition.MOVE_MADE
    assert classify_transition(START, START) is Transition.UNCHANGED
    assert classify_transition(START, after_e4) is Transition.MOVE_MADE
    assert classify_transition(after_e4, START) is Transition.NEW_GAME


def test_first_position_requests_and_displays() -> None:
    monitor = Monitor()
    assert monitor.show(START) is Transition.MOVE_MADE
    assert monitor.watcher.epoch == 0
    assert monitor.channel.positions == [START.fen]
    assert monitor.channel.go_commands == ["go depth 22"]

    monitor.channel.emit("bestmove e2e4 ponder e7e5")
    assert monitor.presenter.moves == ["e2e4"]

    assert monitor.show(START) is Transition.UNCHANGED
    assert len(monitor.channel.go_commands) == 1
    assert monitor.presenter.moves == ["e2e4"]


def test_position_change_preempts_outstanding_analysis() -> None:
    monitor = Monitor()
    monitor.show(START)
    later = snapshot_after("e2e4", "e7e5")
    monitor.show(later)
    assert monitor.channel.sent.count("stop") == 1
    assert monitor.channel.positions == [START.fen, later.fen]

    monitor.channel.emit("bestmove d2d4")
    assert monitor.presenter.rendered == []

    monitor.channel.emit("bestmove g1f3")
    assert monitor.presenter.moves == ["g1f3"]


def test_opponent_turn_clears_display_without_prefetch() -> None:
    monitor = Monitor()
    monitor.show(START)
    monitor.channel.emit("bestmove e2e4")
    monitor.show(snapshot_after("e2e4"))
    assert monitor.presenter.clears == 1
    assert len(monitor.channel.go_commands) == 1


def test_prefetch_result_promotes_on_predicted_reply() -> None:
    monitor = Monitor(prefetch=True)
    monitor.show(snapshot_after("e2e4"))
    assert monitor.channel.go_commands == ["go depth 18 movetime 1500"]

    monitor.channel.emit("bestmove e7e5 ponder g1f3")
    assert monitor.presenter.rendered == []

    monitor.show(snapshot_after("e2e4", "e7e5"))
    assert monitor.presenter.moves == ["g1f3"]
    assert len(monitor.channel.go_commands) == 1


def test_mispredicted_prefetch_falls_back_to_primary() -> None:
    monitor = Monitor(prefetch=True)
    monitor.show(snapshot_after("e2e4"))
    monitor.channel.emit("bestmove e7e5 ponder g1f3")

    actual = snapshot_after("e2e4", "c7c5")
    monitor.show(actual)
    assert monitor.presenter.rendered == []
    assert monitor.channel.go_commands[-1] == "go depth 22"
    assert monitor.channel.positions[-1] == actual.fen

    monitor.channel.emit("bestmove g1f3")
    assert monitor.presenter.moves == ["g1f3"]


def test_prefetch_toggle_is_live() -> None:
    monitor = Monitor()
    monitor.show(snapshot_after("e2e4"))
    assert monitor.channel.go_commands == []
    monitor.watcher.set_prefetch(True)
    monitor.show(snapshot_after("e2e4", "e7e5", "g1f3"))
    assert monitor.channel.go_commands == ["go depth 18 movetime 1500"]


def test_new_game_invalidates_previous_epoch() -> None:
    monitor = Monitor()
    mid_game = snapshot_after("e2e4", "e7e5")
    monitor.show(mid_game)

    assert monitor.show(START) is Transition.NEW_GAME
    assert monitor.watcher.epoch == 1
    assert "ucinewgame" in monitor.channel.sent
    assert monitor.channel.sent.count("stop") == 1
    assert monitor.channel.positions[-1] == START.fen

    monitor.channel.emit("bestmove g1f3")
    assert monitor.presenter.rendered == []
    monitor.channel.emit("bestmove d2d4")
    assert monitor.presenter.moves == ["d2d4"]

    for _ in range(3):
        assert monitor.show(START) is Transition.UNCHANGED
    assert monitor.watcher.epoch == 1


def test_unobservable_position_is_skipped() -> None:
    monitor = Monitor()
    monitor.show(START)
    assert monitor.show(None) is None
    assert monitor.show(START) is Transition.UNCHANGED
    assert len(monitor.channel.go_commands) == 1


def test_suppressed_position_is_not_reanalyzed() -> None:
    monitor = Monitor(move_filter=NeverAdmit())
    monitor.show(START)
    monitor.channel.emit("bestmove e2e4")
    for _ in range(3):
        monitor.show(START)
    assert monitor.presenter.rendered == []
    assert len(monitor.channel.go_commands) == 1

    monitor.show(snapshot_after("e2e4", "e7e5"))
    assert len(monitor.channel.go_commands) == 2


def test_suppressed_prefetch_is_not_rerolled_on_predicted_reply() -> None:
    monitor = Monitor(prefetch=True, move_filter=NeverAdmit())
    monitor.show(snapshot_after("e2e4"))
    monitor.channel.emit("bestmove e7e5 ponder g1f3")

    for _ in range(3):
        monitor.show(snapshot_after("e2e4", "e7e5"))
    assert monitor.channel.go_commands == ["go depth 18 movetime 1500"]
    assert monitor.presenter.rendered == []


def test_request_waits_for_engine_ready() -> None:
    monitor = Monitor(start=False)
    monitor.components.session.start()
    monitor.show(START)
    assert monitor.channel.go_commands == []

    monitor.channel.emit("uciok")
    monitor.show(START)
    assert monitor.channel.go_commands == ["go depth 22"]


def test_stuck_request_is_retried_after_watchdog() -> None:
    monitor = Monitor()
    monitor.show(START)
    monitor.timers.advance(20_000)
    assert not monitor.components.scheduler.busy
    monitor.show(START)
    assert len(monitor.channel.go_commands) == 2


@pytest.mark.parametrize("local_color", [chess.WHITE, chess.BLACK])
def test_only_local_turn_is_analyzed(local_color) -> None:
    monitor = Monitor(local_color=local_color)
    monitor.show(START)
    expected = 1 if local_color == chess.WHITE else 0
    assert len(monitor.channel.go_commands) == expected


def test_strength_changes_reach_the_engine() -> None:
    monitor = Monitor()
    monitor.watcher.set_level("1500")
    assert monitor.watcher.profile == resolve("1500")
    assert "setoption name UCI_Elo value 1450" in monitor.channel.sent

    monitor.watcher.set_mode("combat")
    assert monitor.watcher.mode is Mode.COMBAT
    assert monitor.components.session.profile == resolve("1500", Mode.COMBAT)

    monitor.show(START)
    assert monitor.channel.go_commands == ["go depth 18"]


def test_engine_that_skips_an_answer_is_resynced() -> None:
    monitor = Monitor()
    monitor.show(START)
    monitor.timers.advance(20_000)
    assert monitor.channel.sent[-2:] == ["stop", "isready"]

    monitor.show(START)
    assert len(monitor.channel.go_commands) == 2

    # The first search never answers; readyok settles it.
    monitor.channel.emit("readyok")
    monitor.channel.emit("bestmove e2e4")
    assert monitor.presenter.moves == ["e2e4"]

    later = snapshot_after("e2e4", "e7e5")
    monitor.show(later)
    monitor.channel.emit("bestmove g1f3")
    assert monitor.presenter.moves == ["e2e4", "g1f3"]


def test_late_answer_before_readyok_is_discarded() -> None:
    monitor = Monitor()
    monitor.show(START)
    monitor.timers.advance(20_000)
    monitor.show(START)

    monitor.channel.emit("bestmove d2d4")
    monitor.channel.emit("readyok")
    assert monitor.presenter.rendered == []
    monitor.channel.emit("bestmove e2e4")
    assert monitor.presenter.moves == ["e2e4"]


def test_unresponsive_engine_is_restarted_after_resync_timeout() -> None:
    monitor = Monitor()
    monitor.show(START)
    monitor.timers.advance(20_000)
    first = monitor.channel

    monitor.timers.advance(5_000)
    assert first.closed is True
    assert len(monitor.recorder.channels) == 1

    monitor.timers.advance(2_000)
    assert len(monitor.recorder.channels) == 2
    monitor.channel.emit("uciok")
    monitor.show(START)
    assert monitor.channel.go_commands == ["go depth 22"]

    monitor.channel.emit("bestmove e2e4")
    assert monitor.presenter.moves == ["e2e4"]


def test_watchdog_settings_come_from_config() -> None:
    monitor = Monitor(watchdog_base_ms=3_000)
    monitor.show(START)
    # depth 22 adds ten seconds over the base.
    monitor.timers.advance(12_999)
    assert monitor.components.scheduler.busy
    monitor.timers.advance(1)
    assert not monitor.components.scheduler.busy

    prefetching = Monitor(prefetch=True, watchdog_margin_ms=500)
    prefetching.show(snapshot_after("e2e4"))
    prefetching.timers.advance(2_000)
    assert not prefetching.components.scheduler.busy


def test_displayed_suggestions_are_published_as_history() -> None:
    monitor = Monitor()
    monitor.show(START)
    monitor.channel.emit("bestmove e2e4")
    monitor.show(snapshot_after("e2e4", "e7e5"))
    monitor.channel.emit("bestmove g1f3")
    assert [s.move.uci() for s in monitor.history[-1]] == ["e2e4", "g1f3"]

    monitor.show(START)
    assert monitor.history[-1] == []
