"""In-memory stand-ins for the engine process, timers and presenters."""

from typing import Callable, List, Optional

import chess

from position import PositionSnapshot


class FakeTimer:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    """Manual clock; ``advance`` fires due timers in order."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: List[FakeTimer] = []

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.now + delay_ms, callback)
        self._timers.append(timer)
        return timer

    @property
    def active(self) -> List[FakeTimer]:
        return [t for t in self._timers if not t.cancelled and not t.fired]

    def advance(self, ms: float) -> None:
        target = self.now + ms
        while True:
            due = [t for t in self.active if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.now = timer.due
            timer.fired = True
            timer.callback()
        self.now = target


class FakeChannel:
    def __init__(self, on_line, on_exit, *, fail_start: bool = False) -> None:
        self._on_line = on_line
        self._on_exit = on_exit
        self._fail_start = fail_start
        self.sent: List[str] = []
        self.started = False
        self.closed = False

    def start(self) -> None:
        if self._fail_start:
            raise FileNotFoundError("no such engine")
        self.started = True

    def send(self, command: str) -> None:
        self.sent.append(command)

    def close(self) -> None:
        self.closed = True

    def emit(self, line: str) -> None:
        self._on_line(line)

    def crash(self, code: Optional[int] = 1) -> None:
        self._on_exit(code)

    @property
    def go_commands(self) -> List[str]:
        return [c for c in self.sent if c.startswith("go ")]

    @property
    def positions(self) -> List[str]:
        return [c[len("position fen ") :] for c in self.sent if c.startswith("position fen ")]


class ChannelRecorder:
    """Channel factory that keeps every channel it builds."""

    def __init__(self, *, fail_start: bool = False) -> None:
        self.fail_start = fail_start
        self.channels: List[FakeChannel] = []

    def __call__(self, on_line, on_exit) -> FakeChannel:
        channel = FakeChannel(on_line, on_exit, fail_start=self.fail_start)
        self.channels.append(channel)
        return channel

    @property
    def latest(self) -> FakeChannel:
        return self.channels[-1]


class RecordingPresenter:
    def __init__(self) -> None:
        self.rendered = []
        self.clears = 0

    def render(self, move: chess.Move, display_mode: str, color: str) -> None:
        self.rendered.append((move, display_mode, color))

    def clear(self) -> None:
        self.clears += 1

    @property
    def moves(self) -> List[str]:
        return [move.uci() for move, _, _ in self.rendered]


class AlwaysAdmit:
    def admit(self, error_rate: float) -> bool:
        return True


class NeverAdmit:
    def admit(self, error_rate: float) -> bool:
        return False


class ListSource:
    """Position source whose snapshot the test sets directly."""

    def __init__(self, snapshot: Optional[PositionSnapshot] = None, local_color: chess.Color = chess.WHITE) -> None:
        self.snapshot = snapshot
        self.local_color = local_color

    def get_snapshot(self) -> Optional[PositionSnapshot]:
        return self.snapshot

    def get_local_color(self) -> chess.Color:
        return self.local_color


def snapshot_after(*moves: str, fen: str = chess.STARTING_FEN) -> PositionSnapshot:
    board = chess.Board(fen)
    for move in moves:
        board.push_uci(move)
    return PositionSnapshot.from_board(board)
