# MAIN
import argparse
import os
import shutil
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import chess

from config import DEFAULT_ARROW_COLOR, DEFAULT_POLL_PERIOD_MS, DISPLAY_MODES, MonitorConfig
from engine_comm import (
    CallLater,
    ChannelFactory,
    Dispatcher,
    engine_command,
    qt_call_later,
    qt_channel_factory,
    subprocess_channel_factory,
)
from engine_session import EngineSession, SessionState
from output_buffer import HistoryCallback, MoveFilter, OutputBuffer, Presenter
from position import COLOR_NAME, BoardPositionSource, FilePositionSource, PositionSource, parse_color
from scheduler import AnalysisScheduler
from strength import DEFAULT_LEVEL, LEVELS, Mode, describe_level, normalize_level, normalize_mode, resolve
from utils import Reporter, ReportingLevel, color_text, error_text
from watcher import PositionWatcher

FALLBACK_ENGINE_SCRIPT = "simple_engine.py"


@dataclass
class MonitorComponents:
    session: EngineSession
    scheduler: AnalysisScheduler
    buffer: OutputBuffer
    watcher: PositionWatcher


def build_monitor(
    config: MonitorConfig,
    *,
    channel_factory: ChannelFactory,
    call_later: CallLater,
    presenter: Presenter,
    source: PositionSource,
    reporter: Reporter,
    move_filter: Optional[MoveFilter] = None,
    on_state_change: Optional[Callable[[SessionState], None]] = None,
    on_failure: Optional[Callable[[str], None]] = None,
    on_history: Optional[HistoryCallback] = None,
) -> MonitorComponents:
    session = EngineSession(
        channel_factory,
        call_later,
        resolve(config.level, config.mode),
        handshake_retries=config.handshake_retries,
        handshake_interval_ms=config.handshake_interval_ms,
        restart_backoff_ms=config.restart_backoff_ms,
        resync_timeout_ms=config.resync_timeout_ms,
        reporter=reporter,
        on_state_change=on_state_change,
        on_failure=on_failure,
    )
    buffer = OutputBuffer(
        presenter,
        move_filter=move_filter,
        display_mode=config.display_mode,
        color=config.arrow_color,
        on_history=on_history,
        reporter=reporter,
    )
    scheduler = AnalysisScheduler(
        session,
        call_later,
        on_result=buffer.accept,
        watchdog_base_ms=config.watchdog_base_ms,
        watchdog_margin_ms=config.watchdog_margin_ms,
        reporter=reporter,
    )
    watcher = PositionWatcher(
        source,
        session,
        scheduler,
        buffer,
        level=config.level,
        mode=config.mode,
        prefetch_enabled=config.prefetch_enabled,
        reporter=reporter,
    )
    return MonitorComponents(session, scheduler, buffer, watcher)


class ConsolePresenter:
    """Prints suggestions for headless runs."""

    def __init__(self, *, sink: Callable[[str], None] = print) -> None:
        self._sink = sink
        self.current: Optional[chess.Move] = None

    def render(self, move: chess.Move, display_mode: str, color: str) -> None:
        self.current = move
        marker = "->" if display_mode == "arrow" else "[]"
        squares = f"{chess.square_name(move.from_square)} {marker} {chess.square_name(move.to_square)}"
        self._sink(f"{color_text('SUGGEST  ', '36')} {move.uci()} ({squares}, {color})")

    def clear(self) -> None:
        if self.current is not None:
            self.current = None
            self._sink(f"{color_text('SUGGEST  ', '36')} cleared")


def default_engine_path(script_dir: str) -> str:
    stockfish = shutil.which("stockfish")
    if stockfish:
        return stockfish
    return os.path.join(script_dir, FALLBACK_ENGINE_SCRIPT)


def run_headless(
    config: MonitorConfig,
    *,
    stop_event: Optional[threading.Event] = None,
    presenter: Optional[Presenter] = None,
) -> MonitorComponents:
    if not config.fen_file:
        raise ValueError("Headless mode needs --fen-file to observe positions")

    reporter = Reporter(config.reporting_level)
    dispatcher = Dispatcher()
    stop_event = stop_event or threading.Event()
    source = FilePositionSource(config.fen_file, local_color=config.local_color)
    presenter = presenter or ConsolePresenter()

    def on_failure(reason: str) -> None:
        print(error_text(f"ENGINE: FAILED TO START ({reason})"))
        stop_event.set()

    components = build_monitor(
        config,
        channel_factory=subprocess_channel_factory(engine_command(config.engine_path), dispatcher),
        call_later=dispatcher.call_later,
        presenter=presenter,
        source=source,
        reporter=reporter,
        on_failure=on_failure,
    )
    reporter.info(f"Engine -> {config.engine_path}")
    reporter.info(
        f"Watching {config.fen_file} as {COLOR_NAME[config.local_color]}, "
        f"level {config.level} ({config.mode.value}), prefetch {'on' if config.prefetch_enabled else 'off'}"
    )
    components.session.start()

    period = config.poll_period_ms / 1000.0
    next_tick = time.monotonic()
    try:
        while not stop_event.is_set():
            now = time.monotonic()
            if now >= next_tick:
                components.watcher.tick()
                next_tick = now + period
            wait = max(0.0, next_tick - time.monotonic())
            dispatcher.run_pending(timeout=wait)
    except KeyboardInterrupt:
        reporter.info("Interrupted by user")
    finally:
        components.session.shutdown()
    return components


def run_gui(config: MonitorConfig) -> None:
    try:
        from PySide6.QtCore import QTimer
        from PySide6.QtWidgets import QApplication
    except ImportError as exc:  # pragma: no cover
        raise ImportError("PySide6 is required for GUI mode; install PySide6 or use --fen-file.") from exc

    from gui import SuggestionBoard

    reporter = Reporter(config.reporting_level)
    app = QApplication(sys.argv)
    board = chess.Board()
    source = BoardPositionSource(board, local_color=config.local_color)
    window = SuggestionBoard(board, source, level=config.level, mode=config.mode)

    components = build_monitor(
        config,
        channel_factory=qt_channel_factory(engine_command(config.engine_path)),
        call_later=qt_call_later,
        presenter=window,
        source=source,
        reporter=reporter,
        on_state_change=window.set_engine_state,
        on_failure=window.show_engine_failure,
        on_history=window.show_history,
    )
    watcher = components.watcher
    window.set_monitor_callbacks(
        level_callback=watcher.set_level,
        mode_callback=watcher.set_mode,
        prefetch_callback=watcher.set_prefetch,
    )
    window.set_prefetch_checked(config.prefetch_enabled)

    poll_timer = QTimer()
    poll_timer.timeout.connect(watcher.tick)
    poll_timer.start(config.poll_period_ms)
    components.session.start()

    app.aboutToQuit.connect(components.session.shutdown)
    window.show()
    sys.exit(app.exec())


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Watch a chess position and show engine move suggestions on your turn."
    )
    parser.add_argument("--engine", help="UCI engine executable or Python script")
    parser.add_argument("--fen-file", help="File whose first line holds the FEN to watch")
    parser.add_argument("--color", default="w", help="Local player colour: w or b")
    parser.add_argument("--level", default=DEFAULT_LEVEL, help="Rating level (see --list-levels)")
    parser.add_argument("--mode", default=Mode.NORMAL.value, choices=[m.value for m in Mode])
    parser.add_argument(
        "--prefetch",
        action="store_true",
        help="Analyze during the opponent's turn at reduced depth",
    )
    parser.add_argument("--display-mode", default="arrow", choices=DISPLAY_MODES)
    parser.add_argument("--arrow-color", default=DEFAULT_ARROW_COLOR)
    parser.add_argument("--poll-ms", type=int, default=DEFAULT_POLL_PERIOD_MS)
    parser.add_argument("--gui", action="store_true", help="Show the PySide6 suggestion board")
    parser.add_argument("-dev", action="store_true", help="Enable debug mode")
    parser.add_argument("--quiet", action="store_true", help="Only report warnings and errors")
    parser.add_argument("--list-levels", action="store_true", help="Print the rating levels and exit")
    return parser.parse_args(argv)


def build_config(args, script_dir: str) -> MonitorConfig:
    if args.dev:
        reporting_level = ReportingLevel.VERBOSE
    elif args.quiet:
        reporting_level = ReportingLevel.QUIET
    else:
        reporting_level = ReportingLevel.BASIC
    return MonitorConfig(
        engine_path=args.engine or default_engine_path(script_dir),
        fen_file=args.fen_file,
        local_color=parse_color(args.color),
        level=normalize_level(args.level),
        mode=normalize_mode(args.mode),
        prefetch_enabled=bool(args.prefetch),
        display_mode=args.display_mode,
        arrow_color=args.arrow_color,
        poll_period_ms=max(10, int(args.poll_ms)),
        reporting_level=reporting_level,
        gui=bool(args.gui),
    )


def main(argv=None):
    args = parse_args(argv)
    if args.list_levels:
        for level in LEVELS:
            print(describe_level(level))
        return

    script_dir = os.path.dirname(os.path.abspath(__file__))
    config = build_config(args, script_dir)
    if config.gui:
        run_gui(config)
        return
    run_headless(config)


if __name__ == "__main__":
    main()
