import os
import threading

import chess
import pytest

import main
from config import MonitorConfig
from strength import LEVELS, Mode
from utils import ReportingLevel

REPO_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def test_build_config_from_arguments() -> None:
    args = main.parse_args(
        [
            "--engine", "/opt/stockfish",
            "--fen-file", "board.fen",
            "--color", "black",
            "--level", "1500",
            "--mode", "combat",
            "--prefetch",
            "--display-mode", "highlight",
            "--arrow-color", "#ff00ff",
            "--poll-ms", "250",
            "-dev",
        ]
    )
    config = main.build_config(args, REPO_DIR)
    assert config == MonitorConfig(
        engine_path="/opt/stockfish",
        fen_file="board.fen",
        local_color=chess.BLACK,
        level="1500",
        mode=Mode.COMBAT,
        prefetch_enabled=True,
        display_mode="highlight",
        arrow_color="#ff00ff",
        poll_period_ms=250,
        reporting_level=ReportingLevel.VERBOSE,
    )


def test_build_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(main.shutil, "which", lambda _name: None)
    config = main.build_config(main.parse_args(["--level", "1234", "--poll-ms", "1", "--quiet"]), REPO_DIR)
    assert config.engine_path == os.path.join(REPO_DIR, "simple_engine.py")
    assert config.level == "1000"
    assert config.poll_period_ms == 10
    assert config.reporting_level is ReportingLevel.QUIET
    assert config.local_color is chess.WHITE
    assert config.prefetch_enabled is False


def test_default_engine_prefers_stockfish(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(main.shutil, "which", lambda _name: "/usr/games/stockfish")
    assert main.default_engine_path(REPO_DIR) == "/usr/games/stockfish"


def test_list_levels(capsys: pytest.CaptureFixture[str]) -> None:
    main.main(["--list-levels"])
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == len(LEVELS)
    assert lines[0].split()[0] == "1000"


def test_console_presenter_render_and_clear() -> None:
    lines = []
    presenter = main.ConsolePresenter(sink=lines.append)
    presenter.clear()
    assert lines == []

    presenter.render(chess.Move.from_uci("e2e4"), "arrow", "#00f2ff")
    assert presenter.current == chess.Move.from_uci("e2e4")
    assert "e2e4" in lines[0] and "e2 -> e4" in lines[0]

    presenter.clear()
    assert presenter.current is None
    assert lines[-1].endswith("cleared")


def test_headless_requires_fen_file() -> None:
    with pytest.raises(ValueError):
        main.run_headless(MonitorConfig(engine_path="engine"))


def test_headless_stops_when_engine_cannot_launch(tmp_path, capsys: pytest.CaptureFixture[str]) -> None:
    fen_file = tmp_path / "position.fen"
    fen_file.write_text(chess.STARTING_FEN + "\n", encoding="utf-8")
    config = MonitorConfig(
        engine_path=str(tmp_path / "missing-engine"),
        fen_file=str(fen_file),
        reporting_level=ReportingLevel.QUIET,
    )
    components = main.run_headless(config)
    assert components.session.failure_reason.startswith("engine could not be launched")
    assert "FAILED TO START" in capsys.readouterr().out


class StoppingPresenter:
    def __init__(self, stop_event: threading.Event) -> None:
        self.stop_event = stop_event
        self.moves = []

    def render(self, move, display_mode, color) -> None:
        self.moves.append(move)
        self.stop_event.set()

    def clear(self) -> None:
        pass


@pytest.mark.process
def test_headless_run_against_simple_engine(tmp_path) -> None:
    fen_file = tmp_path / "position.fen"
    fen_file.write_text(chess.STARTING_FEN + "\n", encoding="utf-8")
    config = MonitorConfig(
        engine_path=os.path.join(REPO_DIR, "simple_engine.py"),
        fen_file=str(fen_file),
        level="2800",
        poll_period_ms=20,
        reporting_level=ReportingLevel.QUIET,
    )
    stop_event = threading.Event()
    presenter = StoppingPresenter(stop_event)
    safety = threading.Timer(20.0, stop_event.set)
    safety.start()
    try:
        components = main.run_headless(config, stop_event=stop_event, presenter=presenter)
    finally:
        safety.cancel()

    assert presenter.moves
    assert presenter.moves[0] in chess.Board().legal_moves
    assert components.watcher.epoch == 0
