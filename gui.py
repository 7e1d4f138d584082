# GUI
from typing import Callable, Optional

import chess
from PySide6.QtCore import Qt, QSize
from PySide6.QtGui import QColor, QFont, QPalette
from PySide6.QtWidgets import (
    QApplication,
    QCheckBox,
    QComboBox,
    QGridLayout,
    QHBoxLayout,
    QLabel,
    QMainWindow,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

import utils
from engine_session import SessionState
from position import COLOR_NAME, BoardPositionSource
from strength import LEVEL_LABELS, LEVELS, Mode

SQUARE_STYLE = {
    "light_square": "#d2b48c",
    "dark_square": "#8e6336",
    "selected_color": "#4f6f52",
    "prev_moved_color": "#6b8f71",
}

ENGINE_STATE_TEXT = {
    SessionState.UNINITIALIZED: "ENGINE: OFF",
    SessionState.STARTING: "ENGINE: STARTING",
    SessionState.READY: "ENGINE: READY",
    SessionState.BUSY: "ENGINE: THINKING",
    SessionState.FAULTED: "ENGINE: RESTARTING",
}

HISTORY_SHOWN = 6


def center_on_screen(window):
    screen = QApplication.primaryScreen()
    screen_geometry = screen.geometry()
    window_size = window.size()
    x = (screen_geometry.width() - window_size.width()) / 2 + screen_geometry.left()
    y = (screen_geometry.height() - window_size.height()) / 2 + screen_geometry.top()
    window.move(int(x), int(y))


class SuggestionBoard(QMainWindow):
    """Board mirroring the observed game; doubles as the suggestion presenter.

    Moves for both sides are entered by clicking squares. The monitor polls
    the board through a ``BoardPositionSource`` and calls ``render``/``clear``.
    """

    def __init__(
        self,
        board: chess.Board,
        source: BoardPositionSource,
        *,
        level: str = LEVELS[0],
        mode: Mode = Mode.NORMAL,
    ):
        super().__init__()
        self.board = board
        self.source = source
        self.selected_square = None
        self.suggestion: Optional[chess.Move] = None
        self.suggestion_mode = "arrow"
        self.suggestion_color = "#00f2ff"
        self.level_callback: Optional[Callable[[str], None]] = None
        self.mode_callback: Optional[Callable[[Mode], None]] = None
        self.prefetch_callback: Optional[Callable[[bool], None]] = None
        self.square_font = QFont("Segoe UI Symbol", 28)
        self._initial_level = level
        self._initial_mode = mode
        self.apply_theme()
        self.init_ui()

    def apply_theme(self):
        app = QApplication.instance()
        if app and app.style().objectName().lower() != "fusion":
            QApplication.setStyle("Fusion")

        palette = QPalette()
        palette.setColor(QPalette.Window, QColor("#1c1f24"))
        palette.setColor(QPalette.WindowText, QColor("#f5f7fb"))
        palette.setColor(QPalette.Base, QColor("#1c1f24"))
        palette.setColor(QPalette.Button, QColor("#2b3038"))
        palette.setColor(QPalette.ButtonText, QColor("#f5f7fb"))
        if app:
            app.setPalette(palette)

        self.setStyleSheet(
            """
            QMainWindow { background-color: #1c1f24; }
            QLabel#turnIndicator { font-size: 18px; font-weight: 600; }
            QLabel#infoIndicator { color: #b0b7c3; font-size: 12px; }
            QLabel#engineIndicator { color: #d5d9e3; font-size: 12px; }
            QLabel#historyIndicator { color: #8d96a5; font-size: 11px; }
            """
        )

    def init_ui(self):
        self.setWindowTitle("Move Watch")
        self.setMinimumSize(450, 640)

        central_widget = QWidget(self)
        self.setCentralWidget(central_widget)
        main_layout = QVBoxLayout(central_widget)
        main_layout.setContentsMargins(8, 8, 8, 8)
        main_layout.setSpacing(6)

        self.turn_indicator = QLabel("")
        self.turn_indicator.setObjectName("turnIndicator")
        self.turn_indicator.setAlignment(Qt.AlignCenter)
        main_layout.addWidget(self.turn_indicator)

        self.info_indicator = QLabel(f"Playing {COLOR_NAME[self.source.get_local_color()]}")
        self.info_indicator.setObjectName("infoIndicator")
        self.info_indicator.setAlignment(Qt.AlignCenter)
        main_layout.addWidget(self.info_indicator)

        self.engine_indicator = QLabel(ENGINE_STATE_TEXT[SessionState.UNINITIALIZED])
        self.engine_indicator.setObjectName("engineIndicator")
        self.engine_indicator.setAlignment(Qt.AlignCenter)
        main_layout.addWidget(self.engine_indicator)

        self.history_label = QLabel(self.format_history([]))
        self.history_label.setObjectName("historyIndicator")
        self.history_label.setAlignment(Qt.AlignCenter)
        main_layout.addWidget(self.history_label)

        board_widget = QWidget()
        grid_layout = QGridLayout(board_widget)
        grid_layout.setContentsMargins(0, 0, 0, 0)
        grid_layout.setSpacing(0)
        main_layout.addWidget(board_widget)

        self.squares = {}
        for row in range(8):
            for col in range(8):
                button = QPushButton("")
                button.setFixedSize(QSize(48, 48))
                button.setFont(self.square_font)
                button.setFocusPolicy(Qt.NoFocus)
                button.clicked.connect(self.on_square_clicked)
                grid_layout.addWidget(button, row, col)
                self.squares[chess.square(col, 7 - row)] = button

        controls = QHBoxLayout()
        controls.setSpacing(10)
        main_layout.addLayout(controls)

        undo_button = QPushButton("Undo")
        undo_button.clicked.connect(self.undo_move)
        controls.addWidget(undo_button)

        reset_button = QPushButton("Reset board")
        reset_button.clicked.connect(self.reset_game)
        controls.addWidget(reset_button)
        controls.addStretch(1)

        settings = QHBoxLayout()
        settings.setSpacing(10)
        main_layout.addLayout(settings)

        self.level_combo = QComboBox()
        for level in LEVELS:
            self.level_combo.addItem(f"{level} {LEVEL_LABELS[level]}", level)
        self.level_combo.setCurrentIndex(LEVELS.index(self._initial_level) if self._initial_level in LEVELS else 0)
        self.level_combo.currentIndexChanged.connect(self._handle_level_changed)
        settings.addWidget(self.level_combo)

        self.combat_toggle = QCheckBox("Combat")
        self.combat_toggle.setChecked(self._initial_mode is Mode.COMBAT)
        self.combat_toggle.toggled.connect(self._handle_combat_toggled)
        settings.addWidget(self.combat_toggle)

        self.prefetch_toggle = QCheckBox("Queue")
        self.prefetch_toggle.toggled.connect(self._handle_prefetch_toggled)
        settings.addWidget(self.prefetch_toggle)
        settings.addStretch(1)

        self.update_board()
        center_on_screen(self)

    # Presenter

    def render(self, move: chess.Move, display_mode: str, color: str) -> None:
        self.suggestion = move
        self.suggestion_mode = display_mode
        self.suggestion_color = color
        if display_mode == "arrow":
            self.set_info_message(
                f"Suggestion: {chess.square_name(move.from_square)} → {chess.square_name(move.to_square)}"
            )
        self.update_board()

    def clear(self) -> None:
        if self.suggestion is None:
            return
        self.suggestion = None
        self.set_info_message("")
        self.update_board()

    # Monitor hooks

    def set_monitor_callbacks(
        self,
        *,
        level_callback: Callable[[str], None],
        mode_callback: Callable[[Mode], None],
        prefetch_callback: Callable[[bool], None],
    ) -> None:
        self.level_callback = level_callback
        self.mode_callback = mode_callback
        self.prefetch_callback = prefetch_callback

    def set_prefetch_checked(self, enabled: bool) -> None:
        self.prefetch_toggle.setChecked(enabled)

    def set_engine_state(self, state: SessionState) -> None:
        self.engine_indicator.setText(ENGINE_STATE_TEXT[state])

    def show_engine_failure(self, reason: str) -> None:
        self.engine_indicator.setText("ENGINE: FAILED TO START")
        self.set_info_message(reason)

    def show_history(self, suggestions) -> None:
        self.history_label.setText(self.format_history(suggestions))

    @staticmethod
    def format_history(suggestions) -> str:
        if not suggestions:
            return "HISTORY: none"
        recent = " ".join(s.move.uci() for s in suggestions[-HISTORY_SHOWN:])
        return f"HISTORY ({len(suggestions)}): {recent}"

    def set_info_message(self, message: str) -> None:
        self.info_indicator.setText(message)

    def _handle_level_changed(self, index: int) -> None:
        if self.level_callback:
            self.level_callback(self.level_combo.itemData(index))

    def _handle_combat_toggled(self, checked: bool) -> None:
        if self.mode_callback:
            self.mode_callback(Mode.COMBAT if checked else Mode.NORMAL)

    def _handle_prefetch_toggled(self, checked: bool) -> None:
        if self.prefetch_callback:
            self.prefetch_callback(checked)

    # Board

    def update_board(self):
        last_move = self.board.move_stack[-1] if self.board.move_stack else None
        for square, button in self.squares.items():
            piece = self.board.piece_at(square)
            button.setText(utils.get_piece_unicode(piece) if piece else "")
            button.setStyleSheet(self.get_square_style(square, last_move))
        self.turn_indicator.setText(f"{COLOR_NAME[self.board.turn]}'s turn")

    def get_square_style(self, square, last_move=None):
        is_light = (chess.square_rank(square) + chess.square_file(square)) % 2 == 1
        square_color = SQUARE_STYLE["light_square"] if is_light else SQUARE_STYLE["dark_square"]
        piece = self.board.piece_at(square)
        text_color = "#2b2626"
        if piece:
            text_color = "#f9f6f2" if piece.color == chess.WHITE else "#2b2626"

        border = "1px solid rgba(0, 0, 0, 0.2)"
        if square == self.selected_square:
            square_color = SQUARE_STYLE["selected_color"]
        elif self.suggestion and square in (self.suggestion.from_square, self.suggestion.to_square):
            if self.suggestion_mode == "highlight":
                square_color = self.suggestion_color
            else:
                border = f"3px solid {self.suggestion_color}"
        elif last_move and square in (last_move.from_square, last_move.to_square):
            square_color = SQUARE_STYLE["prev_moved_color"]

        return (
            f"background-color: {square_color}; color: {text_color}; "
            f"border-radius: 10px; border: {border};"
        )

    def on_square_clicked(self):
        clicked_button = self.sender()
        clicked_square = next(sq for sq, button in self.squares.items() if button is clicked_button)
        piece = self.board.piece_at(clicked_square)

        if self.selected_square is None:
            if piece and piece.color == self.board.turn:
                self.selected_square = clicked_square
                self.update_board()
            return

        move = chess.Move(self.selected_square, clicked_square)
        moving = self.board.piece_at(self.selected_square)
        if (
            moving
            and moving.piece_type == chess.PAWN
            and chess.square_rank(clicked_square) in (0, 7)
        ):
            move.promotion = chess.QUEEN
        self.selected_square = None
        if move in self.board.legal_moves:
            self.board.push(move)
            self.source.update(self.board)
        self.update_board()

    def undo_move(self):
        if self.board.move_stack:
            self.board.pop()
            self.source.update(self.board)
            self.update_board()

    def reset_game(self):
        print(utils.info_text("Resetting game..."))
        self.board.reset()
        self.selected_square = None
        self.source.update(self.board)
        self.update_board()
