"""Observed positions and the sources that produce them."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional, Protocol, Union

import chess

COLOR_NAME = {chess.WHITE: "White", chess.BLACK: "Black"}


def parse_color(value: Union[str, bool, None], default: chess.Color = chess.WHITE) -> chess.Color:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    token = str(value).strip().lower()
    if token in {"w", "white"}:
        return chess.WHITE
    if token in {"b", "black"}:
        return chess.BLACK
    return default


class PositionSnapshot:
    """Immutable view of one observed position.

    Two snapshots are equal when piece placement and side to move match.
    Castling rights and move counters are ignored because scraped positions
    cannot report them reliably.
    """

    __slots__ = ("fen", "_board_fen", "_turn")

    def __init__(self, fen: str) -> None:
        board = chess.Board(fen)
        self.fen = board.fen()
        self._board_fen = board.board_fen()
        self._turn = board.turn

    @classmethod
    def from_board(cls, board: chess.Board) -> "PositionSnapshot":
        return cls(board.fen())

    @property
    def turn(self) -> chess.Color:
        return self._turn

    @property
    def is_initial(self) -> bool:
        return self._board_fen == chess.STARTING_BOARD_FEN

    def board(self) -> chess.Board:
        return chess.Board(self.fen)

    def after(self, move: chess.Move) -> Optional["PositionSnapshot"]:
        """Snapshot reached by playing ``move``, or None if it is illegal here."""
        board = self.board()
        if move not in board.legal_moves:
            return None
        board.push(move)
        return PositionSnapshot.from_board(board)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PositionSnapshot):
            return NotImplemented
        return self._board_fen == other._board_fen and self._turn == other._turn

    def __hash__(self) -> int:
        return hash((self._board_fen, self._turn))

    def __repr__(self) -> str:
        return f"PositionSnapshot({self.fen!r})"


class PositionSource(Protocol):
    def get_snapshot(self) -> Optional[PositionSnapshot]:
        ...

    def get_local_color(self) -> chess.Color:
        ...


class FilePositionSource:
    """Reads a FEN from the first line of a text file.

    An optional second line (``w``/``b``/``white``/``black``) overrides the
    configured local colour. A missing file or an invalid FEN makes the
    position unobservable for that poll.
    """

    def __init__(self, path: Union[str, Path], *, local_color: chess.Color = chess.WHITE) -> None:
        self.path = Path(path)
        self._local_color = local_color

    def _read_lines(self) -> Optional[list]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return None
        return [line.strip() for line in text.splitlines() if line.strip()]

    def get_snapshot(self) -> Optional[PositionSnapshot]:
        lines = self._read_lines()
        if not lines:
            return None
        try:
            return PositionSnapshot(lines[0])
        except ValueError:
            return None

    def get_local_color(self) -> chess.Color:
        lines = self._read_lines()
        if lines and len(lines) > 1:
            return parse_color(lines[1], self._local_color)
        return self._local_color


class BoardPositionSource:
    """Exposes a live ``chess.Board`` that another component mutates."""

    def __init__(self, board: chess.Board, *, local_color: chess.Color = chess.WHITE) -> None:
        self.board = board
        self.local_color = local_color
        self._lock = threading.Lock()

    def update(self, board: chess.Board) -> None:
        with self._lock:
            self.board = board

    def get_snapshot(self) -> Optional[PositionSnapshot]:
        with self._lock:
            if self.board is None:
                return None
            return PositionSnapshot.from_board(self.board)

    def get_local_color(self) -> chess.Color:
        return self.local_color
