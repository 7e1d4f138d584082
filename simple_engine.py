"""One-ply heuristic UCI engine used when no Stockfish binary is installed."""

import io
import random
import sys
from typing import Callable, Dict, List, Optional, Tuple

import chess

PIECE_VALUES: Dict[int, int] = {
    chess.PAWN: 100,
    chess.KNIGHT: 320,
    chess.BISHOP: 330,
    chess.ROOK: 500,
    chess.QUEEN: 900,
    chess.KING: 0,
}

CHECK_BONUS = 24
PROMOTION_BONUS = 60
CENTER_BONUS = 12
MATE_SCORE = 100_000
# Noise at Skill Level 0; shrinks linearly to zero at 20.
MAX_NOISE = 40.0
MAX_SKILL = 20

CENTER_SQUARES = chess.SquareSet([chess.D4, chess.E4, chess.D5, chess.E5])


class SimpleEngine:
    """Scores each legal move by its immediate material and central gain."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.board = chess.Board()
        self.running = True
        self.debug = False
        self.options: Dict[str, str] = {}
        self._rng = rng or random.Random()
        self._handlers: Dict[str, Callable[[str], None]] = {
            "uci": self.handle_uci,
            "isready": self.handle_isready,
            "setoption": self.handle_setoption,
            "ucinewgame": self.handle_ucinewgame,
            "position": self.handle_position,
            "go": self.handle_go,
            "debug": self.handle_debug,
            "quit": self.handle_quit,
            # Searches finish immediately, so there is never anything to stop.
            "stop": lambda _: None,
        }

    def start(self) -> None:
        _ensure_line_buffered_stdout()
        while self.running:
            command = sys.stdin.readline()
            if not command:
                break
            self.handle_command(command)
            sys.stdout.flush()

    def handle_command(self, command: str) -> None:
        command = command.strip()
        if not command:
            return
        name, _, args = command.partition(" ")
        self._handlers.get(name.lower(), self.handle_unknown)(args.strip())

    def handle_uci(self, _: str) -> None:
        print("id name SimpleEngine")
        print("id author Move Watch")
        print("option name Skill Level type spin default 20 min 0 max 20")
        print("uciok")

    def handle_isready(self, _: str) -> None:
        print("readyok")

    def handle_setoption(self, args: str) -> None:
        tokens = args.split()
        if "name" not in tokens:
            self._log(f"Malformed setoption: {args}")
            return
        name_start = tokens.index("name") + 1
        if "value" in tokens:
            value_index = tokens.index("value")
            name = " ".join(tokens[name_start:value_index])
            value = " ".join(tokens[value_index + 1 :])
        else:
            name = " ".join(tokens[name_start:])
            value = ""
        self.options[name.lower()] = value
        self._log(f"Option {name} = {value}")

    def handle_ucinewgame(self, _: str) -> None:
        self.board.reset()

    def handle_position(self, args: str) -> None:
        tokens = args.split()
        if not tokens:
            return

        move_tokens: List[str] = []
        if "moves" in tokens:
            move_index = tokens.index("moves")
            move_tokens = tokens[move_index + 1 :]
            tokens = tokens[:move_index]

        if tokens[0] == "startpos":
            board = chess.Board()
        elif tokens[0] == "fen":
            fen = " ".join(tokens[1:7])
            try:
                board = chess.Board(fen)
            except ValueError:
                self._log(f"Invalid FEN received: {fen}")
                return
        else:
            self._log(f"Unsupported position command: {args}")
            return

        for move_text in move_tokens:
            try:
                board.push_uci(move_text)
            except ValueError:
                self._log(f"Illegal move in position command: {move_text}")
                break
        self.board = board

    def handle_go(self, _: str) -> None:
        best, ponder = self.select_moves()
        if best is None:
            print("bestmove (none)")
        elif ponder is None:
            print(f"bestmove {best.uci()}")
        else:
            print(f"bestmove {best.uci()} ponder {ponder.uci()}")

    def handle_debug(self, args: str) -> None:
        setting = args.lower()
        if setting not in ("on", "off"):
            print("info string debug expects 'on' or 'off'")
            return
        self.debug = setting == "on"
        self._log(f"Debug set to {self.debug}")

    def handle_quit(self, _: str) -> None:
        self.running = False

    def handle_unknown(self, args: str) -> None:
        self._log(f"Unknown command: {args}")

    @property
    def skill_level(self) -> int:
        try:
            level = int(self.options.get("skill level", MAX_SKILL))
        except ValueError:
            return MAX_SKILL
        return max(0, min(MAX_SKILL, level))

    def select_moves(self) -> Tuple[Optional[chess.Move], Optional[chess.Move]]:
        """Best move for the side to move plus the expected reply."""
        best = self._best_move(self.board)
        if best is None:
            return None, None
        self.board.push(best)
        try:
            ponder = self._best_move(self.board)
        finally:
            self.board.pop()
        return best, ponder

    def _best_move(self, board: chess.Board) -> Optional[chess.Move]:
        legal_moves = list(board.legal_moves)
        if not legal_moves:
            return None
        noise = MAX_NOISE * (MAX_SKILL - self.skill_level) / MAX_SKILL
        scored = [
            (self.score_move(board, move) + self._rng.uniform(-noise, noise), index)
            for index, move in enumerate(legal_moves)
        ]
        _, best_index = max(scored)
        return legal_moves[best_index]

    def score_move(self, board: chess.Board, move: chess.Move) -> float:
        """Gain for the mover, in centipawns."""
        score = 0.0
        if board.is_en_passant(move):
            score += PIECE_VALUES[chess.PAWN]
        else:
            captured = board.piece_at(move.to_square)
            if captured is not None:
                attacker = board.piece_at(move.from_square)
                score += PIECE_VALUES[captured.piece_type] - 0.1 * PIECE_VALUES[attacker.piece_type]
        if move.promotion is not None:
            score += PIECE_VALUES[move.promotion] - PIECE_VALUES[chess.PAWN] + PROMOTION_BONUS
        if move.to_square in CENTER_SQUARES:
            score += CENTER_BONUS

        board.push(move)
        try:
            if board.is_checkmate():
                return MATE_SCORE
            if board.is_check():
                score += CHECK_BONUS
            # Penalise leaving the moved piece en prise.
            if board.is_attacked_by(board.turn, move.to_square) and not board.is_attacked_by(
                not board.turn, move.to_square
            ):
                moved = board.piece_at(move.to_square)
                score -= PIECE_VALUES[moved.piece_type]
        finally:
            board.pop()
        return score

    def _log(self, message: str) -> None:
        if self.debug:
            print(f"info string {message}")


def _ensure_line_buffered_stdout() -> None:
    stdout = sys.stdout
    if isinstance(stdout, io.TextIOBase) and getattr(stdout, "line_buffering", False):
        return
    buffer = getattr(stdout, "buffer", None)
    if buffer is None:
        return
    sys.stdout = io.TextIOWrapper(buffer, line_buffering=True)


if __name__ == "__main__":
    SimpleEngine().start()
