"""Human-like suppression and turn-gated display of engine suggestions."""

from __future__ import annotations

import random
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Protocol, Tuple

import chess

from position import PositionSnapshot
from scheduler import AnalysisRequest, RequestKind
from utils import QUIET_REPORTER, Reporter

HISTORY_LIMIT = 64


class Presenter(Protocol):
    def render(self, move: chess.Move, display_mode: str, color: str) -> None:
        ...

    def clear(self) -> None:
        ...


@dataclass(frozen=True)
class Suggestion:
    move: chess.Move
    epoch: int
    sequence: int
    target: PositionSnapshot


HistoryCallback = Callable[[List[Suggestion]], None]


class MoveFilter:
    """Drops a share of results equal to the profile's error rate."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def admit(self, error_rate: float) -> bool:
        return self._rng.random() >= error_rate


class OutputBuffer:
    def __init__(
        self,
        presenter: Presenter,
        *,
        move_filter: Optional[MoveFilter] = None,
        display_mode: str = "arrow",
        color: str = "#00f2ff",
        on_history: Optional[HistoryCallback] = None,
        reporter: Optional[Reporter] = None,
    ) -> None:
        self._presenter = presenter
        self._filter = move_filter or MoveFilter()
        self.display_mode = display_mode
        self.color = color
        self._on_history = on_history
        self._reporter = reporter or QUIET_REPORTER
        self._pending: Optional[Suggestion] = None
        self._displayed: Optional[Suggestion] = None
        self._suppressed: Optional[Tuple[PositionSnapshot, int]] = None
        self._history: Deque[Suggestion] = deque(maxlen=HISTORY_LIMIT)
        self._snapshot: Optional[PositionSnapshot] = None
        self._local_color: chess.Color = chess.WHITE
        self._epoch = 0

    @property
    def pending(self) -> Optional[Suggestion]:
        return self._pending

    @property
    def displayed(self) -> Optional[Suggestion]:
        return self._displayed

    @property
    def history(self) -> List[Suggestion]:
        return list(self._history)

    def observe(self, snapshot: PositionSnapshot, local_color: chess.Color, epoch: int) -> None:
        self._snapshot = snapshot
        self._local_color = local_color
        self._epoch = epoch

    def is_player_turn(self) -> bool:
        return self._snapshot is not None and self._snapshot.turn == self._local_color

    def has_pending_for(self, snapshot: PositionSnapshot) -> bool:
        return self._pending is not None and self._pending.target == snapshot

    def is_suppressed(self, snapshot: PositionSnapshot) -> bool:
        return self._suppressed == (snapshot, self._epoch)

    def accept(self, request: AnalysisRequest, move_text: str, ponder_text: Optional[str]) -> None:
        """Take a sequence-matched engine result and decide what becomes of it."""
        if request.epoch != self._epoch:
            self._reporter.debug(f"Result #{request.sequence} belongs to epoch {request.epoch}; dropped")
            return
        resolved = self._resolve_target(request, move_text, ponder_text)
        if resolved is None:
            return
        target, move = resolved

        if not self._filter.admit(request.profile.error_rate):
            self._suppressed = (target, request.epoch)
            self._reporter.debug(f"Suggestion {move.uci()} suppressed (error rate {request.profile.error_rate})")
            return

        self._pending = Suggestion(move, request.epoch, request.sequence, target)
        self.try_promote()

    def _resolve_target(
        self, request: AnalysisRequest, move_text: str, ponder_text: Optional[str]
    ) -> Optional[Tuple[PositionSnapshot, chess.Move]]:
        try:
            best = chess.Move.from_uci(move_text)
            ponder = chess.Move.from_uci(ponder_text) if ponder_text else None
        except ValueError:
            self._reporter.warning(f"Engine produced an unreadable move: {move_text} {ponder_text or ''}")
            return None

        snapshot = request.snapshot
        opponent_to_move = snapshot.turn != self._local_color
        if request.kind is RequestKind.PREFETCH and opponent_to_move and ponder is not None:
            predicted = snapshot.after(best)
            if predicted is not None:
                return predicted, ponder
        return snapshot, best

    def try_promote(self) -> bool:
        pending = self._pending
        if pending is None or self._displayed is not None:
            return False
        if pending.epoch != self._epoch or not self.is_player_turn():
            return False
        if pending.target != self._snapshot:
            return False
        self._displayed = pending
        self._history.append(pending)
        self._presenter.render(pending.move, self.display_mode, self.color)
        self._publish_history()
        self._reporter.info(f"Suggested move: {pending.move.uci()}")
        return True

    def clear_display(self) -> None:
        if self._displayed is None:
            return
        self._displayed = None
        self._presenter.clear()

    def discard_stale(self, snapshot: PositionSnapshot) -> None:
        if self._pending is not None and self._pending.target != snapshot:
            self._pending = None
        if self._displayed is not None and self._displayed.target != snapshot:
            self.clear_display()

    def reset(self) -> None:
        self._pending = None
        self._displayed = None
        self._suppressed = None
        self._history.clear()
        self._presenter.clear()
        self._publish_history()

    def _publish_history(self) -> None:
        if self._on_history:
            self._on_history(list(self._history))
