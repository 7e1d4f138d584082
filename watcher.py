"""Polling loop that turns observed positions into analysis requests."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from engine_session import EngineSession
from output_buffer import OutputBuffer
from position import COLOR_NAME, PositionSnapshot, PositionSource
from scheduler import AnalysisScheduler, RequestKind
from strength import Mode, StrengthProfile, normalize_level, normalize_mode, resolve
from utils import QUIET_REPORTER, Reporter


class Transition(Enum):
    NEW_GAME = "new_game"
    MOVE_MADE = "move_made"
    UNCHANGED = "unchanged"


def classify_transition(
    previous: Optional[PositionSnapshot], current: PositionSnapshot
) -> Transition:
    # The start position seen first (page load) is not a new game.
    if current.is_initial and previous is not None and not previous.is_initial:
        return Transition.NEW_GAME
    if previous is None or current != previous:
        return Transition.MOVE_MADE
    return Transition.UNCHANGED


class PositionWatcher:
    def __init__(
        self,
        source: PositionSource,
        session: EngineSession,
        scheduler: AnalysisScheduler,
        buffer: OutputBuffer,
        *,
        level: Union[int, str] = "1000",
        mode: Union[Mode, str] = Mode.NORMAL,
        prefetch_enabled: bool = False,
        reporter: Optional[Reporter] = None,
    ) -> None:
        self._source = source
        self._session = session
        self._scheduler = scheduler
        self._buffer = buffer
        self._level = normalize_level(level)
        self._mode = normalize_mode(mode)
        self.prefetch_enabled = prefetch_enabled
        self._reporter = reporter or QUIET_REPORTER
        self._profile = resolve(self._level, self._mode)
        self._previous: Optional[PositionSnapshot] = None
        self._epoch = 0

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def profile(self) -> StrengthProfile:
        return self._profile

    @property
    def level(self) -> str:
        return self._level

    @property
    def mode(self) -> Mode:
        return self._mode

    def set_level(self, level: Union[int, str]) -> None:
        self._level = normalize_level(level)
        self._apply_profile()

    def set_mode(self, mode: Union[Mode, str]) -> None:
        self._mode = normalize_mode(mode)
        self._apply_profile()

    def set_prefetch(self, enabled: bool) -> None:
        self.prefetch_enabled = bool(enabled)

    def _apply_profile(self) -> None:
        self._profile = resolve(self._level, self._mode)
        self._session.set_profile(self._profile)
        self._reporter.info(f"Strength set to {self._level} ({self._mode.value})")

    def tick(self) -> Optional[Transition]:
        snapshot = self._source.get_snapshot()
        if snapshot is None:
            return None
        local_color = self._source.get_local_color()

        transition = classify_transition(self._previous, snapshot)
        self._previous = snapshot

        if transition is Transition.NEW_GAME:
            self._epoch += 1
            self._reporter.info(f"New game detected (epoch {self._epoch})")
            self._scheduler.cancel("new game")
            self._buffer.reset()
            self._session.new_game()
        self._buffer.observe(snapshot, local_color, self._epoch)

        player_turn = snapshot.turn == local_color
        if transition is Transition.MOVE_MADE:
            self._buffer.discard_stale(snapshot)
            if player_turn:
                if not (
                    self._buffer.has_pending_for(snapshot) or self._buffer.is_suppressed(snapshot)
                ):
                    self._request(snapshot, RequestKind.PRIMARY)
            elif self.prefetch_enabled:
                self._request(snapshot, RequestKind.PREFETCH)

        if player_turn:
            buffer = self._buffer
            if buffer.pending is not None and buffer.displayed is None:
                buffer.try_promote()
            elif (
                buffer.pending is None
                and buffer.displayed is None
                and not self._scheduler.busy
                and not buffer.is_suppressed(snapshot)
            ):
                self._request(snapshot, RequestKind.PRIMARY)
        else:
            self._buffer.clear_display()
        return transition

    def _request(self, snapshot: PositionSnapshot, kind: RequestKind) -> None:
        request = self._scheduler.request(snapshot, self._epoch, self._profile, kind)
        if request is not None:
            self._reporter.debug(
                f"{kind.value} analysis for {COLOR_NAME[snapshot.turn]} to move (#{request.sequence})"
            )
