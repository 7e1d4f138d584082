"""Admission control for the single engine search slot."""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from engine_comm import CallLater, Cancellable
from engine_session import EngineSession, SearchHandle
from position import PositionSnapshot
from strength import StrengthProfile
from utils import QUIET_REPORTER, Reporter

WATCHDOG_BASE_MS = 10_000
WATCHDOG_MARGIN_MS = 5_000
WATCHDOG_DEPTH_THRESHOLD = 12
WATCHDOG_PER_DEPTH_MS = 1_000

PREFETCH_DEPTH_OFFSET = 4
PREFETCH_MIN_DEPTH = 6
PREFETCH_TIME_CAP_MS = 1_500


class RequestKind(Enum):
    PRIMARY = "primary"
    PREFETCH = "prefetch"


@dataclass(frozen=True)
class AnalysisRequest:
    snapshot: PositionSnapshot
    epoch: int
    profile: StrengthProfile
    kind: RequestKind
    sequence: int


ResultConsumer = Callable[[AnalysisRequest, str, Optional[str]], None]


def watchdog_duration_ms(
    profile: StrengthProfile,
    base_ms: float = WATCHDOG_BASE_MS,
    margin_ms: float = WATCHDOG_MARGIN_MS,
) -> int:
    if profile.time_cap_ms is not None:
        return int(profile.time_cap_ms + margin_ms)
    extra = (profile.search_depth - WATCHDOG_DEPTH_THRESHOLD) * WATCHDOG_PER_DEPTH_MS
    return int(max(base_ms, base_ms + extra))


def prefetch_profile(profile: StrengthProfile) -> StrengthProfile:
    depth = max(PREFETCH_MIN_DEPTH, profile.search_depth - PREFETCH_DEPTH_OFFSET)
    return profile.with_limits(search_depth=depth, time_cap_ms=PREFETCH_TIME_CAP_MS)


class AnalysisScheduler:
    """Owns the one outstanding request and discards every other response.

    Responses are matched on the request's sequence number, so a search that
    was aborted but still answers later is simply ignored.
    """

    def __init__(
        self,
        session: EngineSession,
        call_later: CallLater,
        *,
        on_result: Optional[ResultConsumer] = None,
        watchdog_base_ms: float = WATCHDOG_BASE_MS,
        watchdog_margin_ms: float = WATCHDOG_MARGIN_MS,
        reporter: Optional[Reporter] = None,
    ) -> None:
        self._session = session
        self._call_later = call_later
        self.watchdog_base_ms = watchdog_base_ms
        self.watchdog_margin_ms = watchdog_margin_ms
        self._on_result = on_result
        self._reporter = reporter or QUIET_REPORTER
        self._sequence = itertools.count(1)
        self._latest_sequence = 0
        self._outstanding: Optional[AnalysisRequest] = None
        self._outstanding_handle: Optional[SearchHandle] = None
        self._watchdog: Optional[Cancellable] = None
        session.bind(on_result=self.on_engine_result, on_request_failed=self.on_request_failed)

    @property
    def busy(self) -> bool:
        return self._outstanding is not None

    @property
    def outstanding(self) -> Optional[AnalysisRequest]:
        return self._outstanding

    @property
    def latest_sequence(self) -> int:
        return self._latest_sequence

    def request(
        self,
        snapshot: PositionSnapshot,
        epoch: int,
        profile: StrengthProfile,
        kind: RequestKind = RequestKind.PRIMARY,
    ) -> Optional[AnalysisRequest]:
        if self._outstanding is not None:
            self._reporter.debug(
                f"Preempting {self._outstanding.kind.value} request #{self._outstanding.sequence}"
            )
            self._release(abort=True)

        if not self._session.can_search:
            self._reporter.debug(f"Engine {self._session.state.value}; {kind.value} request deferred")
            return None

        if kind is RequestKind.PREFETCH:
            profile = prefetch_profile(profile)
        sequence = next(self._sequence)
        handle = self._session.search(snapshot, profile, token=sequence)
        if handle is None:
            return None

        request = AnalysisRequest(snapshot, epoch, profile, kind, sequence)
        self._latest_sequence = sequence
        self._outstanding = request
        self._outstanding_handle = handle
        self._watchdog = self._call_later(
            watchdog_duration_ms(profile, self.watchdog_base_ms, self.watchdog_margin_ms),
            lambda: self._on_watchdog(sequence),
        )
        self._reporter.debug(
            f"Issued {kind.value} request #{sequence} depth={profile.search_depth}"
        )
        return request

    def cancel(self, reason: str = "") -> None:
        if self._outstanding is None:
            return
        self._reporter.debug(
            f"Cancelling request #{self._outstanding.sequence}" + (f" ({reason})" if reason else "")
        )
        self._release(abort=True)

    def _release(self, *, abort: bool) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        handle = self._outstanding_handle
        self._outstanding = None
        self._outstanding_handle = None
        if abort and handle is not None:
            self._session.abort(handle)

    def _is_current(self, sequence: int) -> bool:
        return self._outstanding is not None and self._outstanding.sequence == sequence

    def _on_watchdog(self, sequence: int) -> None:
        if not self._is_current(sequence):
            return
        self._watchdog = None
        self._reporter.warning(f"Analysis #{sequence} stuck; force-resetting the engine slot")
        self._release(abort=True)
        self._session.resync()

    def on_engine_result(self, handle: SearchHandle, move: Optional[str], ponder: Optional[str]) -> None:
        if not self._is_current(handle.token):
            self._reporter.debug(f"Discarding stale response for request #{handle.token}")
            return
        request = self._outstanding
        self._release(abort=False)
        if move is None:
            self._reporter.debug(f"Request #{request.sequence} produced no move")
            return
        if self._on_result:
            self._on_result(request, move, ponder)

    def on_request_failed(self, handle: SearchHandle) -> None:
        if not self._is_current(handle.token):
            return
        self._reporter.warning(f"Analysis #{handle.token} lost with the engine process")
        self._release(abort=False)
