"""Lifecycle of the external UCI engine: handshake, searches, crash recovery."""

from __future__ import annotations

import itertools
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Union

from engine_comm import CallLater, Cancellable, ChannelFactory, EngineChannel, parse_engine_line
from position import PositionSnapshot
from strength import StrengthProfile
from utils import QUIET_REPORTER, Reporter

DEFAULT_HANDSHAKE_RETRIES = 20
DEFAULT_HANDSHAKE_INTERVAL_MS = 500
DEFAULT_RESTART_BACKOFF_MS = 2000
DEFAULT_RESYNC_TIMEOUT_MS = 5000


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    READY = "ready"
    BUSY = "busy"
    FAULTED = "faulted"


@dataclass(eq=False)
class SearchHandle:
    """One ``go`` sent to the engine; ``token`` is the caller's correlation key."""

    id: int
    token: int
    snapshot: PositionSnapshot
    aborted: bool = field(default=False)


ResultCallback = Callable[[SearchHandle, Optional[str], Optional[str]], None]
FailedCallback = Callable[[SearchHandle], None]


class EngineSession:
    def __init__(
        self,
        channel_factory: ChannelFactory,
        call_later: CallLater,
        profile: StrengthProfile,
        *,
        handshake_retries: int = DEFAULT_HANDSHAKE_RETRIES,
        handshake_interval_ms: float = DEFAULT_HANDSHAKE_INTERVAL_MS,
        restart_backoff_ms: float = DEFAULT_RESTART_BACKOFF_MS,
        resync_timeout_ms: float = DEFAULT_RESYNC_TIMEOUT_MS,
        reporter: Optional[Reporter] = None,
        on_state_change: Optional[Callable[[SessionState], None]] = None,
        on_failure: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._channel_factory = channel_factory
        self._call_later = call_later
        self._profile = profile
        self.handshake_retries = handshake_retries
        self.handshake_interval_ms = handshake_interval_ms
        self.restart_backoff_ms = restart_backoff_ms
        self.resync_timeout_ms = resync_timeout_ms
        self._reporter = reporter or QUIET_REPORTER
        self._on_state_change = on_state_change
        self._on_failure = on_failure
        self._on_result: Optional[ResultCallback] = None
        self._on_request_failed: Optional[FailedCallback] = None

        self._state = SessionState.UNINITIALIZED
        self._channel: Optional[EngineChannel] = None
        self._generation = 0
        self._inflight: Deque[SearchHandle] = deque()
        self._handle_ids = itertools.count(1)
        self._handshake_timer: Optional[Cancellable] = None
        self._handshake_attempts = 0
        self._restart_timer: Optional[Cancellable] = None
        self._restart_attempted = False
        # One entry per unanswered ``isready``: the searches sent before it.
        self._resync_barriers: Deque[List[SearchHandle]] = deque()
        self._resync_timer: Optional[Cancellable] = None
        self._deferred_options: Dict[str, Union[int, str]] = {}
        self.failure_reason: Optional[str] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def profile(self) -> StrengthProfile:
        return self._profile

    @property
    def can_search(self) -> bool:
        return self._state in (SessionState.READY, SessionState.BUSY)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def bind(self, *, on_result: ResultCallback, on_request_failed: FailedCallback) -> None:
        self._on_result = on_result
        self._on_request_failed = on_request_failed

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        self._reporter.debug(f"Engine session {self._state.value} -> {state.value}")
        self._state = state
        if self._on_state_change:
            self._on_state_change(state)

    # Lifecycle

    def start(self) -> bool:
        if self._state is not SessionState.UNINITIALIZED:
            return False
        self._generation += 1
        generation = self._generation
        self._handshake_attempts = 0
        self.failure_reason = None
        self._set_state(SessionState.STARTING)
        self._channel = self._channel_factory(
            lambda line: self._handle_line(generation, line),
            lambda code: self._handle_exit(generation, code),
        )
        try:
            self._channel.start()
        except OSError as exc:
            self._handshake_failed(f"engine could not be launched: {exc}")
            return False
        self._send("uci")
        self._schedule_handshake_poke()
        return True

    def _schedule_handshake_poke(self) -> None:
        self._handshake_timer = self._call_later(self.handshake_interval_ms, self._handshake_poke)

    def _handshake_poke(self) -> None:
        self._handshake_timer = None
        if self._state is not SessionState.STARTING:
            return
        if self._handshake_attempts >= self.handshake_retries:
            self._handshake_failed(
                f"engine failed to respond after {self.handshake_retries} retries"
            )
            return
        self._handshake_attempts += 1
        self._send("uci")
        self._schedule_handshake_poke()

    def _cancel_handshake_timer(self) -> None:
        if self._handshake_timer is not None:
            self._handshake_timer.cancel()
            self._handshake_timer = None

    def _handshake_failed(self, reason: str) -> None:
        self._cancel_handshake_timer()
        self._close_channel()
        self.failure_reason = reason
        self._set_state(SessionState.FAULTED)
        self._reporter.error(f"Engine handshake failed: {reason}")
        if self._on_failure:
            self._on_failure(reason)

    def shutdown(self) -> None:
        self._cancel_handshake_timer()
        self._clear_resync()
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None
        self._inflight.clear()
        self._close_channel()
        self._set_state(SessionState.UNINITIALIZED)

    def _close_channel(self) -> None:
        channel, self._channel = self._channel, None
        # Events from the closed channel belong to a dead generation.
        self._generation += 1
        if channel is not None:
            channel.close()

    # Engine events

    def _handle_line(self, generation: int, line: str) -> None:
        if generation != self._generation:
            return
        self._reporter.received(line)
        event = parse_engine_line(line)
        if event.kind == "ready":
            if self._state is SessionState.STARTING:
                self._cancel_handshake_timer()
                self._restart_attempted = False
                self._set_state(SessionState.READY)
                self._reporter.info("Engine ready")
                self.configure(self._profile.engine_options())
        elif event.kind == "synced":
            self._handle_synced()
        elif event.kind == "bestmove":
            self._handle_bestmove(event.move, event.ponder)

    def _handle_bestmove(self, move: Optional[str], ponder: Optional[str]) -> None:
        if not self._inflight:
            self._reporter.debug("bestmove with no search in flight ignored")
            return
        handle = self._inflight.popleft()
        self._settle()
        if self._on_result:
            self._on_result(handle, move, ponder)

    def _handle_synced(self) -> None:
        if not self._resync_barriers:
            self._reporter.debug("readyok with no resync pending ignored")
            return
        # The engine answers ``isready`` only after every earlier ``bestmove``.
        barrier = self._resync_barriers.popleft()
        dropped = [handle for handle in barrier if handle in self._inflight]
        if dropped:
            self._reporter.warning(f"Engine never answered {len(dropped)} search(es); dropped")
            self._inflight = deque(handle for handle in self._inflight if handle not in dropped)
        if self._resync_timer is not None:
            self._resync_timer.cancel()
            self._resync_timer = None
        if self._resync_barriers:
            self._resync_timer = self._call_later(self.resync_timeout_ms, self._resync_expired)
        self._settle()

    def _settle(self) -> None:
        if self._inflight or self._state is not SessionState.BUSY:
            return
        self._set_state(SessionState.READY)
        if self._deferred_options:
            options, self._deferred_options = self._deferred_options, {}
            self.configure(options)

    def _handle_exit(self, generation: int, code: Optional[int]) -> None:
        if generation != self._generation:
            return
        self._reporter.warning(f"Engine process exited unexpectedly (code {code})")
        self._channel = None
        self._generation += 1
        self._fault()

    def _resync_expired(self) -> None:
        self._resync_timer = None
        if not self._resync_barriers or not self.can_search:
            return
        self._reporter.warning(
            f"Engine did not answer isready within {self.resync_timeout_ms / 1000:.1f}s"
        )
        self._close_channel()
        self._fault()

    def _clear_resync(self) -> None:
        if self._resync_timer is not None:
            self._resync_timer.cancel()
            self._resync_timer = None
        self._resync_barriers.clear()
        self._deferred_options.clear()

    def _fault(self) -> None:
        was_starting = self._state is SessionState.STARTING
        self._cancel_handshake_timer()
        self._clear_resync()
        failed = list(self._inflight)
        self._inflight.clear()
        self._set_state(SessionState.FAULTED)
        for handle in failed:
            if self._on_request_failed:
                self._on_request_failed(handle)

        if was_starting and self._restart_attempted:
            self._handshake_failed("engine exited during restart handshake")
            return
        self._restart_attempted = True
        self._reporter.warning(f"Restarting engine in {self.restart_backoff_ms / 1000:.1f}s")
        self._restart_timer = self._call_later(self.restart_backoff_ms, self._restart)

    def _restart(self) -> None:
        self._restart_timer = None
        if self._state is not SessionState.FAULTED:
            return
        self._set_state(SessionState.UNINITIALIZED)
        self.start()

    # Commands

    def _send(self, command: str) -> None:
        if self._channel is None:
            return
        self._reporter.sending(command)
        self._channel.send(command)

    def configure(self, options: Dict[str, Union[int, str]]) -> bool:
        """Send ``setoption`` lines; while a search runs they wait until the engine is idle."""
        if not self.can_search:
            return False
        if self._state is SessionState.BUSY:
            self._deferred_options.update(options)
            return True
        for name, value in options.items():
            self._send(f"setoption name {name} value {value}")
        return True

    def set_profile(self, profile: StrengthProfile) -> None:
        self._profile = profile
        self.configure(profile.engine_options())

    def new_game(self) -> bool:
        if not self.can_search:
            return False
        self._send("ucinewgame")
        return True

    def search(
        self, snapshot: PositionSnapshot, profile: StrengthProfile, token: int = 0
    ) -> Optional[SearchHandle]:
        if not self.can_search:
            return None
        handle = SearchHandle(id=next(self._handle_ids), token=token, snapshot=snapshot)
        go = f"go depth {profile.search_depth}"
        if profile.time_cap_ms is not None:
            go += f" movetime {int(profile.time_cap_ms)}"
        self._send(f"position fen {snapshot.fen}")
        self._send(go)
        self._inflight.append(handle)
        self._set_state(SessionState.BUSY)
        return handle

    def abort(self, handle: SearchHandle) -> bool:
        if handle.aborted or handle not in self._inflight:
            return False
        handle.aborted = True
        self._send("stop")
        return True

    def resync(self) -> bool:
        """Give up on every search sent so far.

        Sends ``isready``; the matching ``readyok`` drops whatever the engine
        left unanswered. Without it the engine is restarted.
        """
        if not self.can_search or not self._inflight:
            return False
        pending = [handle for handle in self._inflight if not handle.aborted]
        for handle in pending:
            handle.aborted = True
        if pending:
            self._send("stop")
        self._resync_barriers.append(list(self._inflight))
        self._send("isready")
        if self._resync_timer is None:
            self._resync_timer = self._call_later(self.resync_timeout_ms, self._resync_expired)
        return True
