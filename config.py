from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import chess

from engine_session import DEFAULT_RESYNC_TIMEOUT_MS
from scheduler import WATCHDOG_BASE_MS, WATCHDOG_MARGIN_MS
from strength import DEFAULT_LEVEL, Mode
from utils import ReportingLevel

DEFAULT_POLL_PERIOD_MS = 100
DEFAULT_ARROW_COLOR = "#00f2ff"
DISPLAY_MODES = ("arrow", "highlight")


@dataclass(slots=True, frozen=True)
class MonitorConfig:
    """Runtime settings; display settings are passed through untouched."""

    engine_path: str
    fen_file: Optional[str] = None
    local_color: chess.Color = chess.WHITE
    level: str = DEFAULT_LEVEL
    mode: Mode = Mode.NORMAL
    prefetch_enabled: bool = False
    display_mode: str = "arrow"
    arrow_color: str = DEFAULT_ARROW_COLOR
    poll_period_ms: int = DEFAULT_POLL_PERIOD_MS
    handshake_retries: int = 20
    handshake_interval_ms: int = 500
    restart_backoff_ms: int = 2000
    resync_timeout_ms: int = DEFAULT_RESYNC_TIMEOUT_MS
    watchdog_base_ms: int = WATCHDOG_BASE_MS
    watchdog_margin_ms: int = WATCHDOG_MARGIN_MS
    reporting_level: ReportingLevel = ReportingLevel.BASIC
    gui: bool = False
