"""Rating levels and the search parameters they resolve to."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional, Tuple, Union


class Mode(Enum):
    NORMAL = "normal"
    COMBAT = "combat"


@dataclass(slots=True, frozen=True)
class StrengthProfile:
    skill_level: int
    search_depth: int
    strength_cap_enabled: bool
    target_rating: Optional[int]
    error_rate: float
    hash_size_mb: int
    time_cap_ms: Optional[int] = None
    anticipated_draw_bias: Optional[int] = None

    def with_limits(self, *, search_depth: int, time_cap_ms: Optional[int]) -> "StrengthProfile":
        return replace(self, search_depth=search_depth, time_cap_ms=time_cap_ms)

    def engine_options(self) -> Dict[str, Union[int, str]]:
        """Static UCI options applied whenever the engine becomes ready."""
        options: Dict[str, Union[int, str]] = {
            "Hash": self.hash_size_mb,
            "UCI_LimitStrength": "true" if self.strength_cap_enabled else "false",
        }
        if self.strength_cap_enabled and self.target_rating is not None:
            options["UCI_Elo"] = self.target_rating
        options["Skill Level"] = self.skill_level
        if self.anticipated_draw_bias is not None:
            options["Contempt"] = self.anticipated_draw_bias
        return options


LEVELS: Tuple[str, ...] = (
    "1000", "1200", "1300", "1400", "1500", "1600", "1700",
    "1800", "1900", "2000", "2200", "2500", "2800", "3000",
)
LEVEL_LABELS: Dict[str, str] = dict(
    zip(
        LEVELS,
        (
            "BRONZE", "BRONZE+", "SILVER", "SILVER+", "SILVER++", "GOLD", "GOLD+",
            "GOLD++", "EXPERT", "MASTER", "IM", "GM", "SUPER GM", "STOCKFISH",
        ),
    )
)

# Unknown levels resolve here in every mode.
DEFAULT_LEVEL = LEVELS[0]

NORMAL_HASH_MB = 16
COMBAT_HASH_MB = 64
UNCAPPED_LEVEL = "3000"
COMBAT_DRAW_BIAS = 20
COMBAT_DRAW_BIAS_FROM = 2000

# level: (skill level, depth, target rating, error rate)
_NORMAL_TABLE: Dict[str, Tuple[int, int, int, float]] = {
    "1000": (1, 5, 800, 0.30),
    "1200": (3, 7, 1100, 0.22),
    "1300": (5, 8, 1250, 0.18),
    "1400": (7, 9, 1350, 0.14),
    "1500": (9, 10, 1450, 0.10),
    "1600": (11, 11, 1550, 0.08),
    "1700": (13, 12, 1650, 0.06),
    "1800": (15, 13, 1750, 0.04),
    "1900": (17, 14, 1850, 0.03),
    "2000": (18, 16, 2000, 0.02),
    "2200": (19, 18, 2200, 0.01),
    "2500": (20, 20, 2500, 0.005),
    "2800": (20, 22, 2800, 0.0),
    "3000": (20, 24, 3000, 0.0),
}

_COMBAT_TABLE: Dict[str, Tuple[int, int, int, float]] = {
    "1000": (3, 10, 1100, 0.15),
    "1200": (6, 12, 1350, 0.12),
    "1300": (9, 14, 1450, 0.10),
    "1400": (12, 16, 1550, 0.08),
    "1500": (15, 18, 1650, 0.06),
    "1600": (17, 20, 1750, 0.04),
    "1700": (18, 22, 1850, 0.03),
    "1800": (19, 24, 1950, 0.02),
    "1900": (20, 26, 2100, 0.01),
    "2000": (20, 28, 2300, 0.005),
    "2200": (20, 30, 2500, 0.0),
    "2500": (20, 32, 2800, 0.0),
    "2800": (20, 34, 3000, 0.0),
    "3000": (20, 40, 3200, 0.0),
}


def normalize_level(level: Union[int, str, None]) -> str:
    key = str(level).strip() if level is not None else ""
    return key if key in _NORMAL_TABLE else DEFAULT_LEVEL


def normalize_mode(mode: Union[Mode, str, None]) -> Mode:
    if isinstance(mode, Mode):
        return mode
    try:
        return Mode(str(mode).strip().lower())
    except ValueError:
        return Mode.NORMAL


def resolve(level: Union[int, str, None], mode: Union[Mode, str, None] = Mode.NORMAL) -> StrengthProfile:
    """Return the search parameters for ``level`` in ``mode``.

    Levels missing from the tables fall back to ``DEFAULT_LEVEL`` (the lowest
    rating) regardless of mode.
    """
    key = normalize_level(level)
    combat = normalize_mode(mode) is Mode.COMBAT
    table = _COMBAT_TABLE if combat else _NORMAL_TABLE
    skill, depth, rating, error_rate = table[key]
    capped = key != UNCAPPED_LEVEL
    draw_bias = None
    if combat and int(key) >= COMBAT_DRAW_BIAS_FROM:
        draw_bias = COMBAT_DRAW_BIAS
    return StrengthProfile(
        skill_level=skill,
        search_depth=depth,
        strength_cap_enabled=capped,
        target_rating=rating if capped else None,
        error_rate=error_rate,
        hash_size_mb=COMBAT_HASH_MB if combat else NORMAL_HASH_MB,
        anticipated_draw_bias=draw_bias,
    )


def describe_level(level: Union[int, str]) -> str:
    key = normalize_level(level)
    normal = resolve(key, Mode.NORMAL)
    combat = resolve(key, Mode.COMBAT)
    return (
        f"{key:>5} {LEVEL_LABELS[key]:<10} depth {normal.search_depth:>2}/{combat.search_depth:<2} "
        f"skill {normal.skill_level:>2}/{combat.skill_level:<2} "
        f"error {normal.error_rate:.3f}/{combat.error_rate:.3f}"
    )
