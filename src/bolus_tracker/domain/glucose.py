"""Domain models for the external glucose feed."""

from dataclasses import dataclass
from datetime import datetime

_TREND_ARROWS = {
    "TripleUp": "⇈",
    "DoubleUp": "↑↑",
    "SingleUp": "↑",
    "FortyFiveUp": "↗",
    "Flat": "→",
    "FortyFiveDown": "↘",
    "SingleDown": "↓",
    "DoubleDown": "↓↓",
    "TripleDown": "⇊",
}


@dataclass(frozen=True)
class GlucoseEntry:
    """Single sensor glucose value reported by the feed."""

    sgv: int
    date: float
    id: str | None = None
    date_string: str | None = None
    direction: str | None = None
    type: str | None = None

    @property
    def trend_arrow(self) -> str:
        """Return the arrow glyph for the trend direction."""
        return trend_arrow(self.direction)


@dataclass(frozen=True)
class GlucoseIdle:
    """No feed configured or nothing requested yet."""


@dataclass(frozen=True)
class GlucoseLoading:
    """A fetch is in flight."""


@dataclass(frozen=True)
class GlucoseSuccess:
    """The last fetch returned a reading."""

    entry: GlucoseEntry


@dataclass(frozen=True)
class GlucoseFailure:
    """The last fetch failed."""

    message: str


GlucoseState = GlucoseIdle | GlucoseLoading | GlucoseSuccess | GlucoseFailure


@dataclass(frozen=True)
class GlucoseSyncStatus:
    """Connection health of the glucose feed."""

    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error_message: str | None = None
    consecutive_failures: int = 0


def trend_arrow(direction: str | None) -> str:
    """Map a feed direction token to an arrow glyph."""
    if direction is None:
        return ""
    return _TREND_ARROWS.get(direction, "")
