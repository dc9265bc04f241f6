"""Domain models for meal drafts, calculations and history filters."""

import math
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID, uuid4

from bolus_tracker.domain.models import DoseStatus


@dataclass(frozen=True)
class DraftItem:
    """Unsaved meal line as typed by the user."""

    food_id: UUID | None = None
    grams_text: str = ""
    id: UUID = field(default_factory=uuid4)

    @property
    def grams_value(self) -> float:
        """Return the parsed grams, or zero when the text is not a number."""
        return parse_decimal(self.grams_text) or 0.0


@dataclass(frozen=True)
class Calculation:
    """Totals for a set of draft items."""

    total_carbs: float = 0.0
    rations: float = 0.0
    insulin_units: float = 0.0

    def is_finite(self) -> bool:
        """Return True when every total is a finite number."""
        return all(
            math.isfinite(value)
            for value in (self.total_carbs, self.rations, self.insulin_units)
        )


@dataclass(frozen=True)
class SaveMealResult:
    """Outcome of saving a meal."""

    meal_id: UUID
    alert_message: str | None = None


class DayFilter(str, Enum):
    """History window relative to local midnight."""

    ALL = "all"
    TODAY = "today"
    YESTERDAY = "yesterday"
    LAST_7_DAYS = "last7Days"
    LAST_30_DAYS = "last30Days"


class DoseFilter(str, Enum):
    """History filter on dose status."""

    ALL = "all"
    PENDING = "pending"
    APPLIED = "applied"
    SKIPPED = "skipped"

    @property
    def status(self) -> DoseStatus | None:
        """Return the matching dose status, or None for no filtering."""
        if self is DoseFilter.ALL:
            return None
        return DoseStatus(self.value)


def parse_decimal(value: str) -> float | None:
    """Parse a number that may use a decimal comma."""
    normalized = value.strip().replace(",", ".")
    if not normalized:
        return None
    try:
        parsed = float(normalized)
    except ValueError:
        return None
    if not math.isfinite(parsed):
        return None
    return parsed
