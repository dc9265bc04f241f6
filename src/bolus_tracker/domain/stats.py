"""Domain models for statistics."""

from dataclasses import dataclass
from enum import Enum


class StatsPeriod(str, Enum):
    """Window of meals included in the statistics."""

    ALL = "all"
    LAST_7 = "last7"
    LAST_30 = "last30"
    LAST_90 = "last90"

    @property
    def days(self) -> int | None:
        """Return the number of days covered, or None for everything."""
        return {
            StatsPeriod.ALL: None,
            StatsPeriod.LAST_7: 7,
            StatsPeriod.LAST_30: 30,
            StatsPeriod.LAST_90: 90,
        }[self]


@dataclass(frozen=True)
class TopFood:
    """Usage summary for one food."""

    name: str
    uses: int
    carbs: float


@dataclass(frozen=True)
class StatsSummary:
    """Aggregated figures over a set of meals."""

    total_meals: int
    days_with_meals: int
    total_carbs: float
    total_rations: float
    total_insulin: float
    meals_per_day: float
    carbs_per_meal: float
    rations_per_meal: float
    insulin_per_meal: float
    effective_units_per_ration: float | None
    effective_units_per_gram: float | None
    avg_glucose_before: float | None
    avg_glucose_after_2h: float | None
    avg_delta_2h: float | None
    in_range_2h_pct: float | None
    top_foods: list[TopFood]
