"""Carbohydrate, ration and insulin arithmetic.

Every function is total: invalid inputs yield zero instead of raising.
"""

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class DoseBreakdown:
    """Carbs, rations and insulin for a single portion."""

    carbs: float
    rations: float
    insulin: float


def calculate_carbs(carbs_per_100g: float, grams_consumed: float) -> float:
    """Return the carbs contained in ``grams_consumed`` of a food."""
    if not (math.isfinite(carbs_per_100g) and math.isfinite(grams_consumed)):
        return 0.0
    if grams_consumed <= 0 or carbs_per_100g < 0:
        return 0.0
    return (carbs_per_100g / 100.0) * grams_consumed


def calculate_rations(total_carbs: float, grams_per_ration: float) -> float:
    """Convert carbs to rations."""
    if not grams_per_ration > 0:
        return 0.0
    return total_carbs / grams_per_ration


def calculate_insulin(rations: float, insulin_ratio: float) -> float:
    """Return insulin units rounded to the nearest half unit."""
    if not (rations > 0 and insulin_ratio > 0):
        return 0.0
    unrounded = rations * insulin_ratio
    if not math.isfinite(unrounded):
        return 0.0
    # half away from zero on the doubled value; inputs are positive here
    return math.floor(unrounded * 2 + 0.5) / 2


def calculate_all(
    carbs_per_100g: float,
    grams_consumed: float,
    grams_per_ration: float,
    insulin_ratio: float,
) -> DoseBreakdown:
    """Run the carbs, rations and insulin steps in order."""
    carbs = calculate_carbs(carbs_per_100g, grams_consumed)
    rations = calculate_rations(carbs, grams_per_ration)
    insulin = calculate_insulin(rations, insulin_ratio)
    return DoseBreakdown(carbs=carbs, rations=rations, insulin=insulin)
