"""Tests for dose arithmetic."""

import math

import pytest

from bolus_tracker.services.dosing import (
    calculate_all,
    calculate_carbs,
    calculate_insulin,
    calculate_rations,
)


def test_calculate_carbs_scales_per_100g() -> None:
    assert calculate_carbs(50, 200) == 100
    assert calculate_carbs(12.5, 80) == pytest.approx(10.0)


@pytest.mark.parametrize(
    ("carbs_per_100g", "grams"),
    [(50, 0), (50, -10), (-1, 100), (math.nan, 100), (50, math.inf)],
)
def test_calculate_carbs_returns_zero_for_invalid_input(
    carbs_per_100g: float, grams: float
) -> None:
    assert calculate_carbs(carbs_per_100g, grams) == 0


def test_calculate_rations_guards_ration_size() -> None:
    assert calculate_rations(45, 10) == 4.5
    assert calculate_rations(45, 0) == 0
    assert calculate_rations(45, -10) == 0


@pytest.mark.parametrize(
    ("rations", "ratio", "expected"),
    [
        (1.2, 1.0, 1.0),
        (1.25, 1.0, 1.5),
        (1.3, 1.0, 1.5),
        (1.74, 1.0, 1.5),
        (1.75, 1.0, 2.0),
        (3.0, 1.5, 4.5),
        (0.2, 1.0, 0.0),
    ],
)
def test_calculate_insulin_rounds_to_half_units(
    rations: float, ratio: float, expected: float
) -> None:
    assert calculate_insulin(rations, ratio) == expected


def test_calculate_insulin_is_zero_for_non_positive_input() -> None:
    assert calculate_insulin(0, 1.0) == 0
    assert calculate_insulin(2, 0) == 0
    assert calculate_insulin(-2, 1.0) == 0


def test_calculate_all_chains_steps() -> None:
    breakdown = calculate_all(
        carbs_per_100g=50, grams_consumed=120, grams_per_ration=10, insulin_ratio=0.8
    )

    assert breakdown.carbs == 60
    assert breakdown.rations == 6
    assert breakdown.insulin == 5.0
