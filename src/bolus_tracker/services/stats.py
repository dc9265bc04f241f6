"""Summary statistics over saved meals."""

from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from uuid import UUID

from bolus_tracker.clock import ONE_DAY, local_day, start_of_day
from bolus_tracker.domain.models import Food, Meal, MealItem
from bolus_tracker.domain.stats import StatsPeriod, StatsSummary, TopFood

IN_RANGE_LOW_MGDL = 80
IN_RANGE_HIGH_MGDL = 180
TOP_FOODS_LIMIT = 5


@dataclass
class StatsAggregator:
    """Derives read-only statistics in the user's timezone."""

    tz: tzinfo

    def meals_in_period(
        self, meals: list[Meal], period: StatsPeriod, now: datetime
    ) -> list[Meal]:
        """Return meals inside the period ending at the end of today."""
        days = period.days
        if days is None:
            return list(meals)
        today_start = start_of_day(now, self.tz)
        start = today_start - (days - 1) * ONE_DAY
        end = today_start + ONE_DAY - timedelta(seconds=1)
        return [meal for meal in meals if start <= meal.date <= end]

    def summarize(
        self, meals: list[Meal], meal_items: list[MealItem], foods: list[Food]
    ) -> StatsSummary:
        """Compute totals, averages, glucose outcomes and top foods."""
        total_meals = len(meals)
        days_with_meals = max(len({local_day(meal.date, self.tz) for meal in meals}), 1)

        total_carbs = sum(meal.total_carbs for meal in meals)
        total_rations = sum(meal.rations for meal in meals)
        total_insulin = sum(meal.insulin_units for meal in meals)

        before = [
            float(meal.glucose_before_mgdl)
            for meal in meals
            if meal.glucose_before_mgdl is not None
        ]
        after = [
            float(meal.glucose_after_2h_mgdl)
            for meal in meals
            if meal.glucose_after_2h_mgdl is not None
        ]
        deltas = [
            float(meal.glucose_after_2h_mgdl - meal.glucose_before_mgdl)
            for meal in meals
            if meal.glucose_before_mgdl is not None
            and meal.glucose_after_2h_mgdl is not None
        ]
        in_range = [
            value for value in after if IN_RANGE_LOW_MGDL <= value <= IN_RANGE_HIGH_MGDL
        ]

        return StatsSummary(
            total_meals=total_meals,
            days_with_meals=days_with_meals,
            total_carbs=total_carbs,
            total_rations=total_rations,
            total_insulin=total_insulin,
            meals_per_day=total_meals / days_with_meals if total_meals else 0.0,
            carbs_per_meal=_per(total_carbs, total_meals),
            rations_per_meal=_per(total_rations, total_meals),
            insulin_per_meal=_per(total_insulin, total_meals),
            effective_units_per_ration=(
                total_insulin / total_rations if total_rations > 0 else None
            ),
            effective_units_per_gram=(
                total_insulin / total_carbs if total_carbs > 0 else None
            ),
            avg_glucose_before=_mean(before),
            avg_glucose_after_2h=_mean(after),
            avg_delta_2h=_mean(deltas),
            in_range_2h_pct=len(in_range) / len(after) * 100 if after else None,
            top_foods=_top_foods(meals, meal_items, foods),
        )


def _per(total: float, count: int) -> float:
    return total / count if count else 0.0


def _mean(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


def _top_foods(
    meals: list[Meal], meal_items: list[MealItem], foods: list[Food]
) -> list[TopFood]:
    foods_by_id = {food.id: food for food in foods}
    meal_ids = {meal.id for meal in meals}
    uses: dict[UUID, int] = {}
    carbs: dict[UUID, float] = {}
    for item in meal_items:
        if item.meal_id not in meal_ids or item.food_id not in foods_by_id:
            continue
        uses[item.food_id] = uses.get(item.food_id, 0) + 1
        carbs[item.food_id] = carbs.get(item.food_id, 0.0) + item.carbs_calculated

    ranked = sorted(
        uses,
        key=lambda food_id: (uses[food_id], carbs[food_id]),
        reverse=True,
    )
    return [
        TopFood(
            name=foods_by_id[food_id].name,
            uses=uses[food_id],
            carbs=carbs[food_id],
        )
        for food_id in ranked[:TOP_FOODS_LIMIT]
    ]
