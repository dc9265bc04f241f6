"""In-memory data store with write-through persistence."""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, tzinfo
from pathlib import Path
from typing import Protocol
from uuid import UUID

from bolus_tracker.adapters.document_codec import decode_document, encode_document
from bolus_tracker.clock import ONE_DAY, start_of_day, utc_now
from bolus_tracker.domain.errors import (
    GlucoseFeedError,
    InvalidDataError,
    IOFailureError,
    ProfileMissingError,
)
from bolus_tracker.domain.meals import (
    Calculation,
    DayFilter,
    DoseFilter,
    DraftItem,
    SaveMealResult,
)
from bolus_tracker.domain.models import (
    DoseStatus,
    Food,
    GlucoseTaskKind,
    Meal,
    MealItem,
    PendingGlucoseTask,
    Profile,
    StoreDocument,
    Template,
    TemplateItem,
)
from bolus_tracker.domain.stats import StatsPeriod, StatsSummary
from bolus_tracker.services.backup import BackupManager
from bolus_tracker.services.catalog import CatalogRow, merge_catalog, sort_foods
from bolus_tracker.services.dosing import (
    calculate_carbs,
    calculate_insulin,
    calculate_rations,
)
from bolus_tracker.services.glucose_sync import (
    GlucoseSyncService,
    is_stalled,
    next_delay_minutes,
)
from bolus_tracker.services.stats import StatsAggregator

AFTER_MEAL_DELAY = timedelta(hours=2)
_LAST_SECOND = timedelta(seconds=86399)
_GOAL_SEPARATOR = " · "

_logger = logging.getLogger(__name__)


class DocumentRepository(Protocol):
    """Persistence interface for the serialized store document."""

    def load(self) -> bytes | None:
        """Return the stored document, or None when nothing was saved."""

    def save(self, data: bytes) -> None:
        """Replace the stored document."""


class ReminderScheduler(Protocol):
    """Interface for the local reminder collaborator."""

    def schedule_2h_reminder(self, meal_id: UUID, meal_at: datetime) -> None:
        """Request a reminder two hours after the meal."""


@dataclass
class DataStore:
    """Owns every entity collection and keeps them consistent."""

    repository: DocumentRepository
    glucose_service: GlucoseSyncService
    backup_manager: BackupManager
    reminder_scheduler: ReminderScheduler
    stats_aggregator: StatsAggregator
    tz: tzinfo
    clock: Callable[[], datetime] = utc_now
    document: StoreDocument = field(default_factory=StoreDocument)

    # Lifecycle

    def initialize(self, seed: list[CatalogRow] | None = None) -> None:
        """Load the persisted document and merge the seed catalog."""
        self.load()
        if seed:
            self.seed_foods(seed)

    def load(self) -> None:
        """Read the persisted document, falling back to an empty store."""
        try:
            raw = self.repository.load()
        except IOFailureError as exc:
            _logger.warning("Could not read stored data, starting empty: %s", exc)
            self.document = StoreDocument()
            return
        if raw is None:
            self.document = StoreDocument()
            return
        try:
            document = decode_document(raw)
        except InvalidDataError as exc:
            _logger.warning("Stored data is unreadable, starting empty: %s", exc)
            self.document = StoreDocument()
            return
        self.document = normalize_document(document)

    def seed_foods(self, rows: list[CatalogRow]) -> None:
        """Merge catalog rows into the food list, persisting only on change."""
        merged = merge_catalog(self.document.foods, rows)
        if merged != self.document.foods:
            self.document.foods = merged
            self.persist()

    def persist(self) -> None:
        """Write the document; failures are logged and swallowed."""
        try:
            self.repository.save(encode_document(self.document))
        except IOFailureError as exc:
            _logger.warning("Could not persist data: %s", exc)

    def restart_glucose_polling(self) -> None:
        """Restart the feed loop against the current profile."""
        self.glucose_service.restart_polling(lambda: self.profile)

    # Queries

    @property
    def profile(self) -> Profile | None:
        return self.document.profile

    @property
    def foods(self) -> list[Food]:
        return sort_foods(self.document.foods)

    @property
    def meals(self) -> list[Meal]:
        return _newest_meals_first(self.document.meals)

    @property
    def templates(self) -> list[Template]:
        return _newest_templates_first(self.document.templates)

    @property
    def pending_glucose_tasks(self) -> list[PendingGlucoseTask]:
        return sorted(self.document.pending_glucose, key=lambda task: task.created_at)

    @property
    def pending_max_attempts(self) -> int:
        return max((task.attempts for task in self.document.pending_glucose), default=0)

    def glucose_backoff_minutes(self) -> int:
        """Return the retry delay for the most-attempted pending capture."""
        return next_delay_minutes(self.pending_max_attempts)

    def stalled_glucose_tasks(self) -> list[PendingGlucoseTask]:
        """Return captures that reached the attempt limit."""
        return [
            task for task in self.pending_glucose_tasks if is_stalled(task.attempts)
        ]

    def food_by_id(self, food_id: UUID) -> Food | None:
        return next((food for food in self.document.foods if food.id == food_id), None)

    def meal_by_id(self, meal_id: UUID) -> Meal | None:
        return next((meal for meal in self.document.meals if meal.id == meal_id), None)

    def template_by_id(self, template_id: UUID) -> Template | None:
        return next(
            (tpl for tpl in self.document.templates if tpl.id == template_id), None
        )

    def foods_filtered(self, query: str) -> list[Food]:
        """Return foods whose name contains the query, ignoring case."""
        needle = query.strip().casefold()
        if not needle:
            return self.foods
        return [food for food in self.foods if needle in food.name.casefold()]

    def meal_items(self, meal_id: UUID) -> list[MealItem]:
        return [item for item in self.document.meal_items if item.meal_id == meal_id]

    def meal_items_with_food(self, meal_id: UUID) -> list[tuple[MealItem, Food | None]]:
        """Return a meal's items with their foods, ordered by food name."""
        foods_by_id = self._foods_by_id()
        pairs = [
            (item, foods_by_id.get(item.food_id)) for item in self.meal_items(meal_id)
        ]
        return sorted(
            pairs, key=lambda pair: pair[1].name.casefold() if pair[1] else ""
        )

    def template_items(self, template_id: UUID) -> list[TemplateItem]:
        return [
            item
            for item in self.document.template_items
            if item.template_id == template_id
        ]

    def template_items_with_food(
        self, template_id: UUID
    ) -> list[tuple[TemplateItem, Food | None]]:
        foods_by_id = self._foods_by_id()
        return [
            (item, foods_by_id.get(item.food_id))
            for item in self.template_items(template_id)
        ]

    def filtered_meals(
        self,
        query: str = "",
        day_filter: DayFilter = DayFilter.ALL,
        dose_filter: DoseFilter = DoseFilter.ALL,
    ) -> list[Meal]:
        """Return meals matching the text, day window and dose filters."""
        needle = query.strip().casefold()
        window = day_window(day_filter, self.clock(), self.tz)
        status = dose_filter.status
        names_by_food = {food.id: food.name.casefold() for food in self.document.foods}
        names_by_meal: dict[UUID, list[str]] = {}
        for item in self.document.meal_items:
            name = names_by_food.get(item.food_id)
            if name is not None:
                names_by_meal.setdefault(item.meal_id, []).append(name)

        matches: list[Meal] = []
        for meal in self.meals:
            if status is not None and meal.dose_status is not status:
                continue
            if window is not None and not window[0] <= meal.date <= window[1]:
                continue
            if needle and not (
                needle in (meal.notes or "").casefold()
                or any(needle in name for name in names_by_meal.get(meal.id, []))
            ):
                continue
            matches.append(meal)
        return matches

    def stats(self, period: StatsPeriod = StatsPeriod.ALL) -> StatsSummary:
        """Summarize the meals inside the given period."""
        meals = self.stats_aggregator.meals_in_period(self.meals, period, self.clock())
        return self.stats_aggregator.summarize(
            meals, self.document.meal_items, self.document.foods
        )

    # Profile and foods

    def save_profile(self, profile: Profile) -> None:
        """Replace the profile and restart polling for its feed."""
        for value in (profile.grams_per_ration, profile.insulin_ratio):
            if not math.isfinite(value) or value <= 0:
                raise InvalidDataError(
                    "Grams per ration and insulin ratio must be greater than zero"
                )
        goals = (
            profile.daily_carbs_goal,
            profile.daily_rations_goal,
            profile.daily_insulin_goal,
        )
        for goal in goals:
            if goal is not None and (not math.isfinite(goal) or goal < 0):
                raise InvalidDataError("Daily goals must be zero or more")
        self.document.profile = profile
        self.persist()
        self.restart_glucose_polling()

    def upsert_food(self, food: Food) -> Food:
        """Insert or replace a food by id."""
        name = food.name.strip()
        if not name:
            raise InvalidDataError("Enter a name for the food")
        if not math.isfinite(food.carbs_per_100g) or food.carbs_per_100g < 0:
            raise InvalidDataError("Carbs per 100 g must be zero or more")
        food = replace(food, name=name)
        foods = [existing for existing in self.document.foods if existing.id != food.id]
        foods.append(food)
        self.document.foods = sort_foods(foods)
        self.persist()
        return food

    def delete_food(self, food_id: UUID) -> bool:
        """Delete a food and every meal or template item that uses it."""
        if self.food_by_id(food_id) is None:
            return False
        self.document.foods = [f for f in self.document.foods if f.id != food_id]
        self.document = normalize_document(self.document)
        self.persist()
        return True

    # Meals

    def calculation(self, draft_items: list[DraftItem]) -> Calculation:
        """Compute carbs, rations and insulin for the current drafts."""
        profile = self.profile
        if profile is None:
            return Calculation()
        total_carbs = sum(
            calculate_carbs(food.carbs_per_100g, grams)
            for food, grams in self._valid_items(draft_items)
        )
        rations = calculate_rations(total_carbs, profile.grams_per_ration)
        insulin = calculate_insulin(rations, profile.insulin_ratio)
        return Calculation(
            total_carbs=total_carbs, rations=rations, insulin_units=insulin
        )

    def can_save_meal(self, draft_items: list[DraftItem]) -> bool:
        return self.profile is not None and bool(self._valid_items(draft_items))

    async def save_meal(
        self, draft_items: list[DraftItem], notes: str = ""
    ) -> SaveMealResult:
        """Save a meal, capturing the pre-meal glucose when a feed is set up."""
        profile = self.profile
        if profile is None:
            raise ProfileMissingError()
        valid_items = self._valid_items(draft_items)
        if not valid_items:
            raise InvalidDataError("Add at least one valid food")
        calculation = self.calculation(draft_items)
        if not calculation.is_finite():
            raise InvalidDataError("Invalid calculation, check the values")

        meal_at = self.clock()
        glucose_before: int | None = None
        feed_error: str | None = None
        feed_url = profile.feed_url
        if feed_url is not None:
            try:
                entry = await self.glucose_service.fetch_latest(
                    feed_url, profile.nightscout_token
                )
            except GlucoseFeedError as exc:
                feed_error = str(exc)
                _logger.warning("Pre-meal glucose unavailable, queued: %s", exc)
            else:
                glucose_before = entry.sgv

        clean_notes = notes.strip()
        meal = Meal(
            total_carbs=calculation.total_carbs,
            rations=calculation.rations,
            insulin_units=calculation.insulin_units,
            ratio_insulin_per_gram=(
                profile.insulin_ratio / profile.grams_per_ration
                if profile.grams_per_ration > 0
                else None
            ),
            date=meal_at,
            notes=clean_notes or None,
            glucose_before_mgdl=glucose_before,
        )
        items = [
            MealItem(
                meal_id=meal.id,
                food_id=food.id,
                grams_consumed=grams,
                carbs_calculated=calculate_carbs(food.carbs_per_100g, grams),
            )
            for food, grams in valid_items
        ]
        alert = self._daily_goal_alert(profile, calculation, meal_at)

        self.document.meals = _newest_meals_first([*self.document.meals, meal])
        self.document.meal_items.extend(items)
        if feed_url is not None and glucose_before is None:
            self.document.pending_glucose.append(
                PendingGlucoseTask(
                    meal_id=meal.id,
                    kind=GlucoseTaskKind.BEFORE,
                    target_date=meal_at,
                    created_at=meal_at,
                    last_error=feed_error,
                )
            )
        if profile.reminder_2h_enabled:
            self.reminder_scheduler.schedule_2h_reminder(meal.id, meal_at)

        self.persist()
        return SaveMealResult(meal_id=meal.id, alert_message=alert)

    def delete_meal(self, meal_id: UUID) -> bool:
        """Delete a meal with its items and pending glucose captures."""
        if self.meal_by_id(meal_id) is None:
            return False
        self.document.meals = [m for m in self.document.meals if m.id != meal_id]
        self.document = normalize_document(self.document)
        self.persist()
        return True

    def update_dose_status(self, meal_id: UUID, status: DoseStatus) -> Meal | None:
        """Set the dose status; only an applied dose keeps a confirmation time."""
        for index, meal in enumerate(self.document.meals):
            if meal.id != meal_id:
                continue
            updated = replace(
                meal,
                dose_status=status,
                dose_confirmed_at=(
                    self.clock() if status is DoseStatus.APPLIED else None
                ),
            )
            self.document.meals[index] = updated
            self.persist()
            return updated
        return None

    # Templates

    def save_template(self, name: str, draft_items: list[DraftItem]) -> Template:
        """Create a template from the valid draft items."""
        clean_name = name.strip()
        if not clean_name:
            raise InvalidDataError("Enter a name for the template")
        valid_items = self._valid_items(draft_items)
        if not valid_items:
            raise InvalidDataError("There are no valid foods to save")
        return self._add_template(
            clean_name, [(food.id, grams) for food, grams in valid_items]
        )

    def create_template_from_meal(self, meal_id: UUID, name: str) -> Template:
        """Copy a meal's food portions into a new template."""
        clean_name = name.strip()
        if not clean_name:
            raise InvalidDataError("Enter a name for the template")
        items = self.meal_items(meal_id)
        if not items:
            raise InvalidDataError("The meal has no foods")
        return self._add_template(
            clean_name, [(item.food_id, item.grams_consumed) for item in items]
        )

    def delete_template(self, template_id: UUID) -> bool:
        if self.template_by_id(template_id) is None:
            return False
        self.document.templates = [
            tpl for tpl in self.document.templates if tpl.id != template_id
        ]
        self.document = normalize_document(self.document)
        self.persist()
        return True

    def apply_template(self, template_id: UUID) -> list[DraftItem]:
        """Return draft items prefilled from a template."""
        items = self.template_items(template_id)
        if not items:
            return [DraftItem()]
        return [
            DraftItem(food_id=item.food_id, grams_text=format_grams(item.grams))
            for item in items
        ]

    # Pending glucose captures

    def enqueue_glucose_capture(
        self, meal_id: UUID, kind: GlucoseTaskKind
    ) -> PendingGlucoseTask:
        """Queue a glucose capture for a meal."""
        meal = self.meal_by_id(meal_id)
        if meal is None:
            raise InvalidDataError("Meal not found")
        target = meal.date
        if kind is GlucoseTaskKind.AFTER_2H:
            target = meal.date + AFTER_MEAL_DELAY
        task = PendingGlucoseTask(
            meal_id=meal_id, kind=kind, target_date=target, created_at=self.clock()
        )
        self.document.pending_glucose.append(task)
        self.persist()
        return task

    def record_glucose_capture_failure(
        self, task_id: UUID, message: str
    ) -> PendingGlucoseTask | None:
        """Count a failed capture attempt."""
        for index, task in enumerate(self.document.pending_glucose):
            if task.id != task_id:
                continue
            updated = replace(task, attempts=task.attempts + 1, last_error=message)
            self.document.pending_glucose[index] = updated
            self.persist()
            return updated
        return None

    def complete_glucose_capture(self, task_id: UUID, mgdl: int) -> Meal | None:
        """Store a captured reading on its meal and drop the task."""
        task = next(
            (task for task in self.document.pending_glucose if task.id == task_id),
            None,
        )
        if task is None:
            return None
        meal = self.meal_by_id(task.meal_id)
        if meal is None:
            return None
        if task.kind is GlucoseTaskKind.BEFORE:
            updated = replace(meal, glucose_before_mgdl=mgdl)
        else:
            updated = replace(meal, glucose_after_2h_mgdl=mgdl)
        self.document.meals = [
            updated if existing.id == meal.id else existing
            for existing in self.document.meals
        ]
        self.document.pending_glucose = [
            pending
            for pending in self.document.pending_glucose
            if pending.id != task_id
        ]
        self.persist()
        return updated

    # Backups

    def export_backup(self) -> bytes:
        return self.backup_manager.encode(self.document)

    def import_backup(self, payload: bytes) -> None:
        """Replace the whole store with a decoded backup."""
        self._replace_document(self.backup_manager.decode(payload))

    def export_csv(self) -> bytes:
        return self.backup_manager.export_csv(self.document)

    def create_auto_backup_if_needed(self) -> Path | None:
        return self.backup_manager.create_auto_backup_if_needed(self.document)

    def latest_auto_backup_at(self) -> datetime | None:
        return self.backup_manager.latest_backup_at()

    def restore_latest_auto_backup(self) -> bool:
        """Replace the store with the newest snapshot, if there is one."""
        document = self.backup_manager.read_latest_backup()
        if document is None:
            return False
        self._replace_document(document)
        return True

    # Internals

    def _replace_document(self, document: StoreDocument) -> None:
        self.document = normalize_document(document)
        self.persist()
        self.restart_glucose_polling()

    def _foods_by_id(self) -> dict[UUID, Food]:
        return {food.id: food for food in self.document.foods}

    def _valid_items(self, draft_items: list[DraftItem]) -> list[tuple[Food, float]]:
        foods_by_id = self._foods_by_id()
        valid: list[tuple[Food, float]] = []
        for draft in draft_items:
            if draft.food_id is None:
                continue
            food = foods_by_id.get(draft.food_id)
            grams = draft.grams_value
            if food is None or grams <= 0:
                continue
            valid.append((food, grams))
        return valid

    def _add_template(
        self, name: str, portions: list[tuple[UUID, float]]
    ) -> Template:
        template = Template(name=name, created_at=self.clock())
        self.document.templates = _newest_templates_first(
            [*self.document.templates, template]
        )
        self.document.template_items.extend(
            TemplateItem(template_id=template.id, food_id=food_id, grams=grams)
            for food_id, grams in portions
        )
        self.persist()
        return template

    def _daily_goal_alert(
        self, profile: Profile, calculation: Calculation, now: datetime
    ) -> str | None:
        start = start_of_day(now, self.tz)
        end = start + _LAST_SECOND
        today = [meal for meal in self.document.meals if start <= meal.date <= end]
        carbs = sum(meal.total_carbs for meal in today) + calculation.total_carbs
        rations = sum(meal.rations for meal in today) + calculation.rations
        insulin = sum(meal.insulin_units for meal in today) + calculation.insulin_units

        messages: list[str] = []
        goal = profile.daily_carbs_goal
        if goal is not None and goal > 0 and carbs > goal:
            messages.append(f"Daily carbs exceeded ({carbs:.1f} g / {goal:.1f} g)")
        goal = profile.daily_rations_goal
        if goal is not None and goal > 0 and rations > goal:
            messages.append(f"Daily rations exceeded ({rations:.1f} / {goal:.1f})")
        goal = profile.daily_insulin_goal
        if goal is not None and goal > 0 and insulin > goal:
            messages.append(f"Daily insulin exceeded ({insulin:.1f} U / {goal:.1f} U)")
        return _GOAL_SEPARATOR.join(messages) or None


def normalize_document(document: StoreDocument) -> StoreDocument:
    """Sort ordered collections and drop rows whose references are gone."""
    food_ids = {food.id for food in document.foods}
    meal_ids = {meal.id for meal in document.meals}
    template_ids = {tpl.id for tpl in document.templates}
    return StoreDocument(
        schema_version=document.schema_version,
        profile=document.profile,
        foods=sort_foods(document.foods),
        meals=_newest_meals_first(document.meals),
        meal_items=[
            item
            for item in document.meal_items
            if item.meal_id in meal_ids and item.food_id in food_ids
        ],
        templates=_newest_templates_first(document.templates),
        template_items=[
            item
            for item in document.template_items
            if item.template_id in template_ids and item.food_id in food_ids
        ],
        pending_glucose=[
            task for task in document.pending_glucose if task.meal_id in meal_ids
        ],
    )


def day_window(
    day_filter: DayFilter, now: datetime, tz: tzinfo
) -> tuple[datetime, datetime] | None:
    """Return the inclusive time range selected by a history day filter."""
    if day_filter is DayFilter.ALL:
        return None
    today_start = start_of_day(now, tz)
    if day_filter is DayFilter.YESTERDAY:
        start = today_start - ONE_DAY
        return start, start + _LAST_SECOND
    days_back = {
        DayFilter.TODAY: 0,
        DayFilter.LAST_7_DAYS: 6,
        DayFilter.LAST_30_DAYS: 29,
    }[day_filter]
    return today_start - days_back * ONE_DAY, today_start + _LAST_SECOND


def format_grams(value: float) -> str:
    """Format grams without decimals when whole, else with one decimal."""
    if value == int(value):
        return f"{value:.0f}"
    return f"{value:.1f}"


def _newest_meals_first(meals: list[Meal]) -> list[Meal]:
    return sorted(meals, key=lambda meal: meal.date, reverse=True)


def _newest_templates_first(templates: list[Template]) -> list[Template]:
    return sorted(templates, key=lambda tpl: tpl.created_at, reverse=True)
