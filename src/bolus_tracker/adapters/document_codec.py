"""JSON codec for the persisted store document."""

import json
from datetime import UTC, datetime, timedelta
from typing import Annotated
from uuid import UUID

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    ValidationError,
)

from bolus_tracker.domain.errors import InvalidDataError
from bolus_tracker.domain.models import (
    SCHEMA_VERSION,
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

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_ONE_MS = timedelta(milliseconds=1)


def _from_millis(value: object) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError("dates must be milliseconds since the epoch")
    try:
        return _EPOCH + timedelta(milliseconds=value)
    except OverflowError as exc:
        raise ValueError("date is out of range") from exc


def _to_millis(value: datetime) -> int:
    return (value - _EPOCH) // _ONE_MS


EpochMillis = Annotated[
    datetime,
    BeforeValidator(_from_millis),
    PlainSerializer(_to_millis, return_type=int),
]


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ProfilePayload(_Payload):
    """Serialized profile."""

    id: int = 1
    name: str
    grams_per_ration: float = Field(alias="gramsPerRation")
    insulin_ratio: float = Field(alias="insulinRatio")
    daily_carbs_goal: float | None = Field(default=None, alias="dailyCarbsGoal")
    daily_rations_goal: float | None = Field(default=None, alias="dailyRationsGoal")
    daily_insulin_goal: float | None = Field(default=None, alias="dailyInsulinGoal")
    reminder_2h_enabled: bool = Field(default=False, alias="reminder2hEnabled")
    nightscout_url: str | None = Field(default=None, alias="nightscoutURL")
    nightscout_token: str | None = Field(default=None, alias="nightscoutToken")
    created_at: EpochMillis = Field(alias="createdAt")


class FoodPayload(_Payload):
    """Serialized food."""

    id: UUID
    name: str
    carbs_per_100g: float = Field(alias="carbsPer100g")
    source: str
    note: str | None = None


class MealPayload(_Payload):
    """Serialized meal."""

    id: UUID
    total_carbs: float = Field(alias="totalCarbs")
    rations: float
    insulin_units: float = Field(alias="insulinUnits")
    ratio_insulin_per_gram: float | None = Field(
        default=None, alias="ratioInsulinPerGram"
    )
    date: EpochMillis
    notes: str | None = None
    glucose_before_mgdl: int | None = Field(default=None, alias="glucoseBeforeMgdl")
    glucose_after_2h_mgdl: int | None = Field(
        default=None, alias="glucoseAfter2hMgdl"
    )
    dose_status: DoseStatus = Field(alias="doseStatus")
    dose_confirmed_at: EpochMillis | None = Field(
        default=None, alias="doseConfirmedAt"
    )


class MealItemPayload(_Payload):
    """Serialized meal item."""

    id: UUID
    meal_id: UUID = Field(alias="mealID")
    food_id: UUID = Field(alias="foodID")
    grams_consumed: float = Field(alias="gramsConsumed")
    carbs_calculated: float = Field(alias="carbsCalculated")


class TemplatePayload(_Payload):
    """Serialized template."""

    id: UUID
    name: str
    created_at: EpochMillis = Field(alias="createdAt")


class TemplateItemPayload(_Payload):
    """Serialized template item."""

    id: UUID
    template_id: UUID = Field(alias="templateID")
    food_id: UUID = Field(alias="foodID")
    grams: float


class PendingGlucosePayload(_Payload):
    """Serialized pending glucose task."""

    id: UUID
    meal_id: UUID = Field(alias="mealID")
    kind: GlucoseTaskKind
    target_date: EpochMillis = Field(alias="targetDate")
    created_at: EpochMillis = Field(alias="createdAt")
    attempts: int = 0
    last_error: str | None = Field(default=None, alias="lastError")


class StoreDocumentPayload(_Payload):
    """Serialized store document."""

    schema_version: int = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    profile: ProfilePayload | None = None
    foods: list[FoodPayload]
    meals: list[MealPayload]
    meal_items: list[MealItemPayload] = Field(alias="mealItems")
    templates: list[TemplatePayload]
    template_items: list[TemplateItemPayload] = Field(alias="templateItems")
    pending_glucose: list[PendingGlucosePayload] = Field(alias="pendingGlucose")


def encode_document(document: StoreDocument) -> bytes:
    """Serialize a document as pretty, key-sorted JSON."""
    payload = _to_payload(document).model_dump(
        mode="json", by_alias=True, exclude_none=True
    )
    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False).encode(
        "utf-8"
    )


def decode_document(data: bytes) -> StoreDocument:
    """Parse a serialized document, raising InvalidDataError on any problem."""
    try:
        payload = StoreDocumentPayload.model_validate_json(data)
    except ValidationError as exc:
        raise InvalidDataError(
            f"Backup file is not valid: {exc.error_count()} problem(s) found"
        ) from exc
    return _from_payload(payload)


def _to_payload(document: StoreDocument) -> StoreDocumentPayload:
    profile = document.profile
    return StoreDocumentPayload(
        schema_version=document.schema_version,
        profile=(
            ProfilePayload(
                id=profile.id,
                name=profile.name,
                grams_per_ration=profile.grams_per_ration,
                insulin_ratio=profile.insulin_ratio,
                daily_carbs_goal=profile.daily_carbs_goal,
                daily_rations_goal=profile.daily_rations_goal,
                daily_insulin_goal=profile.daily_insulin_goal,
                reminder_2h_enabled=profile.reminder_2h_enabled,
                nightscout_url=profile.nightscout_url,
                nightscout_token=profile.nightscout_token,
                created_at=profile.created_at,
            )
            if profile is not None
            else None
        ),
        foods=[
            FoodPayload(
                id=food.id,
                name=food.name,
                carbs_per_100g=food.carbs_per_100g,
                source=food.source,
                note=food.note,
            )
            for food in document.foods
        ],
        meals=[
            MealPayload(
                id=meal.id,
                total_carbs=meal.total_carbs,
                rations=meal.rations,
                insulin_units=meal.insulin_units,
                ratio_insulin_per_gram=meal.ratio_insulin_per_gram,
                date=meal.date,
                notes=meal.notes,
                glucose_before_mgdl=meal.glucose_before_mgdl,
                glucose_after_2h_mgdl=meal.glucose_after_2h_mgdl,
                dose_status=meal.dose_status,
                dose_confirmed_at=meal.dose_confirmed_at,
            )
            for meal in document.meals
        ],
        meal_items=[
            MealItemPayload(
                id=item.id,
                meal_id=item.meal_id,
                food_id=item.food_id,
                grams_consumed=item.grams_consumed,
                carbs_calculated=item.carbs_calculated,
            )
            for item in document.meal_items
        ],
        templates=[
            TemplatePayload(id=tpl.id, name=tpl.name, created_at=tpl.created_at)
            for tpl in document.templates
        ],
        template_items=[
            TemplateItemPayload(
                id=item.id,
                template_id=item.template_id,
                food_id=item.food_id,
                grams=item.grams,
            )
            for item in document.template_items
        ],
        pending_glucose=[
            PendingGlucosePayload(
                id=task.id,
                meal_id=task.meal_id,
                kind=task.kind,
                target_date=task.target_date,
                created_at=task.created_at,
                attempts=task.attempts,
                last_error=task.last_error,
            )
            for task in document.pending_glucose
        ],
    )


def _from_payload(payload: StoreDocumentPayload) -> StoreDocument:
    profile = payload.profile
    return StoreDocument(
        schema_version=payload.schema_version,
        profile=(
            Profile(
                id=profile.id,
                name=profile.name,
                grams_per_ration=profile.grams_per_ration,
                insulin_ratio=profile.insulin_ratio,
                daily_carbs_goal=profile.daily_carbs_goal,
                daily_rations_goal=profile.daily_rations_goal,
                daily_insulin_goal=profile.daily_insulin_goal,
                reminder_2h_enabled=profile.reminder_2h_enabled,
                nightscout_url=profile.nightscout_url,
                nightscout_token=profile.nightscout_token,
                created_at=profile.created_at,
            )
            if profile is not None
            else None
        ),
        foods=[
            Food(
                id=food.id,
                name=food.name,
                carbs_per_100g=food.carbs_per_100g,
                source=food.source,
                note=food.note,
            )
            for food in payload.foods
        ],
        meals=[
            Meal(
                id=meal.id,
                total_carbs=meal.total_carbs,
                rations=meal.rations,
                insulin_units=meal.insulin_units,
                ratio_insulin_per_gram=meal.ratio_insulin_per_gram,
                date=meal.date,
                notes=meal.notes,
                glucose_before_mgdl=meal.glucose_before_mgdl,
                glucose_after_2h_mgdl=meal.glucose_after_2h_mgdl,
                dose_status=meal.dose_status,
                dose_confirmed_at=meal.dose_confirmed_at,
            )
            for meal in payload.meals
        ],
        meal_items=[
            MealItem(
                id=item.id,
                meal_id=item.meal_id,
                food_id=item.food_id,
                grams_consumed=item.grams_consumed,
                carbs_calculated=item.carbs_calculated,
            )
            for item in payload.meal_items
        ],
        templates=[
            Template(id=tpl.id, name=tpl.name, created_at=tpl.created_at)
            for tpl in payload.templates
        ],
        template_items=[
            TemplateItem(
                id=item.id,
                template_id=item.template_id,
                food_id=item.food_id,
                grams=item.grams,
            )
            for item in payload.template_items
        ],
        pending_glucose=[
            PendingGlucoseTask(
                id=task.id,
                meal_id=task.meal_id,
                kind=task.kind,
                target_date=task.target_date,
                created_at=task.created_at,
                attempts=task.attempts,
                last_error=task.last_error,
            )
            for task in payload.pending_glucose
        ],
    )
