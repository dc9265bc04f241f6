"""Pydantic models for API request bodies."""

from uuid import UUID

from pydantic import BaseModel, Field

from bolus_tracker.domain.meals import DraftItem
from bolus_tracker.domain.models import DoseStatus, GlucoseTaskKind


class ProfileIn(BaseModel):
    """Profile form payload."""

    name: str = ""
    grams_per_ration: float = Field(default=10.0, gt=0, allow_inf_nan=False)
    insulin_ratio: float = Field(default=1.0, gt=0, allow_inf_nan=False)
    daily_carbs_goal: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    daily_rations_goal: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    daily_insulin_goal: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    reminder_2h_enabled: bool = False
    nightscout_url: str | None = None
    nightscout_token: str | None = None


class FoodIn(BaseModel):
    """Food form payload."""

    name: str
    carbs_per_100g: float = Field(allow_inf_nan=False)
    source: str = "manual"
    note: str | None = None


class DraftItemIn(BaseModel):
    """Meal line as typed by the user; grams may use a decimal comma."""

    food_id: UUID | None = None
    grams: str = ""

    def to_draft(self) -> DraftItem:
        return DraftItem(food_id=self.food_id, grams_text=self.grams)


class DraftIn(BaseModel):
    """Set of draft lines for a calculation preview."""

    items: list[DraftItemIn] = Field(default_factory=list)

    def to_drafts(self) -> list[DraftItem]:
        return [item.to_draft() for item in self.items]


class MealIn(DraftIn):
    """Meal save payload."""

    notes: str = ""


class TemplateIn(DraftIn):
    """Template save payload."""

    name: str


class TemplateFromMealIn(BaseModel):
    """Name for a template copied from a meal."""

    name: str


class DoseStatusIn(BaseModel):
    """Dose status change payload."""

    status: DoseStatus


class GlucoseCaptureIn(BaseModel):
    """Request to queue a glucose capture for a meal."""

    meal_id: UUID
    kind: GlucoseTaskKind


class GlucoseCaptureFailureIn(BaseModel):
    """Failed capture attempt reported by the retry driver."""

    message: str


class GlucoseCaptureResultIn(BaseModel):
    """Captured glucose value in mg/dL."""

    mgdl: int = Field(gt=0)
