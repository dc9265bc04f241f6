"""Domain models for the bolus tracker."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

SCHEMA_VERSION = 1


class DoseStatus(str, Enum):
    """Whether the computed insulin dose was applied."""

    PENDING = "pending"
    APPLIED = "applied"
    SKIPPED = "skipped"


class GlucoseTaskKind(str, Enum):
    """Which glucose reading a pending task should capture."""

    BEFORE = "ANTES"
    AFTER_2H = "DESPUES_2H"


@dataclass(frozen=True)
class Profile:
    """Dosing profile of the single local user."""

    name: str
    grams_per_ration: float
    insulin_ratio: float
    created_at: datetime
    daily_carbs_goal: float | None = None
    daily_rations_goal: float | None = None
    daily_insulin_goal: float | None = None
    reminder_2h_enabled: bool = False
    nightscout_url: str | None = None
    nightscout_token: str | None = None
    id: int = 1

    @property
    def feed_url(self) -> str | None:
        """Return the configured feed URL, or None when blank."""
        if self.nightscout_url is None or not self.nightscout_url.strip():
            return None
        return self.nightscout_url


@dataclass(frozen=True)
class Food:
    """Food with its carbohydrate content per 100 g."""

    name: str
    carbs_per_100g: float
    source: str
    note: str | None = None
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class Meal:
    """A saved meal with its computed dose."""

    total_carbs: float
    rations: float
    insulin_units: float
    date: datetime
    ratio_insulin_per_gram: float | None = None
    notes: str | None = None
    glucose_before_mgdl: int | None = None
    glucose_after_2h_mgdl: int | None = None
    dose_status: DoseStatus = DoseStatus.PENDING
    dose_confirmed_at: datetime | None = None
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class MealItem:
    """Food portion eaten in a meal; carbs are frozen at creation."""

    meal_id: UUID
    food_id: UUID
    grams_consumed: float
    carbs_calculated: float
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class Template:
    """Reusable named list of food portions."""

    name: str
    created_at: datetime
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class TemplateItem:
    """Food portion stored in a template."""

    template_id: UUID
    food_id: UUID
    grams: float
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class PendingGlucoseTask:
    """Queued attempt to capture a glucose reading for a meal."""

    meal_id: UUID
    kind: GlucoseTaskKind
    target_date: datetime
    created_at: datetime
    attempts: int = 0
    last_error: str | None = None
    id: UUID = field(default_factory=uuid4)


@dataclass
class StoreDocument:
    """Every collection owned by the data store."""

    profile: Profile | None = None
    foods: list[Food] = field(default_factory=list)
    meals: list[Meal] = field(default_factory=list)
    meal_items: list[MealItem] = field(default_factory=list)
    templates: list[Template] = field(default_factory=list)
    template_items: list[TemplateItem] = field(default_factory=list)
    pending_glucose: list[PendingGlucoseTask] = field(default_factory=list)
    schema_version: int = SCHEMA_VERSION
