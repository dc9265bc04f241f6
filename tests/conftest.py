"""Shared test fixtures."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path
from uuid import UUID

import pytest

from bolus_tracker.adapters.glucose_feed_client import GlucoseFeedClient
from bolus_tracker.config import Settings
from bolus_tracker.containers import AppContainer
from bolus_tracker.domain.errors import GlucoseFeedError, IOFailureError
from bolus_tracker.domain.glucose import GlucoseEntry
from bolus_tracker.domain.models import Food, Profile
from bolus_tracker.services.backup import BackupManager
from bolus_tracker.services.glucose_sync import GlucoseSyncService
from bolus_tracker.services.stats import StatsAggregator
from bolus_tracker.services.store import (
    DataStore,
    DocumentRepository,
    ReminderScheduler,
)

LOCAL_TZ = timezone(timedelta(hours=2), "UTC+2")
# 12:00 local time
NOW = datetime(2024, 3, 10, 10, 0, tzinfo=UTC)


@dataclass
class InMemoryDocumentRepository(DocumentRepository):
    """In-memory document repository for tests."""

    data: bytes | None = None
    saves: int = 0
    fail_on_save: bool = False

    def load(self) -> bytes | None:
        return self.data

    def save(self, data: bytes) -> None:
        if self.fail_on_save:
            raise IOFailureError("disk full")
        self.data = data
        self.saves += 1


@dataclass
class FakeGlucoseFeedClient(GlucoseFeedClient):
    """Fake glucose feed returning a fixed entry or failing on demand."""

    entry: GlucoseEntry | None = field(
        default_factory=lambda: GlucoseEntry(
            sgv=120, date=1710064800000.0, direction="Flat"
        )
    )
    error: str | None = None
    calls: list[tuple[str, str | None]] = field(default_factory=list)

    async def latest_entry(
        self, base_url: str, token: str | None
    ) -> GlucoseEntry | None:
        self.calls.append((base_url, token))
        if self.error is not None:
            raise GlucoseFeedError(self.error)
        return self.entry


@dataclass
class RecordingReminderScheduler(ReminderScheduler):
    """Reminder scheduler that records requests."""

    calls: list[tuple[UUID, datetime]] = field(default_factory=list)

    def schedule_2h_reminder(self, meal_id: UUID, meal_at: datetime) -> None:
        self.calls.append((meal_id, meal_at))


@dataclass
class FixedClock:
    """Clock that only moves when told to."""

    now: datetime = NOW

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


def make_profile(**overrides: object) -> Profile:
    values: dict[str, object] = {
        "name": "Test",
        "grams_per_ration": 10.0,
        "insulin_ratio": 1.0,
        "created_at": NOW - timedelta(days=30),
    }
    values.update(overrides)
    return Profile(**values)  # type: ignore[arg-type]


def make_store(  # noqa: PLR0913
    *,
    repository: InMemoryDocumentRepository | None = None,
    feed: FakeGlucoseFeedClient | None = None,
    reminders: RecordingReminderScheduler | None = None,
    clock: FixedClock | None = None,
    backup_dir: Path | None = None,
    profile: Profile | None = None,
) -> DataStore:
    """Build a store with in-memory collaborators and an optional profile."""
    resolved_clock = clock or FixedClock()
    store = DataStore(
        repository=repository or InMemoryDocumentRepository(),
        glucose_service=GlucoseSyncService(
            client=feed or FakeGlucoseFeedClient(), clock=resolved_clock
        ),
        backup_manager=BackupManager(
            backup_dir=backup_dir or Path("backups-not-used"),
            tz=LOCAL_TZ,
            clock=resolved_clock,
        ),
        reminder_scheduler=reminders or RecordingReminderScheduler(),
        stats_aggregator=StatsAggregator(LOCAL_TZ),
        tz=LOCAL_TZ,
        clock=resolved_clock,
    )
    if profile is not None:
        store.document.profile = profile
    return store


def add_food(store: DataStore, name: str, carbs_per_100g: float) -> Food:
    return store.upsert_food(
        Food(name=name, carbs_per_100g=carbs_per_100g, source="test")
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(data_dir=tmp_path / "data")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def container(settings: Settings, clock: FixedClock, tmp_path: Path) -> AppContainer:
    store = make_store(clock=clock, backup_dir=tmp_path / "backups")

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        store=store,
        glucose_service=store.glucose_service,
        catalog_path=tmp_path / "catalog.csv",
        close_resources=close_resources,
    )
