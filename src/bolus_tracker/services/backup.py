"""Backup documents, CSV export and automatic snapshots."""

import csv
import io
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo
from pathlib import Path
from uuid import UUID

from bolus_tracker.adapters.document_codec import decode_document, encode_document
from bolus_tracker.adapters.json_document_repository import write_atomic
from bolus_tracker.clock import format_datetime, utc_now
from bolus_tracker.domain.errors import IOFailureError
from bolus_tracker.domain.models import Food, Meal, MealItem, StoreDocument

SNAPSHOT_PREFIX = "auto_backup_"
CSV_HEADER = [
    "meal_id",
    "date",
    "food",
    "grams",
    "item_carbs",
    "total_carbs",
    "total_rations",
    "total_insulin",
    "ratio_u_per_g",
    "glucose_before",
    "glucose_after_2h",
    "dose_status",
    "dose_confirmed_at",
    "notes",
]
UNKNOWN_FOOD = "Unknown"
_BOM = "\ufeff"

_logger = logging.getLogger(__name__)


@dataclass
class BackupManager:
    """Encodes store documents and manages rotating snapshot files."""

    backup_dir: Path
    tz: tzinfo
    keep: int = 7
    min_age: timedelta = timedelta(hours=20)
    clock: Callable[[], datetime] = utc_now

    def encode(self, document: StoreDocument) -> bytes:
        """Serialize the full store."""
        return encode_document(document)

    def decode(self, payload: bytes) -> StoreDocument:
        """Parse a backup; raises InvalidDataError without side effects."""
        return decode_document(payload)

    def export_csv(self, document: StoreDocument) -> bytes:
        """Return one semicolon-separated row per meal item, BOM-prefixed."""
        buffer = io.StringIO()
        writer = csv.writer(buffer, delimiter=";", lineterminator="\r\n")
        writer.writerow(CSV_HEADER)

        foods_by_id = {food.id: food for food in document.foods}
        items_by_meal: dict[UUID, list[MealItem]] = {}
        for item in document.meal_items:
            items_by_meal.setdefault(item.meal_id, []).append(item)

        meals = sorted(document.meals, key=lambda meal: meal.date, reverse=True)
        for meal in meals:
            items = items_by_meal.get(meal.id, [])
            if not items:
                writer.writerow(self._csv_row(meal, None, None))
                continue
            for item in items:
                food = foods_by_id.get(item.food_id)
                writer.writerow(self._csv_row(meal, item, food))
        return (_BOM + buffer.getvalue()).encode("utf-8")

    def create_auto_backup_if_needed(self, document: StoreDocument) -> Path | None:
        """Write a snapshot unless the newest one is younger than ``min_age``."""
        now = self.clock()
        latest = self.latest_backup_path()
        if latest is not None:
            modified = _modified_at(latest)
            if modified is not None and now - modified < self.min_age:
                return None

        path = self.backup_dir / f"{SNAPSHOT_PREFIX}{now:%Y%m%d_%H%M%S}.json"
        try:
            write_atomic(path, self.encode(document))
            stamp = now.timestamp()
            os.utime(path, (stamp, stamp))
        except (IOFailureError, OSError) as exc:
            _logger.warning("Automatic backup failed: %s", exc)
            return None
        _logger.info("Automatic backup written to %s", path)
        self._prune()
        return path

    def latest_backup_path(self) -> Path | None:
        """Return the most recently modified snapshot file."""
        snapshots = self._snapshots_newest_first()
        return snapshots[0] if snapshots else None

    def latest_backup_at(self) -> datetime | None:
        """Return the modification time of the newest snapshot."""
        latest = self.latest_backup_path()
        return _modified_at(latest) if latest is not None else None

    def read_latest_backup(self) -> StoreDocument | None:
        """Decode the newest snapshot, or return None when there is none."""
        latest = self.latest_backup_path()
        if latest is None:
            return None
        try:
            payload = latest.read_bytes()
        except OSError as exc:
            raise IOFailureError(f"Could not read backup {latest.name}: {exc}") from exc
        return self.decode(payload)

    def _prune(self) -> None:
        for stale in self._snapshots_newest_first()[self.keep :]:
            try:
                stale.unlink()
            except OSError as exc:
                _logger.warning("Could not delete old backup %s: %s", stale, exc)
                continue
            _logger.info("Deleted old backup %s", stale.name)

    def _snapshots_newest_first(self) -> list[Path]:
        if not self.backup_dir.is_dir():
            return []
        dated: list[tuple[datetime, Path]] = []
        for path in self.backup_dir.iterdir():
            if not path.name.startswith(SNAPSHOT_PREFIX) or not path.is_file():
                continue
            modified = _modified_at(path)
            if modified is not None:
                dated.append((modified, path))
        dated.sort(key=lambda pair: (pair[0], pair[1].name), reverse=True)
        return [path for _, path in dated]

    def _csv_row(
        self, meal: Meal, item: MealItem | None, food: Food | None
    ) -> list[str]:
        if meal.ratio_insulin_per_gram is not None:
            ratio = meal.ratio_insulin_per_gram
        elif meal.total_carbs > 0:
            ratio = meal.insulin_units / meal.total_carbs
        else:
            ratio = 0.0
        food_name = ""
        grams = ""
        item_carbs = ""
        if item is not None:
            food_name = food.name if food is not None else UNKNOWN_FOOD
            grams = _format_number(item.grams_consumed)
            item_carbs = _format_number(item.carbs_calculated)
        return [
            str(meal.id),
            format_datetime(meal.date, self.tz),
            food_name,
            grams,
            item_carbs,
            _format_number(meal.total_carbs),
            _format_number(meal.rations),
            _format_number(meal.insulin_units),
            _format_number(ratio),
            _optional_int(meal.glucose_before_mgdl),
            _optional_int(meal.glucose_after_2h_mgdl),
            meal.dose_status.value,
            (
                format_datetime(meal.dose_confirmed_at, self.tz)
                if meal.dose_confirmed_at is not None
                else ""
            ),
            meal.notes or "",
        ]


def _format_number(value: float) -> str:
    return f"{value:.2f}".replace(".", ",")


def _optional_int(value: int | None) -> str:
    return "" if value is None else str(value)


def _modified_at(path: Path) -> datetime | None:
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
    except OSError:
        return None

