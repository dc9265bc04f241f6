"""Food catalog parsing and merging."""

import csv
import io
import logging
from dataclasses import dataclass, replace
from pathlib import Path

from bolus_tracker.domain.meals import parse_decimal
from bolus_tracker.domain.models import Food

_MIN_COLUMNS = 4

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogRow:
    """Parsed row of the seed catalog."""

    name: str
    carbs_per_100g: float
    source: str
    note: str | None = None


def parse_catalog(text: str) -> list[CatalogRow]:
    """Parse comma-separated catalog text, skipping the header and bad rows."""
    reader = csv.reader(io.StringIO(text, newline=""))
    rows: list[CatalogRow] = []
    for line_number, columns in enumerate(reader, start=1):
        if line_number == 1:
            continue
        row = _parse_row(columns)
        if row is None:
            _logger.debug("Skipping catalog line %s: %r", line_number, columns)
            continue
        rows.append(row)
    return rows


def load_catalog(path: Path) -> list[CatalogRow]:
    """Read and parse a catalog file; a missing file yields no rows."""
    try:
        text = path.read_text(encoding="utf-8-sig")
    except FileNotFoundError:
        _logger.info("Food catalog not found at %s", path)
        return []
    return parse_catalog(text)


def merge_catalog(existing: list[Food], rows: list[CatalogRow]) -> list[Food]:
    """Merge catalog rows into foods using the lower-cased name as key."""
    merged = list(existing)
    index_by_name: dict[str, int] = {}
    for position, food in enumerate(merged):
        index_by_name.setdefault(food.name.lower(), position)

    for row in rows:
        key = row.name.lower()
        position = index_by_name.get(key)
        if position is None:
            index_by_name[key] = len(merged)
            merged.append(
                Food(
                    name=row.name,
                    carbs_per_100g=row.carbs_per_100g,
                    source=row.source,
                    note=row.note,
                )
            )
            continue
        merged[position] = replace(
            merged[position],
            carbs_per_100g=row.carbs_per_100g,
            source=row.source,
            note=row.note,
        )
    return sort_foods(merged)


def sort_foods(foods: list[Food]) -> list[Food]:
    """Return foods ordered case-insensitively by name."""
    return sorted(foods, key=lambda food: food.name.casefold())


def _parse_row(columns: list[str]) -> CatalogRow | None:
    if len(columns) < _MIN_COLUMNS:
        return None
    name = columns[0].strip()
    carbs = parse_decimal(columns[1])
    if not name or carbs is None or carbs < 0:
        return None
    note = columns[3].strip()
    return CatalogRow(
        name=name,
        carbs_per_100g=carbs,
        source=columns[2].strip(),
        note=note or None,
    )
