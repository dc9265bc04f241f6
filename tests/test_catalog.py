"""Tests for the seed food catalog."""

from pathlib import Path

from bolus_tracker.domain.models import Food
from bolus_tracker.services.catalog import load_catalog, merge_catalog, parse_catalog

CATALOG = """name,carbs_per_100g,source,note
Apple,11.4,table,raw
"Bread, white","49,5",table,"sliced, toasted"
Broken row,12
,10,table,no name
Mystery,abc,table,
Negative,-3,table,
Rice,28,table,
"""


def test_parse_catalog_skips_header_and_bad_rows() -> None:
    rows = parse_catalog(CATALOG)

    assert [row.name for row in rows] == ["Apple", "Bread, white", "Rice"]
    bread = rows[1]
    assert bread.carbs_per_100g == 49.5
    assert bread.note == "sliced, toasted"
    assert rows[2].note is None


def test_merge_catalog_updates_by_case_insensitive_name() -> None:
    apple = Food(name="apple", carbs_per_100g=10, source="manual", note="old")
    rows = parse_catalog(CATALOG)

    merged = merge_catalog([apple], rows)

    assert [food.name for food in merged] == ["apple", "Bread, white", "Rice"]
    updated = merged[0]
    assert updated.id == apple.id
    assert updated.carbs_per_100g == 11.4
    assert updated.source == "table"
    assert updated.note == "raw"


def test_merge_catalog_is_idempotent() -> None:
    rows = parse_catalog(CATALOG)

    once = merge_catalog([], rows)
    twice = merge_catalog(once, rows)

    assert twice == once


def test_load_catalog_handles_missing_file_and_bom(tmp_path: Path) -> None:
    assert load_catalog(tmp_path / "missing.csv") == []

    path = tmp_path / "catalog.csv"
    path.write_text("\ufeff" + CATALOG, encoding="utf-8")

    assert len(load_catalog(path)) == 3


def test_bundled_catalog_parses() -> None:
    bundled = (
        Path(__file__).resolve().parents[1]
        / "src"
        / "bolus_tracker"
        / "data"
        / "food_catalog.csv"
    )

    rows = load_catalog(bundled)

    assert len(rows) == 50
    assert all(row.carbs_per_100g >= 0 for row in rows)
