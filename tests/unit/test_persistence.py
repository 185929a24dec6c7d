from __future__ import annotations

import sqlite3
from dataclasses import replace
from pathlib import Path

import pytest

from conftest import ROW_GROUP_ROWS
from cutoff_portal.db.sqlite_store import CUTOFF_COLUMNS, PersistenceError
from cutoff_portal.excel.extractor import extract_records
from cutoff_portal.models.excel_file import SourceFile
from cutoff_portal.services.persistence import EntityResolver, build_row, import_file_records

SOURCE_NAME = "AIQ_UG_2024_R1.xlsx"
SOURCE_KEY = "AIQ_UG_2024/AIQ_UG_2024_R1.xlsx"


def _source(name: str = SOURCE_NAME, round: str = "R1", year: int = 2024) -> SourceFile:
    return SourceFile(
        path=Path(f"cutoffs/AIQ_UG_{year}") / name,
        name=name,
        category="AIQ_UG",
        year=year,
        round=round,
        relative_path=f"AIQ_UG_{year}/{name}",
    )


def _records(round: str = "R1", source_file: str = SOURCE_NAME, year: int = 2024):
    return extract_records(
        ROW_GROUP_ROWS, source_file=source_file, category="AIQ_UG", year=year, round=round
    ).records


def _rows(cur) -> list[tuple]:
    cur.execute(
        "SELECT college_id, course_id, counselling_type, counselling_year, round_number, round_name,"
        " quota_type, category, cutoff_rank, source_filename FROM cutoff_ranks"
        " ORDER BY source_filename, college_id, cutoff_rank"
    )
    return cur.fetchall()


class FailingCursor:
    """Delegates to a real cursor but fails every executemany."""

    def __init__(self, cursor: sqlite3.Cursor) -> None:
        self._cursor = cursor

    def execute(self, *args):
        return self._cursor.execute(*args)

    def executemany(self, sql, rows):
        raise sqlite3.OperationalError("disk I/O error")

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount


def test_college_lookup_both_directions(catalog_db):
    resolver = EntityResolver(catalog_db.cursor())
    # sheet name is longer than the catalog name
    assert resolver.college_id("Kasturba Medical College, Manipal") == 1
    assert resolver.college_id("xyz medical") == 2
    assert resolver.college_id("Nowhere Institute") is None
    assert resolver.college_id("   ") is None


def test_lookup_misses_are_memoized(catalog_db):
    cur = catalog_db.cursor()
    resolver = EntityResolver(cur)
    assert resolver.college_id("Nowhere Institute") is None
    cur.execute("INSERT INTO colleges (id, name) VALUES (10, 'Nowhere Institute')")
    assert resolver.college_id("Nowhere Institute") is None
    assert EntityResolver(cur).college_id("Nowhere Institute") == 10


def test_course_lookup_is_scoped_to_college(catalog_db):
    resolver = EntityResolver(catalog_db.cursor())
    assert resolver.course_id(2, "MBBS") == 2
    assert resolver.course_id(2, "M.D. (GENERAL MEDICINE)") == 3
    assert resolver.course_id(1, "BDS") is None


def test_build_row_columns():
    record = _records()[0]
    row = dict(zip(CUTOFF_COLUMNS, build_row(record, 2, 2, SOURCE_NAME)))
    assert row["counselling_type"] == "AIQ"
    assert row["round_number"] == 1
    assert row["round_name"] == "Round 1"
    assert row["quota_type"] == "STATE"
    assert row["category"] == "OBC"
    assert row["cutoff_rank"] == 101
    assert row["source_filename"] == SOURCE_NAME
    assert row["cutoff_percentile"] is None
    assert row["seats_filled"] == 0


def test_build_row_tabular_extras():
    record = replace(_records()[0], percentile=98.5, seats_filled=3, seats=4, fees=125000)
    row = dict(zip(CUTOFF_COLUMNS, build_row(record, 2, 2, SOURCE_KEY)))
    assert (row["cutoff_percentile"], row["seats_filled"]) == (98.5, 3)
    assert (row["seats_available"], row["fees_amount"]) == (4, 125000)


def test_build_row_defaults_round():
    record = replace(_records()[0], round=None)
    row = dict(zip(CUTOFF_COLUMNS, build_row(record, 2, 2, SOURCE_NAME)))
    assert (row["round_number"], row["round_name"]) == (1, "Round 1")


def test_replace_policy_keeps_last_rank(catalog_db):
    cur = catalog_db.cursor()
    metrics = []
    result = import_file_records(
        cur, EntityResolver(cur), _source(), _records(), "replace",
        batch_size=2, metrics_callback=metrics.append,
    )

    # 101 and 102 share a unique key; only the table count is reported
    assert result.inserted == 2
    assert result.dropped == 0
    assert result.warnings == []
    assert result.total_batches == 2
    assert [m.batch_size for m in metrics] == [2, 1]
    assert _rows(cur) == [
        (2, 2, "AIQ", 2024, 1, "Round 1", "STATE", "OBC", 102, SOURCE_KEY),
        (3, 4, "AIQ", 2024, 1, "Round 1", "General", "SC", 2040, SOURCE_KEY),
    ]


def test_ignore_policy_keeps_first_rank(catalog_db):
    cur = catalog_db.cursor()
    result = import_file_records(cur, EntityResolver(cur), _source(), _records(), "ignore")
    assert result.inserted == 2
    assert [r[8] for r in _rows(cur)] == [101, 2040]


def test_reimport_is_idempotent(catalog_db):
    cur = catalog_db.cursor()
    import_file_records(cur, EntityResolver(cur), _source(), _records())
    first = _rows(cur)
    import_file_records(cur, EntityResolver(cur), _source(), _records())
    assert _rows(cur) == first
    cur.execute("SELECT COUNT(*) FROM cutoff_ranks_fts WHERE cutoff_ranks_fts MATCH 'DENTAL'")
    assert cur.fetchone()[0] == 1


def test_reimport_replaces_only_its_own_rows(catalog_db):
    cur = catalog_db.cursor()
    resolver = EntityResolver(cur)
    import_file_records(cur, resolver, _source(), _records())
    other = "AIQ_UG_2024_R2.xlsx"
    import_file_records(cur, resolver, _source(other, "R2"), _records("R2", other))

    xyz_only = [r for r in _records() if r.college_name == "XYZ MEDICAL COLLEGE"]
    import_file_records(cur, resolver, _source(), xyz_only)

    rows = _rows(cur)
    assert [(r[9], r[8]) for r in rows] == [
        (SOURCE_KEY, 102),
        (f"AIQ_UG_2024/{other}", 102),
        (f"AIQ_UG_2024/{other}", 2040),
    ]


def test_same_file_name_in_two_year_directories(catalog_db):
    cur = catalog_db.cursor()
    resolver = EntityResolver(cur)
    name = "cutoff_R1.xlsx"
    first = import_file_records(cur, resolver, _source(name, year=2024), _records(source_file=name, year=2024))
    second = import_file_records(cur, resolver, _source(name, year=2023), _records(source_file=name, year=2023))

    assert (first.inserted, second.inserted) == (2, 2)
    cur.execute(
        "SELECT counselling_year, source_filename, COUNT(*) FROM cutoff_ranks"
        " GROUP BY counselling_year, source_filename ORDER BY counselling_year"
    )
    assert cur.fetchall() == [
        (2023, "AIQ_UG_2023/cutoff_R1.xlsx", 2),
        (2024, "AIQ_UG_2024/cutoff_R1.xlsx", 2),
    ]


def test_unresolved_records_dropped_with_warnings(catalog_db):
    cur = catalog_db.cursor()
    base = _records()[0]
    records = [
        replace(base, college_name="Unknown Institute"),
        replace(base, college_name="Unknown Institute", cutoff_rank=103),
        replace(base, college_name="ABC DENTAL COLLEGE", course_name="MBBS"),
        replace(base, year=None),
        base,
    ]
    result = import_file_records(cur, EntityResolver(cur), _source(), records)

    assert result.inserted == 1
    assert result.dropped == 4
    assert len(result.warnings) == 3
    assert "college not found: 'Unknown Institute' (2 record(s) dropped)" in result.warnings[0]
    assert "course not found: 'MBBS' at 'ABC DENTAL COLLEGE'" in result.warnings[1]
    assert "1 record(s)" in result.warnings[2]


def test_unknown_policy_rejected(catalog_db):
    cur = catalog_db.cursor()
    with pytest.raises(PersistenceError):
        import_file_records(cur, EntityResolver(cur), _source(), _records(), "merge")


def test_database_error_rolls_back_the_file(catalog_db):
    cur = catalog_db.cursor()
    import_file_records(cur, EntityResolver(cur), _source(), _records())
    before = _rows(cur)

    with pytest.raises(PersistenceError, match="disk I/O error"):
        import_file_records(FailingCursor(cur), EntityResolver(cur), _source(), _records())

    # the DELETE of the failed run was rolled back
    assert _rows(cur) == before
    assert not catalog_db.in_transaction
