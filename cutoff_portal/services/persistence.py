from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from ..db.sqlite_store import (
    CUTOFF_COLUMNS,
    BatchMetrics,
    PersistenceError,
    batch_insert,
)
from ..models.config_models import UPSERT_POLICIES
from ..models.cutoff_record import CutoffRecord
from ..models.excel_file import SourceFile
from .normalizer import normalize_record
from .source_files import format_round_label, round_number

"""Persistence adapter: CutoffRecord -> cutoff_ranks rows.

Colleges and courses are looked up, never created. Lookup is a fuzzy SQL LIKE
in both directions; when several rows match the shortest name wins. Records
whose college or course cannot be resolved are dropped with a warning.

Each source file is written in one transaction:

    BEGIN
    DELETE FROM cutoff_ranks WHERE source_filename = ?
    INSERT OR REPLACE | INSERT OR IGNORE ... (batched)
    COMMIT

so re-importing the same file leaves the table unchanged. The re-import key
stored in source_filename is the path relative to the cutoff directory
(AIQ_UG_2024/cutoff_R1.xlsx), so equal file names in different year
directories never touch each other. PersistResult.inserted is the number of
rows the file holds after COMMIT. Any database error rolls back that file only
and is raised as PersistenceError.

Within one file several ranks can share the unique key
(college, course, counselling type, year, round, quota, category). Under
"replace" the last one wins (the closing rank of an ascending list), under
"ignore" the first one does.
"""

__all__ = [
    "EntityResolver",
    "PersistResult",
    "build_row",
    "import_file_records",
]

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9\s]")

COLLEGE_LOOKUP_SQL = """
SELECT id, name FROM colleges
WHERE LOWER(name) LIKE LOWER(?)
   OR LOWER(name) LIKE LOWER(?)
   OR LOWER(?) LIKE '%' || LOWER(name) || '%'
ORDER BY LENGTH(name) ASC
LIMIT 1
"""

COURSE_LOOKUP_SQL = """
SELECT id, course_name FROM courses
WHERE college_id = ? AND (
       LOWER(course_name) LIKE LOWER(?)
    OR LOWER(course_name) LIKE LOWER(?)
    OR LOWER(?) LIKE '%' || LOWER(course_name) || '%'
)
ORDER BY LENGTH(course_name) ASC
LIMIT 1
"""


def _patterns(name: str) -> tuple[str, str]:
    return f"%{name}%", f"%{_NON_ALNUM.sub('', name)}%"


class EntityResolver:
    """College / course id lookup against the colleges database.

    Results (including misses) are memoized for the lifetime of the instance.
    """

    def __init__(self, cursor: Any) -> None:
        self.cursor = cursor
        self._colleges: dict[str, int | None] = {}
        self._courses: dict[tuple[int, str], int | None] = {}

    def college_id(self, name: str) -> int | None:
        key = name.strip().lower()
        if not key:
            return None
        if key not in self._colleges:
            self.cursor.execute(COLLEGE_LOOKUP_SQL, (*_patterns(name), name))
            row = self.cursor.fetchone()
            self._colleges[key] = row[0] if row else None
            if row:
                logger.debug("college '%s' -> %s (id=%s)", name, row[1], row[0])
        return self._colleges[key]

    def course_id(self, college_id: int, course_name: str) -> int | None:
        key = (college_id, course_name.strip().lower())
        if not key[1]:
            return None
        if key not in self._courses:
            self.cursor.execute(COURSE_LOOKUP_SQL, (college_id, *_patterns(course_name), course_name))
            row = self.cursor.fetchone()
            self._courses[key] = row[0] if row else None
        return self._courses[key]


@dataclass(frozen=True)
class PersistResult:
    inserted: int
    dropped: int
    warnings: list[str] = field(default_factory=list)
    total_batches: int = 0


def build_row(record: CutoffRecord, college_id: int, course_id: int, source_filename: str) -> tuple[Any, ...]:
    """Row tuple in CUTOFF_COLUMNS order."""
    nf = normalize_record(record)
    token = record.round or "R1"
    return (
        college_id,
        course_id,
        nf.counselling_type,
        record.year,
        round_number(token),
        format_round_label(token),
        nf.quota_type,
        nf.category,
        record.cutoff_rank,
        record.percentile,
        record.seats,
        record.seats_filled,
        record.fees,
        record.college_name,
        record.course_name,
        nf.state,
        source_filename,
    )


def _resolve_rows(
    resolver: EntityResolver,
    source: SourceFile,
    records: Iterable[CutoffRecord],
) -> tuple[list[tuple[Any, ...]], int, list[str]]:
    rows: list[tuple[Any, ...]] = []
    missing_colleges: dict[str, int] = {}
    missing_courses: dict[tuple[str, str], int] = {}
    invalid = 0

    for record in records:
        if not record.is_valid() or record.year is None:
            invalid += 1
            continue
        college_id = resolver.college_id(record.college_name)
        if college_id is None:
            missing_colleges[record.college_name] = missing_colleges.get(record.college_name, 0) + 1
            continue
        course_id = resolver.course_id(college_id, record.course_name)
        if course_id is None:
            key = (record.college_name, record.course_name)
            missing_courses[key] = missing_courses.get(key, 0) + 1
            continue
        rows.append(build_row(record, college_id, course_id, source.source_key))

    warnings: list[str] = []
    for name, count in missing_colleges.items():
        warnings.append(f"{source.name}: college not found: '{name}' ({count} record(s) dropped)")
    for (college, course), count in missing_courses.items():
        warnings.append(f"{source.name}: course not found: '{course}' at '{college}' ({count} record(s) dropped)")
    if invalid:
        warnings.append(f"{source.name}: {invalid} record(s) missing college, course, rank or year dropped")
    dropped = invalid + sum(missing_colleges.values()) + sum(missing_courses.values())
    return rows, dropped, warnings


def import_file_records(
    cursor: Any,
    resolver: EntityResolver,
    source: SourceFile,
    records: Iterable[CutoffRecord],
    policy: str = "replace",
    *,
    batch_size: int = 500,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> PersistResult:
    """Replace every cutoff_ranks row of one source file.

    Args:
        cursor: cutoff_ranks database cursor (autocommit connection)
        resolver: college/course lookup
        source: file the records came from; source.source_key is the re-import key
        records: extracted records
        policy: "replace" (INSERT OR REPLACE) or "ignore" (INSERT OR IGNORE)
        batch_size: rows per executemany call
        metrics_callback: per-batch timing hook

    Returns:
        PersistResult with inserted/dropped counts and lookup warnings

    Raises:
        PersistenceError: database failure (the file's transaction was rolled back)
    """
    if policy not in UPSERT_POLICIES:
        raise PersistenceError(f"unknown upsert policy: {policy}")

    rows, dropped, warnings = _resolve_rows(resolver, source, records)
    for msg in warnings:
        logger.warning(msg)

    try:
        cursor.execute("BEGIN")
        cursor.execute("DELETE FROM cutoff_ranks WHERE source_filename = ?", (source.source_key,))
        result = batch_insert(
            cursor,
            "cutoff_ranks",
            CUTOFF_COLUMNS,
            rows,
            conflict=policy,
            page_size=batch_size,
            metrics_callback=metrics_callback,
        )
        # rows sharing a unique key collapse, so count what is actually stored
        cursor.execute("SELECT COUNT(*) FROM cutoff_ranks WHERE source_filename = ?", (source.source_key,))
        stored = cursor.fetchone()[0]
        cursor.execute("COMMIT")
    except Exception as e:
        try:
            cursor.execute("ROLLBACK")
        except Exception as rollback_error:  # pragma: no cover
            logger.error("%s: rollback failed: %s", source.name, rollback_error)
        if isinstance(e, PersistenceError):
            raise
        raise PersistenceError(str(e)) from e

    return PersistResult(
        inserted=stored,
        dropped=dropped,
        warnings=warnings,
        total_batches=result.total_batches,
    )
