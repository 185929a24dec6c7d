from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from ..models.cutoff_record import ClassificationLabel, CutoffRecord, SheetLayout
from ..services.normalizer import (
    clean_field,
    extract_state,
    repair_rank_text,
    to_float,
    to_int,
    to_rank,
    to_seats,
)
from .classifier import (
    cell_text,
    classify_cell,
    is_college,
    is_course,
    is_category,
    is_grand_total,
    is_quota,
    is_rank,
)
from .reader import RawSheet, read_raw_sheets

"""Row-group extractor.

Turns one RawSheet into CutoffRecords. Four sheet shapes are understood and
detected in this order against the first rows of the sheet:

AIQ
    Row 0 holds the college name, rows 1-3 course / category / quota, ranks
    follow from row 4.
KEA
    Row 0 holds the college name, then repeating (course, sub-category, rank)
    triples. Quota is inferred from the sub-category.
TABULAR
    A header row whose cells name distinct college, course and rank columns,
    then one row per record.
ROW_GROUP
    Anything else: a single-pass state machine over the first cell of each row
    (college -> course -> [category] -> [quota] -> ranks...).

Every layout emits one record per rank. GRAND TOTAL rows are discarded before
detection.

Rank policy: a rank list under one (college, course, category, quota) group is
not collapsed into an opening/closing pair here. Each rank becomes its own
record, and query results report opening_rank == closing_rank == that rank.
At persistence time the unique key keeps one row per group (the last rank
under "replace", the first under "ignore").

TABULAR sheets may also carry percentile, seats-filled, seats and fee columns.
Missing values default to None (percentile, fees) or 0 (seats).
"""

__all__ = [
    "ExtractionResult",
    "detect_layout",
    "extract_workbook",
    "extract_records",
    "map_columns",
]

logger = logging.getLogger(__name__)

KEA_COURSE_KEYWORDS = ("mbbs", "bds", "md", "ms", "diploma")
GENERAL_KEYWORDS = ("open", "general", "ur")
KEA_DEFAULT_QUOTA = "STATE"

# header keyword -> field. A header is assigned to the first field it matches.
COLUMN_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("rank", ("rank", "air")),
    ("percentile", ("percentile",)),
    ("college", ("college", "institute", "hospital")),
    ("course", ("course", "mbbs", "bds", "mds", "programme")),
    ("category", ("category", "caste", "gen", "obc", "ews")),
    ("quota", ("quota", "aiq", "all india")),
    ("state", ("state",)),
    ("seats_filled", ("filled", "allotted")),
    ("seats", ("seat", "total")),
    ("fees", ("fee", "cost")),
)


@dataclass
class ExtractionResult:
    records: list[CutoffRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    layout: SheetLayout = SheetLayout.ROW_GROUP


@dataclass(frozen=True)
class _SourceContext:
    source_file: str
    category: str | None
    year: int | None
    round: str | None

    @property
    def is_kea(self) -> bool:
        return bool(self.category) and self.category.upper().startswith("KEA")

    def default_quota(self, quota: str) -> str:
        if not quota and self.is_kea:
            return KEA_DEFAULT_QUOTA
        return quota


def _first(row: list[Any] | None) -> str:
    if not row:
        return ""
    return cell_text(row[0])


def _rank_cell(value: Any) -> tuple[bool, int | None]:
    """(looks like a rank, positive rank value). "10248 0" is repaired first."""
    text = repair_rank_text(value)
    if not is_rank(text):
        return False, None
    return True, to_rank(text)


def _drop_grand_total(rows: RawSheet) -> list[tuple[int, list[Any]]]:
    return [(i + 1, row) for i, row in enumerate(rows) if not is_grand_total(row)]


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

def _is_aiq(firsts: list[str]) -> bool:
    if len(firsts) < 4:
        return False
    header, course, category = (s.lower() for s in firsts[:3])
    return (
        "college" in header
        and ("mbbs" in course or "bds" in course)
        and any(k in category for k in GENERAL_KEYWORDS)
    )


def _is_kea(firsts: list[str]) -> bool:
    if len(firsts) < 4:
        return False
    header, course, sub = (s.lower() for s in firsts[:3])
    rank_text = repair_rank_text(firsts[3])
    return (
        ("college" in header or "institute" in header)
        and any(k in course for k in KEA_COURSE_KEYWORDS)
        and not any(k in sub for k in GENERAL_KEYWORDS)
        and is_rank(rank_text)
        and len(rank_text) >= 3
    )


def map_columns(header: list[Any]) -> dict[str, int]:
    """Map header cells to record fields by keyword (first column wins)."""
    mapping: dict[str, int] = {}
    for idx, cell in enumerate(header):
        text = cell_text(cell).lower()
        if not text:
            continue
        for field_name, keywords in COLUMN_KEYWORDS:
            if any(k in text for k in keywords):
                mapping.setdefault(field_name, idx)
                break
    return mapping


def _is_tabular(header: list[Any]) -> bool:
    mapping = map_columns(header)
    return all(k in mapping for k in ("college", "course", "rank"))


def detect_layout(rows: RawSheet) -> SheetLayout:
    """Classify the shape of a sheet (GRAND TOTAL rows already removed).

    AIQ / KEA look at the first four rows that have a first cell; TABULAR
    looks at the header row as-is.
    """
    firsts = [text for text in (_first(r) for r in rows) if text][:4]
    if _is_aiq(firsts):
        return SheetLayout.AIQ
    if _is_kea(firsts):
        return SheetLayout.KEA
    if rows and _is_tabular(rows[0]):
        return SheetLayout.TABULAR
    return SheetLayout.ROW_GROUP


# ---------------------------------------------------------------------------
# Layout extractors
# ---------------------------------------------------------------------------

def _make_record(
    ctx: _SourceContext,
    college: str,
    course: str,
    category: str,
    quota: str,
    rank: int,
    row_number: int,
    *,
    state: str | None = None,
    seats: int = 0,
    seats_filled: int = 0,
    percentile: float | None = None,
    fees: int | None = None,
) -> CutoffRecord:
    return CutoffRecord(
        college_name=college,
        course_name=course,
        category=category,
        quota=ctx.default_quota(quota),
        cutoff_rank=rank,
        year=ctx.year,
        round=ctx.round,
        source_file=ctx.source_file,
        counselling_category=ctx.category,
        state=state or extract_state(college),
        row_number=row_number,
        seats=seats,
        seats_filled=seats_filled,
        percentile=percentile,
        fees=fees,
    )


def _extract_aiq(numbered: list[tuple[int, list[Any]]], ctx: _SourceContext, result: ExtractionResult) -> None:
    rows = [row for _, row in numbered]
    college = clean_field(rows[0][0])
    course = clean_field(rows[1][0])
    category = clean_field(rows[2][0], label=True)
    quota = clean_field(rows[3][0], label=True)

    for row_number, row in numbered[4:]:
        if not row:
            continue
        _, rank = _rank_cell(row[0])
        if rank is None:
            continue
        result.records.append(_make_record(ctx, college, course, category, quota, rank, row_number))

    if not result.records:
        msg = f"{ctx.source_file}: AIQ sheet for '{college}' has no ranks"
        logger.warning(msg)
        result.warnings.append(msg)


def _kea_quota(sub_category: str) -> str:
    upper = sub_category.upper()
    if "NRI" in upper:
        return "NRI"
    if "MNG" in upper or "MANAGEMENT" in upper:
        return "MANAGEMENT"
    return KEA_DEFAULT_QUOTA


def _extract_kea(numbered: list[tuple[int, list[Any]]], ctx: _SourceContext, result: ExtractionResult) -> None:
    college = clean_field(numbered[0][1][0])
    skipped = 0
    # (course, sub-category, rank) の3行ごと
    for i in range(1, len(numbered) - 2, 3):
        course_text = _first(numbered[i][1])
        sub_text = _first(numbered[i + 1][1])
        rank_number, rank_row = numbered[i + 2]
        rank_text = repair_rank_text(_first(rank_row))
        if not course_text or not sub_text or not rank_text:
            skipped += 1
            continue
        if not is_rank(rank_text) or len(rank_text) < 3:
            skipped += 1
            continue
        # 数字だけの course は列ずれ
        if course_text.isdigit() and len(course_text) < 6:
            skipped += 1
            continue
        rank = to_rank(rank_text)
        if rank is None:
            skipped += 1
            continue
        sub_category = clean_field(sub_text, label=True)
        result.records.append(
            _make_record(
                ctx,
                college,
                clean_field(course_text),
                sub_category,
                _kea_quota(sub_category),
                rank,
                rank_number,
            )
        )
    if skipped:
        msg = f"{ctx.source_file}: skipped {skipped} incomplete KEA row group(s)"
        logger.warning(msg)
        result.warnings.append(msg)


def _cell(row: list[Any], idx: int | None) -> Any:
    if idx is None or idx >= len(row):
        return None
    return row[idx]


def _extract_tabular(numbered: list[tuple[int, list[Any]]], ctx: _SourceContext, result: ExtractionResult) -> None:
    columns = map_columns(numbered[0][1])
    dropped = 0
    for row_number, row in numbered[1:]:
        college = clean_field(_cell(row, columns.get("college")))
        course = clean_field(_cell(row, columns.get("course")))
        rank = to_rank(_cell(row, columns.get("rank")))
        if not college or not course or rank is None:
            dropped += 1
            continue
        state = clean_field(_cell(row, columns.get("state"))) or None
        result.records.append(
            _make_record(
                ctx,
                college,
                course,
                clean_field(_cell(row, columns.get("category")), label=True),
                clean_field(_cell(row, columns.get("quota")), label=True),
                rank,
                row_number,
                state=state,
                seats=to_seats(_cell(row, columns.get("seats"))),
                seats_filled=to_seats(_cell(row, columns.get("seats_filled"))),
                percentile=to_float(_cell(row, columns.get("percentile"))),
                fees=to_int(_cell(row, columns.get("fees"))),
            )
        )
    if dropped:
        msg = f"{ctx.source_file}: dropped {dropped} row(s) without college, course or rank"
        logger.warning(msg)
        result.warnings.append(msg)


class _State(Enum):
    SEEK_COLLEGE = 1
    SEEK_COURSE = 2
    SEEK_CATEGORY = 3
    SEEK_QUOTA = 4
    COLLECT_RANKS = 5


class _RowGroupMachine:
    """Single-pass state machine over the first cell of each row."""

    def __init__(self, ctx: _SourceContext, result: ExtractionResult) -> None:
        self.ctx = ctx
        self.result = result
        self.state = _State.SEEK_COLLEGE
        self.college = ""
        self.course = ""
        self.category = ""
        self.quota = ""
        self.ranks: list[tuple[int, int]] = []  # (rank, row_number)

    def _warn(self, msg: str) -> None:
        msg = f"{self.ctx.source_file}: {msg}"
        logger.warning(msg)
        self.result.warnings.append(msg)

    def _start_college(self, value: Any) -> None:
        self.college = clean_field(value)
        self.course = ""
        self.state = _State.SEEK_COURSE

    def _start_course(self, value: Any) -> None:
        self.course = clean_field(value)
        self.category = ""
        self.quota = ""
        self.ranks = []
        self.state = _State.SEEK_CATEGORY

    def _close_group(self) -> None:
        if not self.ranks:
            self._warn(f"no ranks for '{self.college}' / '{self.course}', group skipped")
            return
        for rank, row_number in self.ranks:
            record = _make_record(
                self.ctx, self.college, self.course, self.category, self.quota, rank, row_number
            )
            if record.is_valid():
                self.result.records.append(record)
        self.ranks = []

    def _break_on_structure(self, value: Any) -> bool:
        """A college or course row ends whatever group is open."""
        if is_college(value):
            self._close_group()
            self._start_college(value)
            return True
        if is_course(value):
            self._close_group()
            self._start_course(value)
            return True
        return False

    def _dispatch(self, value: Any) -> None:
        label = classify_cell(value)
        if label is ClassificationLabel.COLLEGE:
            self._start_college(value)
        elif label is ClassificationLabel.COURSE:
            self._start_course(value)
        elif label is ClassificationLabel.CATEGORY:
            self.category = clean_field(value, label=True)
            self.quota = ""
            self.state = _State.SEEK_QUOTA
        elif label is ClassificationLabel.QUOTA:
            self.quota = clean_field(value, label=True)
            self.state = _State.COLLECT_RANKS
        else:
            self.state = _State.SEEK_COURSE

    def feed(self, value: Any, row_number: int) -> None:
        if self.state is _State.SEEK_COLLEGE:
            if is_college(value):
                self._start_college(value)
            return

        if self.state is _State.SEEK_COURSE:
            if is_college(value):
                if self.college and not self.course:
                    self._warn(f"college '{self.college}' has no course row")
                self._start_college(value)
            elif is_course(value):
                self._start_course(value)
            return

        looks_like_rank, rank = _rank_cell(value)

        if self.state is _State.SEEK_CATEGORY:
            if not looks_like_rank and self._break_on_structure(value):
                return
            self.state = _State.SEEK_QUOTA
            if not looks_like_rank and is_category(value):
                self.category = clean_field(value, label=True)
                return

        if self.state is _State.SEEK_QUOTA:
            if not looks_like_rank and self._break_on_structure(value):
                return
            self.state = _State.COLLECT_RANKS
            if not looks_like_rank and is_quota(value):
                self.quota = clean_field(value, label=True)
                return

        # COLLECT_RANKS
        if looks_like_rank:
            if rank is None:
                self._warn(f"row {row_number}: non-positive rank '{cell_text(value)}' ignored")
            else:
                self.ranks.append((rank, row_number))
            return
        self._close_group()
        self._dispatch(value)

    def finish(self) -> None:
        if self.state in (_State.SEEK_CATEGORY, _State.SEEK_QUOTA, _State.COLLECT_RANKS):
            self._close_group()
        elif self.state is _State.SEEK_COURSE and self.college and not self.course:
            self._warn(f"college '{self.college}' has no course row")


def _extract_row_groups(numbered: list[tuple[int, list[Any]]], ctx: _SourceContext, result: ExtractionResult) -> None:
    machine = _RowGroupMachine(ctx, result)
    for row_number, row in numbered:
        machine.feed(row[0], row_number)
    machine.finish()


_EXTRACTORS = {
    SheetLayout.AIQ: _extract_aiq,
    SheetLayout.KEA: _extract_kea,
    SheetLayout.TABULAR: _extract_tabular,
    SheetLayout.ROW_GROUP: _extract_row_groups,
}


def extract_records(
    rows: RawSheet,
    *,
    source_file: str,
    category: str | None = None,
    year: int | None = None,
    round: str | None = None,
) -> ExtractionResult:
    """Extract cutoff records from one worksheet.

    Args:
        rows: Raw sheet rows (header=None read)
        source_file: File name stamped on every record
        category: Source category from the directory name (AIQ_PG, KEA, ...)
        year: Counselling year
        round: Round token (R1, STRAY, ...)

    Returns:
        ExtractionResult with records in sheet order, warnings and the
        detected layout
    """
    ctx = _SourceContext(source_file=source_file, category=category, year=year, round=round)
    numbered = _drop_grand_total(rows)
    layout = detect_layout([row for _, row in numbered])
    result = ExtractionResult(layout=layout)
    if not numbered:
        return result

    if layout is not SheetLayout.TABULAR:
        # 先頭セルが空の行は対象外
        numbered = [(n, row) for n, row in numbered if _first(row)]
    _EXTRACTORS[layout](numbered, ctx, result)
    logger.debug(
        "%s: layout=%s records=%d warnings=%d",
        source_file, layout.value, len(result.records), len(result.warnings),
    )
    return result


def extract_workbook(
    path: Path,
    *,
    category: str | None = None,
    year: int | None = None,
    round: str | None = None,
) -> ExtractionResult:
    """Read every worksheet of a workbook and extract records from each.

    The reported layout is the one of the first sheet that yielded records
    (or of the first sheet when none did).

    Raises:
        SheetReadError: the workbook could not be read
    """
    merged = ExtractionResult()
    layout: SheetLayout | None = None
    for sheet_name, rows in read_raw_sheets(path).items():
        sheet = extract_records(rows, source_file=path.name, category=category, year=year, round=round)
        if layout is None or (sheet.records and not merged.records):
            layout = sheet.layout
        merged.records.extend(sheet.records)
        merged.warnings.extend(f"[{sheet_name}] {w}" for w in sheet.warnings)
    if layout is not None:
        merged.layout = layout
    return merged
