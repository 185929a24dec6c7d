from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

"""Cutoff record domain models.

A CutoffRecord is the unit extracted from a counselling spreadsheet: one
(college, course, category, quota) context paired with one admitted rank.
NormalizedFields is the canonical vocabulary derived from a record once,
right before persistence.
"""

__all__ = [
    "ClassificationLabel",
    "CutoffRecord",
    "NormalizedFields",
    "SheetLayout",
]


class ClassificationLabel(Enum):
    """Label assigned to a row from its first cell."""
    COLLEGE = "college"
    COURSE = "course"
    CATEGORY = "category"
    QUOTA = "quota"
    RANK = "rank"
    UNKNOWN = "unknown"


class SheetLayout(Enum):
    """Worksheet shapes understood by the extractor (detection order)."""
    AIQ = "aiq"
    KEA = "kea"
    TABULAR = "tabular"
    ROW_GROUP = "row_group"


@dataclass(frozen=True)
class CutoffRecord:
    """One extracted cutoff rank.

    Attributes:
        college_name: Cleaned college/institute name (required, non-empty)
        course_name: Cleaned course name (required, non-empty)
        category: Raw reservation category text as found in the sheet ("" if absent)
        quota: Raw quota text as found in the sheet ("" if absent)
        cutoff_rank: Positive integer rank
        year: Counselling year parsed from the directory name
        round: Round token parsed from the file name (R1, STRAY, ...)
        source_file: File name the record came from (used for re-import)
        counselling_category: Source category such as AIQ_PG or KEA
        state: State/UT name found in the college name, if any
        row_number: 1-based sheet row of the rank cell (diagnostics only)
        seats, seats_filled, percentile, fees: tabular sheets only (0 / None otherwise)
    """
    college_name: str
    course_name: str
    category: str
    quota: str
    cutoff_rank: int
    year: int | None
    round: str | None
    source_file: str
    counselling_category: str | None = None
    state: str | None = None
    row_number: int = -1
    seats: int = 0
    seats_filled: int = 0
    percentile: float | None = None
    fees: int | None = None

    def is_valid(self) -> bool:
        return bool(self.college_name) and bool(self.course_name) and self.cutoff_rank > 0

    def to_dict(self) -> dict[str, Any]:
        """Shape used by the query service (snake_case keys)."""
        data = asdict(self)
        data["all_india_rank"] = self.cutoff_rank
        return data


@dataclass(frozen=True)
class NormalizedFields:
    """Canonical labels derived from a CutoffRecord. Never mutated."""
    category: str  # UR / OBC-NCL / OBC / SC / ST / EWS / PwD / MBC / SBC / BC / DNC / VJ / NT
    quota_type: str  # General / OBC / ... / STATE / NRI / MANAGEMENT
    counselling_type: str  # AIQ / KEA / COMEDK / PRIVATE / NRI / DEFENCE / SPORTS / RURAL / STATE
    state: str | None = None
