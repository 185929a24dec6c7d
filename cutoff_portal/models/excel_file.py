from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

"""SourceFile domain model and FileStatus enum.

A SourceFile is one counselling spreadsheet discovered under the cutoff
directory, together with the category/year/round parsed from its location.
It is tracked from discovery through import.
"""


class FileStatus(Enum):
    """Status enum for SourceFile processing lifecycle.

    State transitions: pending → processing → (success | failed)
    Files whose name cannot be parsed go straight to skipped.
    """
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class SourceFile:
    """Processing context for a single cutoff spreadsheet."""
    path: Path
    name: str
    category: str | None  # AIQ_PG / AIQ_UG / KEA ... from <CATEGORY>_<YEAR>
    year: int | None
    round: str | None  # R1 / STRAY / MOPUP ...
    status: FileStatus = FileStatus.PENDING
    extracted_records: int = 0
    persisted_records: int = 0
    dropped_records: int = 0
    error: str | None = None
    relative_path: str | None = None  # POSIX path under the cutoff directory

    @property
    def is_parseable(self) -> bool:
        return self.year is not None and self.round is not None

    @property
    def source_key(self) -> str:
        """Re-import key stored in cutoff_ranks.source_filename."""
        return self.relative_path or f"{self.path.parent.name}/{self.path.name}"

    @property
    def academic_year(self) -> str | None:
        if self.year is None:
            return None
        return f"{self.year}-{self.year + 1}"
