from __future__ import annotations

import re
from typing import Any

from ..models.cutoff_record import ClassificationLabel

"""Cell classifier.

Regex predicates deciding what a row's first cell is: a college name, a course,
a reservation category, a quota, or a rank. The patterns overlap (a category
such as "SC" is also a quota keyword), so `classify_cell` evaluates them in a
fixed ranked order and returns the first label that matches:

    College → Course → Category → Quota → Rank

The row-group extractor does not rely on this order alone; in each state it asks
the single predicate it needs (`is_category` before `is_quota`, etc.).
"""

__all__ = [
    "COLLEGE_PATTERN",
    "COURSE_PATTERN",
    "QUOTA_PATTERN",
    "CATEGORY_PATTERN",
    "RANK_PATTERN",
    "GRAND_TOTAL_PATTERN",
    "CLASSIFIERS",
    "cell_text",
    "classify_cell",
    "is_college",
    "is_course",
    "is_category",
    "is_quota",
    "is_rank",
    "is_grand_total",
]

COLLEGE_PATTERN = re.compile(r"COLLEGE|INSTITUTE|HOSPITAL|MEDICAL|DENTAL|UNIVERSITY", re.IGNORECASE)
COURSE_PATTERN = re.compile(r"M\.D\.|M\.S\.|MBBS|BDS|DIPLOMA|MDS", re.IGNORECASE)
QUOTA_PATTERN = re.compile(r"OPEN|SC|ST|OBC|EWS|MANAGEMENT|PAID|DEEMED|STATE|ALL INDIA", re.IGNORECASE)
CATEGORY_PATTERN = re.compile(r"GENERAL|GM|GMP|GMC|SC|ST|OBC|EWS|NRI|MU|OPN|3BG|2AG", re.IGNORECASE)
RANK_PATTERN = re.compile(r"^\d+$")
GRAND_TOTAL_PATTERN = re.compile(r"GRAND TOTAL", re.IGNORECASE)


def cell_text(value: Any) -> str:
    """Stripped string form of a cell value ("" for blank cells)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def is_college(value: Any) -> bool:
    return bool(COLLEGE_PATTERN.search(cell_text(value)))


def is_course(value: Any) -> bool:
    return bool(COURSE_PATTERN.search(cell_text(value)))


def is_category(value: Any) -> bool:
    return bool(CATEGORY_PATTERN.search(cell_text(value)))


def is_quota(value: Any) -> bool:
    return bool(QUOTA_PATTERN.search(cell_text(value)))


def is_rank(value: Any) -> bool:
    """True only when the whole cell is digits ("123" yes, "123A" no)."""
    return bool(RANK_PATTERN.match(cell_text(value)))


def is_grand_total(row: list[Any]) -> bool:
    return any(GRAND_TOTAL_PATTERN.search(cell_text(v)) for v in row)


# Ranked: first match wins.
CLASSIFIERS: tuple[tuple[ClassificationLabel, Any], ...] = (
    (ClassificationLabel.COLLEGE, is_college),
    (ClassificationLabel.COURSE, is_course),
    (ClassificationLabel.CATEGORY, is_category),
    (ClassificationLabel.QUOTA, is_quota),
    (ClassificationLabel.RANK, is_rank),
)


def classify_cell(value: Any) -> ClassificationLabel:
    if not cell_text(value):
        return ClassificationLabel.UNKNOWN
    for label, predicate in CLASSIFIERS:
        if predicate(value):
            return label
    return ClassificationLabel.UNKNOWN
