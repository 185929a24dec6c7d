from __future__ import annotations

import math
import re
from typing import Any

from ..models.cutoff_record import CutoffRecord, NormalizedFields

"""Field normalizer.

String cleanup for extracted cells and canonicalization of category / quota /
counselling-type labels onto a small fixed vocabulary. Every mapping here is a
case-insensitive substring test against an ordered keyword table; the first
group that matches wins.
"""

__all__ = [
    "STATE_NAMES",
    "clean_field",
    "dedupe_fragments",
    "fix_known_typos",
    "fix_city_names",
    "repair_rank_text",
    "extract_state",
    "canonical_category",
    "canonical_quota",
    "canonical_counselling_type",
    "to_int",
    "to_float",
    "to_rank",
    "to_seats",
    "normalize_record",
]

_WS = re.compile(r"\s+")
_TRAILING_COMMA = re.compile(r",\s*$")
_SPLIT_RANK = re.compile(r"^(\d{5})\s+(\d+)$")

STATE_NAMES = (
    "TAMIL NADU", "KARNATAKA", "MAHARASHTRA", "UTTAR PRADESH", "WEST BENGAL",
    "ANDHRA PRADESH", "TELANGANA", "KERALA", "RAJASTHAN", "GUJARAT",
    "MADHYA PRADESH", "BIHAR", "ASSAM", "ODISHA", "JHARKHAND",
    "CHHATTISGARH", "HARYANA", "PUNJAB", "HIMACHAL PRADESH", "UTTARAKHAND",
    "DELHI (NCT)", "PUDUCHERRY", "GOA", "TRIPURA", "NAGALAND",
    "MANIPUR", "MIZORAM", "ARUNACHAL PRADESH", "SIKKIM", "MEGHALAYA",
)

# Spreadsheet exports wrap long cells mid-word.
QUOTA_TYPOS = (
    ("MANAGE MENT/PAI D SEATS QUOTA", "MANAGEMENT/PAID SEATS QUOTA"),
    ("MANAGE MENT", "MANAGEMENT"),
    ("PAI D", "PAID"),
    ("OPEN CATEGORY", "OPEN"),
    ("GENERAL CATEGORY", "GENERAL"),
    ("UR CATEGORY", "UR"),
    ("OBC CATEGORY", "OBC"),
    ("SC CATEGORY", "SC"),
    ("ST CATEGORY", "ST"),
    ("EWS CATEGORY", "EWS"),
)

CITY_CORRECTIONS = {
    "BANGLORE": "BANGALORE",
    "MANGLORE": "MANGALORE",
    "HUBLI": "HUBBALLI",
    "BELGAUM": "BELAGAVI",
    "GULBARGA": "KALABURAGI",
    "PONDICHERRY": "PUDUCHERRY",
}
_CITY_RE = re.compile(r"\b(" + "|".join(CITY_CORRECTIONS) + r")\b", re.IGNORECASE)

# (keywords, all_required, category, quota_type). MBC/SBC before BC so that
# every canonical code maps to itself.
CATEGORY_GROUPS: tuple[tuple[tuple[str, ...], bool, str, str], ...] = (
    (("UR", "GENERAL", "OPEN"), False, "UR", "General"),
    (("OBC", "NCL"), True, "OBC-NCL", "OBC-NCL"),
    (("OBC", "OTHER BACKWARD"), False, "OBC", "OBC"),
    (("SC",), False, "SC", "SC"),
    (("ST",), False, "ST", "ST"),
    (("EWS",), False, "EWS", "EWS"),
    (("PWD", "PH", "DISABLED"), False, "PwD", "PwD"),
    (("MBC",), False, "MBC", "MBC"),
    (("SBC",), False, "SBC", "SBC"),
    (("BC",), False, "BC", "BC"),
    (("DNC",), False, "DNC", "DNC"),
    (("VJ",), False, "VJ", "VJ"),
    (("NT",), False, "NT", "NT"),
)
DEFAULT_CATEGORY = ("UR", "General")

QUOTA_GROUPS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("NRI",), "NRI"),
    (("MANAGEMENT", "MNG", "PAID"), "MANAGEMENT"),
    (("STATE",), "STATE"),
    (("DEEMED",), "DEEMED"),
)

COUNSELLING_TYPE_GROUPS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("AIQ", "ALL INDIA", "MCC", "DGHS"), "AIQ"),
    (("KEA", "KARNATAKA", "STATE"), "KEA"),
    (("COMEDK",), "COMEDK"),
    (("PRIVATE", "MANAGEMENT"), "PRIVATE"),
    (("NRI",), "NRI"),
    (("DEFENCE",), "DEFENCE"),
    (("SPORTS",), "SPORTS"),
    (("RURAL",), "RURAL"),
)
DEFAULT_COUNSELLING_TYPE = "STATE"


def dedupe_fragments(text: str) -> str:
    """Drop verbatim-repeated comma fragments when there are more than two.

    "Deemed, Deemed, Govt" -> "Deemed, Govt"
    """
    parts = text.split(",")
    if len(parts) <= 2:
        return text
    seen: set[str] = set()
    unique: list[str] = []
    for part in parts:
        trimmed = part.strip()
        if trimmed and trimmed not in seen:
            seen.add(trimmed)
            unique.append(trimmed)
    return ", ".join(unique)


def fix_known_typos(text: str) -> str:
    """Quota/category label typos. Not applied to names ("PAI DENTAL")."""
    upper = text.upper()
    for typo, fix in QUOTA_TYPOS:
        idx = upper.find(typo)
        if idx != -1:
            text = text[:idx] + fix + text[idx + len(typo):]
            upper = text.upper()
    return text


def fix_city_names(text: str) -> str:
    return _CITY_RE.sub(lambda m: CITY_CORRECTIONS[m.group(1).upper()], text)


def clean_field(value: Any, *, label: bool = False) -> str:
    """Whitespace collapse, known corrections, fragment dedup, trailing comma.

    label=True marks quota/category cells, which also get the label typo fixes.
    """
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = _WS.sub(" ", str(value)).strip()
    if not text:
        return ""
    text = fix_known_typos(text) if label else fix_city_names(text)
    text = dedupe_fragments(text)
    return _TRAILING_COMMA.sub("", text)


def repair_rank_text(value: Any) -> str:
    """Undo the "10248 0" split some exports put into five-plus digit ranks."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    m = _SPLIT_RANK.match(text)
    if m:
        return m.group(1) + m.group(2)
    return text


def extract_state(college_name: str | None) -> str | None:
    if not college_name:
        return None
    upper = college_name.upper()
    for state in STATE_NAMES:
        if state in upper:
            return state
    return None


def _match_group(upper: str, keywords: tuple[str, ...], all_required: bool) -> bool:
    if all_required:
        return all(k in upper for k in keywords)
    return any(k in upper for k in keywords)


def canonical_category(raw: str | None) -> tuple[str, str]:
    """Map free-text category onto (category, quota_type); default (UR, General)."""
    if not raw:
        return DEFAULT_CATEGORY
    upper = raw.upper()
    for keywords, all_required, category, quota_type in CATEGORY_GROUPS:
        if _match_group(upper, keywords, all_required):
            return category, quota_type
    return DEFAULT_CATEGORY


def canonical_quota(raw_quota: str | None, raw_category: str | None = None) -> str:
    """Quota type from the quota cell, else the one implied by the category.

    Seat-type keywords (NRI, MANAGEMENT, STATE) win over reservation keywords,
    and the quota cell wins over the category cell.
    """
    for raw in (raw_quota, raw_category):
        if not raw:
            continue
        upper = raw.upper()
        for keywords, quota in QUOTA_GROUPS:
            if any(k in upper for k in keywords):
                return quota
    if raw_quota:
        upper = raw_quota.upper()
        for keywords, all_required, _, quota_type in CATEGORY_GROUPS:
            if _match_group(upper, keywords, all_required):
                return quota_type
    _, quota_type = canonical_category(raw_category)
    return quota_type


def canonical_counselling_type(raw: str | None) -> str:
    if not raw:
        return DEFAULT_COUNSELLING_TYPE
    upper = raw.upper().replace("_", " ")
    for keywords, ctype in COUNSELLING_TYPE_GROUPS:
        if any(k in upper for k in keywords):
            return ctype
    return DEFAULT_COUNSELLING_TYPE


def to_int(value: Any, default: int | None = None) -> int | None:
    """parseInt-like coercion: leading integer part of the text, else default."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else default
    m = re.match(r"^\s*([+-]?\d+)", str(value).replace(",", ""))
    return int(m.group(1)) if m else default


def to_float(value: Any, default: float | None = None) -> float | None:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else default
    m = re.match(r"^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+))", str(value).replace(",", ""))
    return float(m.group(1)) if m else default


def to_rank(value: Any) -> int | None:
    rank = to_int(repair_rank_text(value) if isinstance(value, str) else value)
    if rank is None or rank < 1:
        return None
    return rank


def to_seats(value: Any) -> int:
    seats = to_int(value, 0)
    return seats if seats is not None and seats >= 0 else 0


def normalize_record(record: CutoffRecord) -> NormalizedFields:
    """Derive the canonical labels for one record."""
    category, _ = canonical_category(record.category)
    quota_type = canonical_quota(record.quota, record.category)
    source = record.counselling_category or record.quota
    return NormalizedFields(
        category=category,
        quota_type=quota_type,
        counselling_type=canonical_counselling_type(source),
        state=record.state or extract_state(record.college_name),
    )
