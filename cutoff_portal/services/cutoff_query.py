from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

from ..excel.extractor import extract_workbook
from ..excel.reader import EXCEL_SUFFIXES, SheetReadError
from ..models.cutoff_record import CutoffRecord
from .cache import ParseCache
from .source_files import (
    format_category_label,
    format_round_label,
    parse_category_dir,
    parse_round,
    round_sort_key,
)

"""On-demand cutoff query service.

Parses cutoff spreadsheets straight from disk (no database) and answers
filter queries. Every public method returns a plain dict:

    {"success": True, "data": [...], ...}
    {"success": False, "error": "..."}

Parsed files are held in a ParseCache keyed by (category, year, round).
"""

__all__ = [
    "CutoffQueryService",
    "DEFAULT_LIMIT",
]

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
KEA_CLEANED_VARIANTS = ("MEDICAL", "DENTAL")


def _fail(message: str) -> dict[str, Any]:
    return {"success": False, "error": message}


def _to_item(record: CutoffRecord) -> dict[str, Any]:
    item = record.to_dict()
    # 1 record = 1 rank
    item["opening_rank"] = record.cutoff_rank
    item["closing_rank"] = record.cutoff_rank
    return item


def _contains(value: Any, needle: str) -> bool:
    return bool(value) and needle.lower() in str(value).lower()


class CutoffQueryService:
    """Search over the <CATEGORY>_<YEAR>/<...>_<ROUND>.xlsx tree.

    Args:
        cutoff_dir: root of the category/year directories
        cleaned_dir: optional directory of pre-cleaned copies named
            <CATEGORY>_<YEAR>_<ROUND>_CLEANED.xlsx, preferred when present
        cache: parse cache (a fresh 5 minute cache when omitted)
    """

    def __init__(self, cutoff_dir: Path, cleaned_dir: Path | None = None, cache: ParseCache | None = None) -> None:
        self.cutoff_dir = Path(cutoff_dir)
        self.cleaned_dir = Path(cleaned_dir) if cleaned_dir else None
        self.cache = cache if cache is not None else ParseCache()

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def _category_dirs(self) -> list[Path]:
        return [
            p for p in self.cutoff_dir.iterdir()
            if p.is_dir() and not p.name.startswith(".")
        ]

    def available_years(self) -> dict[str, Any]:
        """Years found in directory names, latest first."""
        try:
            dirs = self._category_dirs()
        except OSError as e:
            return _fail(str(e))
        years = set()
        for p in dirs:
            parsed = parse_category_dir(p.name)
            if parsed is not None:
                years.add(parsed[1])
        return {"success": True, "data": sorted(years, reverse=True)}

    def available_categories(self) -> dict[str, Any]:
        try:
            dirs = self._category_dirs()
        except OSError as e:
            return _fail(str(e))
        data = []
        for p in dirs:
            parsed = parse_category_dir(p.name)
            if parsed is None:
                continue
            category, year = parsed
            data.append({"value": category, "label": format_category_label(category), "year": year})
        data.sort(key=lambda c: (c["label"], c["year"]))
        return {"success": True, "data": data}

    def available_rounds(self, category: str, year: int | str) -> dict[str, Any]:
        category_path = self.cutoff_dir / f"{category}_{year}"
        if not category_path.is_dir():
            return _fail("Category not found")
        rounds = []
        for f in sorted(category_path.iterdir()):
            if f.name.startswith(".") or f.suffix.lower() not in EXCEL_SUFFIXES:
                continue
            token = parse_round(f.name)
            if token is None:
                continue
            rounds.append({"value": token, "label": format_round_label(token), "filename": f.name})
        rounds.sort(key=lambda r: round_sort_key(r["value"]))
        return {"success": True, "data": rounds}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _cleaned_files(self, category: str, year: int | str, round: str) -> list[Path]:
        if self.cleaned_dir is None:
            return []
        exact = self.cleaned_dir / f"{category}_{year}_{round}_CLEANED.xlsx"
        if exact.exists():
            return [exact]
        if category.upper() == "KEA":
            variants = (
                self.cleaned_dir / f"KEA_{year}_{variant}_{round}_CLEANED.xlsx"
                for variant in KEA_CLEANED_VARIANTS
            )
            return [p for p in variants if p.exists()]
        return []

    def _source_files(self, category: str, year: int | str, round: str) -> list[Path] | None:
        """Files backing one (category, year, round); None when the category is unknown."""
        category_path = self.cutoff_dir / f"{category}_{year}"
        if not category_path.is_dir():
            return None
        cleaned = self._cleaned_files(category, year, round)
        if cleaned:
            logger.debug("using cleaned file(s): %s", [p.name for p in cleaned])
            return cleaned
        token = round.upper()
        return [
            f for f in sorted(category_path.iterdir())
            if not f.name.startswith(".")
            and f.suffix.lower() in EXCEL_SUFFIXES
            and parse_round(f.name) == token
        ]

    def load_cutoff_data(self, category: str, year: int | str, round: str) -> dict[str, Any]:
        """Parsed records for one (category, year, round), served from cache when fresh."""
        if not isinstance(category, str) or not isinstance(round, str):
            return _fail("category and round must be strings")
        try:
            year = int(year)
        except (TypeError, ValueError):
            return _fail(f"invalid year: {year!r}")

        cached = self.cache.get(category, year, round)
        if cached is not None:
            return cached

        files = self._source_files(category, year, round)
        if files is None:
            return _fail("Category not found")
        if not files:
            return _fail("Round file not found")

        items: list[dict[str, Any]] = []
        for path in files:
            try:
                extraction = extract_workbook(path, category=category, year=year, round=round.upper())
            except SheetReadError as e:
                logger.error("load %s: %s", path.name, e)
                return _fail(str(e))
            items.extend(_to_item(r) for r in extraction.records)

        if not items:
            return _fail("No data found in file")

        result = {"success": True, "data": items}
        self.cache.put(category, year, round, result)
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search(self, filters: Mapping[str, Any]) -> dict[str, Any]:
        """Filter one (year, category, round) data set.

        Recognized keys: year, category, round (required), college, course,
        quota (case-insensitive substring), min_rank, max_rank, limit (100).
        """
        year = filters.get("year")
        category = filters.get("category")
        round = filters.get("round")
        if not year or not category or not round:
            return _fail("Year, category, and round are required")
        if not isinstance(category, str) or not isinstance(round, str):
            return _fail("category and round must be strings")

        try:
            year = int(year)
            limit = int(filters.get("limit") or DEFAULT_LIMIT)
            min_rank = int(filters["min_rank"]) if filters.get("min_rank") else None
            max_rank = int(filters["max_rank"]) if filters.get("max_rank") else None
        except (TypeError, ValueError) as e:
            return _fail(f"invalid numeric filter: {e}")

        loaded = self.load_cutoff_data(category, year, round)
        if not loaded["success"]:
            return loaded

        data = loaded["data"]
        for key, column in (("college", "college_name"), ("course", "course_name"), ("quota", "quota")):
            needle = filters.get(key)
            if needle:
                data = [item for item in data if _contains(item.get(column), needle)]
        if min_rank is not None:
            data = [item for item in data if item["closing_rank"] >= min_rank]
        if max_rank is not None:
            data = [item for item in data if item["opening_rank"] <= max_rank]

        data = data[:limit]
        return {"success": True, "data": data, "total": len(data), "filters": dict(filters)}

    def trends(
        self,
        college: str,
        course: str,
        quota: str | None = None,
        years: int = 3,
        *,
        current_year: int | None = None,
    ) -> dict[str, Any]:
        """Round 1 cutoff of the first matching record for each of the last `years` years."""
        if not college or not course:
            return _fail("College and course are required")
        current_year = current_year or datetime.now().year
        filters = {"college": college, "course": course, "quota": quota, "years": years}

        try:
            dirs = self._category_dirs()
        except OSError as e:
            return _fail(str(e))

        points = []
        for year in range(current_year - years + 1, current_year + 1):
            point = self._year_point(dirs, year, college, course, quota)
            if point is not None:
                points.append(point)
        return {"success": True, "data": points, "filters": filters}

    def _year_point(
        self,
        dirs: list[Path],
        year: int,
        college: str,
        course: str,
        quota: str | None,
    ) -> dict[str, Any] | None:
        for path in sorted(dirs):
            parsed = parse_category_dir(path.name)
            if parsed is None or parsed[1] != year:
                continue
            category = parsed[0]
            loaded = self.load_cutoff_data(category, year, "R1")
            if not loaded["success"]:
                continue
            for item in loaded["data"]:
                if not (_contains(item["college_name"], college) and _contains(item["course_name"], course)):
                    continue
                if quota and not _contains(item["quota"], quota):
                    continue
                return {
                    "year": year,
                    "category": category,
                    "opening_rank": item["opening_rank"],
                    "closing_rank": item["closing_rank"],
                    "total_seats": item["seats"],
                }
        return None
