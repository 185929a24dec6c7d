from __future__ import annotations

import logging
import re
from pathlib import Path

from ..excel.reader import EXCEL_SUFFIXES
from ..models.excel_file import FileStatus, SourceFile

"""Source file discovery and name parsing.

Cutoff spreadsheets live under

    <cutoff_directory>/<CATEGORY>_<YEAR>/<anything>_<ROUND>.xlsx

Category and year come from the directory name, the round token from the file
name. Files directly under the root may carry both in their own name
(AIQ_PG_2024_R1.xlsx). Anything that cannot be parsed is reported as SKIPPED.
"""

__all__ = [
    "ROUND_ORDER",
    "parse_category_dir",
    "parse_round",
    "round_number",
    "round_sort_key",
    "format_category_label",
    "format_round_label",
    "describe_source_file",
    "discover_source_files",
]

logger = logging.getLogger(__name__)

CATEGORY_DIR_RE = re.compile(r"^([A-Z_]+)_(\d{4})$")
CATEGORY_FILE_RE = re.compile(r"^([A-Z_]+?)_(\d{4})(?:_|$)")
ROUND_RE = re.compile(r"(R\d+|SPECIAL_STRAY|EXTENDED_STRAY|STRAY_BDS|STRAY|MOPUP)")

ROUND_ORDER = ("R1", "R2", "R3", "R4", "R5", "SPECIAL_STRAY", "STRAY", "MOPUP")

# cutoff_ranks.round_number
ROUND_NUMBERS = {
    "STRAY": 6,
    "SPECIAL_STRAY": 7,
    "MOPUP": 8,
    "EXTENDED_STRAY": 9,
    "STRAY_BDS": 10,
}

CATEGORY_LABELS = {
    "AIQ_UG": "AIQ Undergraduate",
    "AIQ_PG": "AIQ Postgraduate",
    "KEA": "Karnataka (KEA)",
    "KEA_UG": "Karnataka Undergraduate",
    "KEA_PG": "Karnataka Postgraduate",
}

ROUND_LABELS = {
    "SPECIAL_STRAY": "Special Stray",
    "EXTENDED_STRAY": "Extended Stray",
    "STRAY_BDS": "Stray (BDS)",
    "STRAY": "Stray",
    "MOPUP": "Mop-up",
}


def parse_category_dir(name: str) -> tuple[str, int] | None:
    """"AIQ_PG_2024" -> ("AIQ_PG", 2024); None when the name does not match."""
    m = CATEGORY_DIR_RE.match(name)
    if not m:
        return None
    return m.group(1), int(m.group(2))


def parse_round(file_name: str) -> str | None:
    m = ROUND_RE.search(Path(file_name).stem.upper())
    return m.group(1) if m else None


def round_number(token: str | None) -> int:
    """R1..Rn -> n; stray/mop-up rounds get fixed numbers above 5; default 1."""
    if not token:
        return 1
    token = token.upper()
    if token in ROUND_NUMBERS:
        return ROUND_NUMBERS[token]
    m = re.fullmatch(r"R(\d+)", token)
    return int(m.group(1)) if m else 1


def round_sort_key(token: str) -> tuple[int, str]:
    if token in ROUND_ORDER:
        return ROUND_ORDER.index(token), token
    return len(ROUND_ORDER), token


def format_category_label(category: str) -> str:
    return CATEGORY_LABELS.get(category, category.replace("_", " "))


def format_round_label(token: str) -> str:
    m = re.fullmatch(r"R(\d+)", token)
    if m:
        return f"Round {m.group(1)}"
    return ROUND_LABELS.get(token, token)


def _is_hidden(path: Path) -> bool:
    # "~$" は Excel のロックファイル
    return path.name.startswith((".", "~$"))


def describe_source_file(path: Path, root: Path | None = None) -> SourceFile:
    """Build a SourceFile from a path, parsing category/year/round from it.

    With root given, the path relative to it becomes the re-import key.
    """
    relative = path.relative_to(root).as_posix() if root is not None else None
    parsed = parse_category_dir(path.parent.name)
    if parsed is None:
        m = CATEGORY_FILE_RE.match(path.stem.upper())
        parsed = (m.group(1), int(m.group(2))) if m else None
    category, year = parsed if parsed else (None, None)
    token = parse_round(path.name)

    if year is None or token is None:
        missing = "year" if year is None else "round"
        return SourceFile(
            path=path,
            name=path.name,
            category=category,
            year=year,
            round=token,
            status=FileStatus.SKIPPED,
            error=f"cannot parse {missing} from '{path.parent.name}/{path.name}'",
            relative_path=relative,
        )
    return SourceFile(
        path=path, name=path.name, category=category, year=year, round=token, relative_path=relative
    )


def discover_source_files(root: Path) -> list[SourceFile]:
    """Recursively find cutoff spreadsheets under root (sorted by path).

    Hidden files and Excel lock files are ignored. Files whose name cannot be
    parsed are returned with status SKIPPED so the caller can report them.
    """
    files: list[SourceFile] = []
    for path in sorted(root.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in EXCEL_SUFFIXES:
            continue
        if _is_hidden(path) or any(part.startswith(".") for part in path.relative_to(root).parts[:-1]):
            continue
        source = describe_source_file(path, root)
        if source.status is FileStatus.SKIPPED:
            logger.warning("skipping %s: %s", path.name, source.error)
        files.append(source)
    return files
