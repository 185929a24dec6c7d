from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import pandas as pd

"""Spreadsheet reader.

Counselling exports do not have a usable header row in a fixed place, so each
worksheet is read raw (header=None) and handed on as a RawSheet: a list of rows,
each a list of cell values (str / int / float / None).

- .xlsx is read with openpyxl, legacy .xls with xlrd
- NaN cells become None, integral floats become int ("101.0" -> 101)
- Rows with no values at all are dropped
"""

RawSheet = list[list[Any]]

EXCEL_SUFFIXES = (".xlsx", ".xls")


class SheetReadError(Exception):
    """Raised when a workbook cannot be opened or parsed."""


def _engine_for(path: Path) -> str:
    return "xlrd" if path.suffix.lower() == ".xls" else "openpyxl"


def _clean_cell(val: Any) -> Any:
    if val is None:
        return None
    if isinstance(val, float):
        if pd.isna(val):
            return None
        if val.is_integer():
            return int(val)
        return val
    if isinstance(val, str):
        return val if val.strip() else None
    try:
        if pd.isna(val):
            return None
    except (TypeError, ValueError):  # pragma: no cover - array-likes
        pass
    return val


def dataframe_to_rows(df: pd.DataFrame) -> RawSheet:
    """Convert a header-less DataFrame into a RawSheet."""
    rows: RawSheet = []
    for raw in df.itertuples(index=False, name=None):
        row = [_clean_cell(v) for v in raw]
        # 末尾の空セルは落とす
        while row and row[-1] is None:
            row.pop()
        if not row:
            continue
        rows.append(row)
    return rows


def read_raw_sheets(path: Path, target_sheets: Iterable[str] | None = None) -> dict[str, RawSheet]:
    """Read every worksheet (or only target_sheets) of a workbook.

    Parameters
    ----------
    path: spreadsheet path (.xlsx / .xls)
    target_sheets: restrict to these sheet names (None = all sheets)

    Raises
    ------
    SheetReadError: the workbook could not be opened
    """
    wanted = set(target_sheets) if target_sheets is not None else None
    try:
        xls = pd.ExcelFile(path, engine=_engine_for(path))
    except Exception as e:
        raise SheetReadError(f"cannot open workbook {path.name}: {e}") from e

    sheets: dict[str, RawSheet] = {}
    with xls:
        for name in xls.sheet_names:
            if wanted is not None and str(name) not in wanted:
                continue
            try:
                df = xls.parse(name, header=None)
            except Exception as e:
                raise SheetReadError(f"cannot parse sheet '{name}' of {path.name}: {e}") from e
            sheets[str(name)] = dataframe_to_rows(df)
    return sheets
