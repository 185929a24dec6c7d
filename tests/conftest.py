# Shared pytest fixtures
from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator
from pathlib import Path

import pandas as pd
import pytest

from cutoff_portal.db.sqlite_store import connect, ensure_schema

ENV_VARS = ("CUTOFF_DIRECTORY", "COLLEGES_DB", "CUTOFF_RANKS_DB")

COLLEGES = [
    (1, "Kasturba Medical College", "KARNATAKA"),
    (2, "XYZ MEDICAL COLLEGE", "TAMIL NADU"),
    (3, "ABC DENTAL COLLEGE", "KARNATAKA"),
]

COURSES = [
    (1, 1, "MBBS"),
    (2, 2, "MBBS"),
    (3, 2, "M.D. (GENERAL MEDICINE)"),
    (4, 3, "BDS"),
]


@pytest.fixture()
def temp_workdir(tmp_path: Path, monkeypatch) -> Path:
    for name in ("config", "cutoffs", "data", "logs"):
        (tmp_path / name).mkdir()
    monkeypatch.chdir(tmp_path)
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return tmp_path


@pytest.fixture()
def sample_config_yaml() -> str:
    return """cutoff_directory: ./cutoffs
databases:
  colleges: ./data/portal.db
  cutoff_ranks: ./data/portal.db
upsert_policy: replace
batch_size: 2
cache:
  ttl_seconds: 300
  max_entries: 8
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


def make_workbook(path: Path, sheets: dict[str, list[list[object]]]) -> Path:
    """Write rows without header/index, one sheet per entry."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for sheet_name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=sheet_name, header=False, index=False)
    return path


@pytest.fixture()
def write_workbook() -> Callable[..., Path]:
    return make_workbook


def seed_catalog(cur: sqlite3.Cursor) -> None:
    cur.executemany("INSERT INTO colleges (id, name, state) VALUES (?, ?, ?)", COLLEGES)
    cur.executemany("INSERT INTO courses (id, college_id, course_name) VALUES (?, ?, ?)", COURSES)


@pytest.fixture()
def catalog_db() -> Iterator[sqlite3.Connection]:
    """In-memory database with both schemas and a few colleges/courses."""
    conn = connect(":memory:")
    cur = conn.cursor()
    ensure_schema(cur)
    seed_catalog(cur)
    yield conn
    conn.close()


# Row-group sheet used across tests (XYZ: 2 records, ABC: 1 record)
ROW_GROUP_ROWS: list[list[object]] = [
    ["XYZ MEDICAL COLLEGE"],
    ["MBBS"],
    ["OBC"],
    ["STATE"],
    ["101"],
    ["102"],
    ["ABC DENTAL COLLEGE"],
    ["BDS"],
    ["SC"],
    ["OPEN"],
    ["2040"],
    ["GRAND TOTAL", 500],
]

KEA_ROWS: list[list[object]] = [
    ["ABC DENTAL COLLEGE"],
    ["BDS"],
    ["2AG NRI"],
    ["450"],
]


@pytest.fixture()
def populated_workdir(write_config: Path) -> Path:
    """Two parseable cutoff files plus a seeded ./data/portal.db; returns the config path."""
    root = write_config.parent.parent
    make_workbook(root / "cutoffs" / "AIQ_UG_2024" / "AIQ_UG_2024_R1.xlsx", {"Sheet1": ROW_GROUP_ROWS})
    make_workbook(root / "cutoffs" / "KEA_2024" / "KEA_2024_R1.xlsx", {"Sheet1": KEA_ROWS})
    conn = connect(root / "data" / "portal.db")
    try:
        cur = conn.cursor()
        ensure_schema(cur)
        seed_catalog(cur)
    finally:
        conn.close()
    return write_config
