from __future__ import annotations

import sqlite3
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

"""SQLite storage: connections, schema bootstrap and batched INSERT.

- Connections run in autocommit mode (isolation_level=None); callers issue
  BEGIN / COMMIT / ROLLBACK explicitly, one transaction per source file.
- WAL journal, synchronous=NORMAL, temp_store=MEMORY, foreign_keys=ON.
- recursive_triggers=ON so that rows removed by INSERT OR REPLACE also fire the
  delete triggers that keep the FTS5 tables in sync.
- Schema bootstrap is CREATE ... IF NOT EXISTS only; no migrations.
"""

__all__ = [
    "PersistenceError",
    "BatchMetrics",
    "InsertResult",
    "CUTOFF_COLUMNS",
    "connect",
    "ensure_catalog_schema",
    "ensure_cutoff_schema",
    "ensure_schema",
    "batch_insert",
]

PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA temp_store = MEMORY",
    "PRAGMA foreign_keys = ON",
    "PRAGMA recursive_triggers = ON",
)

CONFLICT_CLAUSES = {
    None: "INSERT",
    "replace": "INSERT OR REPLACE",
    "ignore": "INSERT OR IGNORE",
}

CATALOG_SCHEMA = """
CREATE TABLE IF NOT EXISTS colleges (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    state TEXT,
    type TEXT,
    address TEXT,
    management_type TEXT,
    university TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS courses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    college_id INTEGER NOT NULL,
    course_name TEXT NOT NULL,
    seats INTEGER NOT NULL DEFAULT 0,
    fees_structure TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (college_id) REFERENCES colleges(id)
);

CREATE INDEX IF NOT EXISTS idx_colleges_name ON colleges(name);
CREATE INDEX IF NOT EXISTS idx_colleges_state ON colleges(state);
CREATE INDEX IF NOT EXISTS idx_courses_college_id ON courses(college_id);

CREATE VIRTUAL TABLE IF NOT EXISTS colleges_fts USING fts5(
    name, state, address,
    content='colleges',
    content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS colleges_ai AFTER INSERT ON colleges BEGIN
    INSERT INTO colleges_fts(rowid, name, state, address)
    VALUES (new.id, new.name, new.state, new.address);
END;
CREATE TRIGGER IF NOT EXISTS colleges_ad AFTER DELETE ON colleges BEGIN
    INSERT INTO colleges_fts(colleges_fts, rowid, name, state, address)
    VALUES ('delete', old.id, old.name, old.state, old.address);
END;
CREATE TRIGGER IF NOT EXISTS colleges_au AFTER UPDATE ON colleges BEGIN
    INSERT INTO colleges_fts(colleges_fts, rowid, name, state, address)
    VALUES ('delete', old.id, old.name, old.state, old.address);
    INSERT INTO colleges_fts(rowid, name, state, address)
    VALUES (new.id, new.name, new.state, new.address);
END;

CREATE VIRTUAL TABLE IF NOT EXISTS courses_fts USING fts5(
    course_name,
    content='courses',
    content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS courses_ai AFTER INSERT ON courses BEGIN
    INSERT INTO courses_fts(rowid, course_name) VALUES (new.id, new.course_name);
END;
CREATE TRIGGER IF NOT EXISTS courses_ad AFTER DELETE ON courses BEGIN
    INSERT INTO courses_fts(courses_fts, rowid, course_name)
    VALUES ('delete', old.id, old.course_name);
END;
CREATE TRIGGER IF NOT EXISTS courses_au AFTER UPDATE ON courses BEGIN
    INSERT INTO courses_fts(courses_fts, rowid, course_name)
    VALUES ('delete', old.id, old.course_name);
    INSERT INTO courses_fts(rowid, course_name) VALUES (new.id, new.course_name);
END;
"""

CUTOFF_SCHEMA = """
CREATE TABLE IF NOT EXISTS cutoff_ranks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    college_id INTEGER NOT NULL,
    course_id INTEGER NOT NULL,
    counselling_type TEXT NOT NULL,
    counselling_year INTEGER NOT NULL,
    round_number INTEGER NOT NULL,
    round_name TEXT NOT NULL,
    quota_type TEXT NOT NULL,
    category TEXT NOT NULL,
    cutoff_rank INTEGER NOT NULL,
    cutoff_percentile REAL,
    seats_available INTEGER NOT NULL DEFAULT 0,
    seats_filled INTEGER DEFAULT 0,
    fees_amount INTEGER,
    college_name TEXT,
    course_name TEXT,
    state TEXT,
    source_filename TEXT NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(college_id, course_id, counselling_type, counselling_year, round_number, quota_type, category)
);

CREATE INDEX IF NOT EXISTS idx_cutoff_college_course ON cutoff_ranks(college_id, course_id);
CREATE INDEX IF NOT EXISTS idx_cutoff_counselling_type ON cutoff_ranks(counselling_type);
CREATE INDEX IF NOT EXISTS idx_cutoff_year_round ON cutoff_ranks(counselling_year, round_number);
CREATE INDEX IF NOT EXISTS idx_cutoff_quota_category ON cutoff_ranks(quota_type, category);
CREATE INDEX IF NOT EXISTS idx_cutoff_rank ON cutoff_ranks(cutoff_rank);
CREATE INDEX IF NOT EXISTS idx_cutoff_source ON cutoff_ranks(source_filename);

CREATE VIRTUAL TABLE IF NOT EXISTS cutoff_ranks_fts USING fts5(
    college_name, course_name,
    content='cutoff_ranks',
    content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS cutoff_ranks_ai AFTER INSERT ON cutoff_ranks BEGIN
    INSERT INTO cutoff_ranks_fts(rowid, college_name, course_name)
    VALUES (new.id, new.college_name, new.course_name);
END;
CREATE TRIGGER IF NOT EXISTS cutoff_ranks_ad AFTER DELETE ON cutoff_ranks BEGIN
    INSERT INTO cutoff_ranks_fts(cutoff_ranks_fts, rowid, college_name, course_name)
    VALUES ('delete', old.id, old.college_name, old.course_name);
END;
CREATE TRIGGER IF NOT EXISTS cutoff_ranks_au AFTER UPDATE ON cutoff_ranks BEGIN
    INSERT INTO cutoff_ranks_fts(cutoff_ranks_fts, rowid, college_name, course_name)
    VALUES ('delete', old.id, old.college_name, old.course_name);
    INSERT INTO cutoff_ranks_fts(rowid, college_name, course_name)
    VALUES (new.id, new.college_name, new.course_name);
END;
"""

# Insert column order used by the persistence service.
CUTOFF_COLUMNS = (
    "college_id",
    "course_id",
    "counselling_type",
    "counselling_year",
    "round_number",
    "round_name",
    "quota_type",
    "category",
    "cutoff_rank",
    "cutoff_percentile",
    "seats_available",
    "seats_filled",
    "fees_amount",
    "college_name",
    "course_name",
    "state",
    "source_filename",
)


class PersistenceError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing for a single executemany call."""
    batch_size: int
    elapsed_seconds: float
    start_time: float
    end_time: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    total_batches: int = 0


def connect(path: Path | str) -> sqlite3.Connection:
    """Open a SQLite database in autocommit mode with the standard pragmas."""
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), isolation_level=None)
    for pragma in PRAGMAS:
        conn.execute(pragma)
    return conn


def ensure_catalog_schema(cursor: Any) -> None:
    """colleges / courses plus their FTS5 tables and sync triggers."""
    cursor.executescript(CATALOG_SCHEMA)


def ensure_cutoff_schema(cursor: Any) -> None:
    cursor.executescript(CUTOFF_SCHEMA)


def ensure_schema(cursor: Any) -> None:
    """Both schemas in one database (single-file setups and tests)."""
    ensure_catalog_schema(cursor)
    ensure_cutoff_schema(cursor)


def _chunks(rows: list[Sequence[Any]], size: int) -> Iterable[list[Sequence[Any]]]:
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    *,
    conflict: str | None = None,
    page_size: int = 500,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Insert rows with executemany, page_size rows per call.

    Parameters
    ----------
    cursor: sqlite3 cursor (transaction is managed by the caller)
    table: target table (trusted identifier)
    columns: insert column names
    rows: value tuples in column order
    conflict: None / "replace" / "ignore" (INSERT OR REPLACE / INSERT OR IGNORE)
    page_size: rows per executemany call
    metrics_callback: receives BatchMetrics after every page, even a failed one.
        Not called at all when rows is empty.

    Returns InsertResult.inserted_rows as reported by SQLite (rows skipped by
    OR IGNORE are not counted).
    """
    if conflict not in CONFLICT_CLAUSES:
        raise PersistenceError(f"unknown conflict policy: {conflict}")
    if page_size < 1:
        raise PersistenceError(f"page_size must be >= 1 (got {page_size})")

    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0)

    cols_sql = ", ".join(f'"{c}"' for c in columns)
    placeholders = ", ".join("?" for _ in columns)
    sql = f"{CONFLICT_CLAUSES[conflict]} INTO {table} ({cols_sql}) VALUES ({placeholders})"

    inserted = 0
    batches = 0
    for page in _chunks(rows_list, page_size):
        start_time = time.time()
        try:
            cursor.executemany(sql, page)
            inserted += max(cursor.rowcount, 0)
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e
        finally:
            end_time = time.time()
            batches += 1
            if metrics_callback is not None:
                metrics_callback(
                    BatchMetrics(
                        batch_size=len(page),
                        elapsed_seconds=end_time - start_time,
                        start_time=start_time,
                        end_time=end_time,
                    )
                )
    return InsertResult(inserted_rows=inserted, total_batches=batches)
