from __future__ import annotations

import argparse
import json
import logging
import sqlite3
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from ..db.sqlite_store import connect, ensure_catalog_schema, ensure_cutoff_schema
from ..excel.extractor import detect_layout
from ..excel.reader import SheetReadError, read_raw_sheets
from ..logging.init import log_summary, setup_logging
from ..models.config_models import ImportConfig
from ..services.cache import ParseCache
from ..services.cutoff_query import DEFAULT_LIMIT, CutoffQueryService
from ..services.orchestrator import ProcessingError, process_all
from ..services.persistence import EntityResolver
from ..services.source_files import discover_source_files
from ..services.summary import render_summary_line

"""CLI entrypoint.

    python -m cutoff_portal.cli [--config PATH] [--debug] [--dry-run] [--inspect-data]
    python -m cutoff_portal.cli search --category AIQ_PG --year 2024 --round R1 [--college ...]

Exit codes: 0 all files imported (or nothing to do), 2 at least one file
failed, 1 fatal (bad config, missing directory, database unavailable).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

SUMMARY_PREFIX = "SUMMARY "


def _load_env_file(path: Path, override: bool = True) -> None:
    """.env の値を既存の環境変数より優先する"""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


@contextmanager
def _db_cursors(cfg: ImportConfig) -> Iterator[tuple[sqlite3.Cursor, EntityResolver]]:
    """cutoff_ranks cursor plus a resolver on the colleges database.

    A single connection is used when both settings point at the same file.
    """
    cutoff_conn = connect(cfg.databases.cutoff_ranks)
    same_file = Path(cfg.databases.colleges).resolve() == Path(cfg.databases.cutoff_ranks).resolve()
    colleges_conn = cutoff_conn if same_file else connect(cfg.databases.colleges)
    try:
        cutoff_cur = cutoff_conn.cursor()
        colleges_cur = colleges_conn.cursor()
        ensure_catalog_schema(colleges_cur)
        ensure_cutoff_schema(cutoff_cur)
        yield cutoff_cur, EntityResolver(colleges_cur)
    finally:
        if colleges_conn is not cutoff_conn:
            colleges_conn.close()
        cutoff_conn.close()


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="cutoff_portal",
        description="Counselling cutoff spreadsheets -> SQLite importer",
    )
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to import.yml")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--dry-run", action="store_true", help="Parse and extract only, write nothing")
    p.add_argument("--inspect-data", action="store_true", help="Print detected layout & first rows then exit")

    sub = p.add_subparsers(dest="command")
    s = sub.add_parser("search", help="Query cutoff spreadsheets directly and print JSON")
    s.add_argument("--category", required=True)
    s.add_argument("--year", required=True, type=int)
    s.add_argument("--round", required=True)
    s.add_argument("--college")
    s.add_argument("--course")
    s.add_argument("--quota")
    s.add_argument("--min-rank", type=int)
    s.add_argument("--max-rank", type=int)
    s.add_argument("--limit", type=int, default=DEFAULT_LIMIT)
    return p.parse_args(argv)


def _inspect_data(cfg: ImportConfig) -> int:
    sources = discover_source_files(cfg.cutoff_directory)
    if not sources:
        print("inspect: no spreadsheet files")
        return EXIT_SUCCESS_ALL
    for source in sources:
        print(
            f"FILE: {source.name} category={source.category} year={source.year} "
            f"round={source.round} status={source.status.value}"
        )
        try:
            sheets = read_raw_sheets(source.path)
        except SheetReadError as e:
            print(f"  read_error: {e}")
            continue
        for sheet_name, rows in sheets.items():
            print(f"  SHEET: {sheet_name} rows={len(rows)} layout={detect_layout(rows).value}")
            for row in rows[:3]:
                print("    ", [str(v) if v is not None else None for v in row])
    return EXIT_SUCCESS_ALL


def _search(cfg: ImportConfig, args: argparse.Namespace) -> int:
    service = CutoffQueryService(
        cfg.cutoff_directory,
        cleaned_dir=cfg.cleaned_directory,
        cache=ParseCache(cfg.cache.ttl_seconds, cfg.cache.max_entries),
    )
    result = service.search(
        {
            "year": args.year,
            "category": args.category,
            "round": args.round,
            "college": args.college,
            "course": args.course,
            "quota": args.quota,
            "min_rank": args.min_rank,
            "max_rank": args.max_rank,
            "limit": args.limit,
        }
    )
    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))
    return EXIT_SUCCESS_ALL if result["success"] else EXIT_FATAL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # [] はそのまま使う (None のときだけ sys.argv)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.debug:
        logger.setLevel(logging.DEBUG)
        for h in logger.handlers:
            h.setLevel(logging.DEBUG)
        logger.debug("debug mode enabled")

    if args.command == "search":
        return _search(cfg, args)

    directory = Path(cfg.cutoff_directory)
    if not directory.is_dir():
        logger.error(f"directory not found: {directory}")
        return EXIT_FATAL

    logger.info(f"Processing files from: {directory}")

    if args.inspect_data:
        return _inspect_data(cfg)

    try:
        if args.dry_run:
            mode = "dry-run"
            result = process_all(cfg, cursor=None)
        else:
            mode = "live"
            with _db_cursors(cfg) as (cursor, resolver):
                result = process_all(cfg, cursor=cursor, resolver=resolver)
    except ProcessingError as e:
        logger.error(f"processing: {e}")
        return EXIT_FATAL
    except sqlite3.Error as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL

    logger.info(f"mode={mode} records={result.total_extracted_records} persisted={result.total_persisted_records}")

    # log_summary が "SUMMARY " を付ける
    log_summary(render_summary_line(result)[len(SUMMARY_PREFIX):])

    if result.failed_files > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
