from __future__ import annotations

import logging
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..db.sqlite_store import PersistenceError
from ..excel.extractor import extract_workbook
from ..excel.reader import SheetReadError
from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..models.config_models import ImportConfig
from ..models.excel_file import FileStatus, SourceFile
from ..models.processing_result import BatchStatsAccumulator, FileStat, ProcessingResult
from .persistence import EntityResolver, import_file_records
from .progress import ProgressTracker
from .source_files import discover_source_files

"""Import orchestration.

process_all() walks the cutoff directory and, per file:

1. parses category / year / round from the path (unparseable -> skipped)
2. reads every worksheet and extracts CutoffRecords
3. persists them in the file's own transaction (cursor=None -> dry run)

Failures of one file never stop the run: they become strings in
ProcessingResult.errors plus an ErrorRecord in the JSON-lines error log. The
only fatal condition is a missing cutoff directory (ProcessingError).
"""

__all__ = [
    "ProcessingError",
    "process_all",
]

logger = logging.getLogger(__name__)

FILE_LEVEL = "<FILE_LEVEL>"


class ProcessingError(Exception):
    """Fatal error that stops the whole run."""


def _check_directory(directory: Path) -> None:
    if not directory.exists():
        raise ProcessingError(f"Directory not found: {directory}")
    if not directory.is_dir():
        raise ProcessingError(f"Path is not a directory: {directory}")


def process_all(
    config: ImportConfig,
    cursor: Any = None,
    resolver: EntityResolver | None = None,
    *,
    error_log: ErrorLogBuffer | None = None,
) -> ProcessingResult:
    """Import every cutoff spreadsheet under config.cutoff_directory.

    Args:
        config: Import configuration
        cursor: cutoff_ranks database cursor (None = dry run, nothing written)
        resolver: college/course lookup; defaults to one on `cursor`
        error_log: buffer for ErrorRecords (a fresh ./logs buffer when omitted)

    Returns:
        ProcessingResult with aggregated counts, per-file stats, errors and
        warnings

    Raises:
        ProcessingError: the cutoff directory is missing
    """
    start_time = datetime.now(UTC)
    error_log = error_log if error_log is not None else ErrorLogBuffer()
    directory = Path(config.cutoff_directory)
    _check_directory(directory)

    if cursor is not None and resolver is None:
        resolver = EntityResolver(cursor)

    try:
        sources = discover_source_files(directory)
    except OSError as e:
        raise ProcessingError(f"Error reading directory {directory}: {e}") from e

    errors: list[str] = []
    warnings: list[str] = []
    file_stats: list[FileStat] = []
    success_count = failed_count = skipped_count = 0
    total_extracted = total_persisted = 0

    with ProgressTracker(len(sources), description="Importing cutoffs") as progress:
        for source in sources:
            progress.start_file(source.path)
            file_start = datetime.now(UTC)

            if source.status is FileStatus.SKIPPED:
                warnings.append(f"{source.name}: skipped ({source.error})")
                skipped_count += 1
                file_stats.append(FileStat(source.name, FileStatus.SKIPPED.value, 0, 0, 0.0))
                progress.finish_file(success=False)
                continue

            accumulator = BatchStatsAccumulator()
            done, layout = _process_single_file(
                source, cursor, resolver, config, error_log, errors, warnings, accumulator
            )
            elapsed = (datetime.now(UTC) - file_start).total_seconds()

            if done.status is FileStatus.SUCCESS:
                success_count += 1
                total_persisted += done.persisted_records
            else:
                failed_count += 1
            total_extracted += done.extracted_records

            total_batches, avg_batch, p95_batch = accumulator.get_stats()
            file_stats.append(
                FileStat(
                    file_name=source.name,
                    status=done.status.value,
                    extracted_records=done.extracted_records,
                    persisted_records=done.persisted_records,
                    elapsed_seconds=elapsed,
                    dropped_records=done.dropped_records,
                    layout=layout,
                    total_batches=total_batches,
                    avg_batch_seconds=avg_batch,
                    p95_batch_seconds=p95_batch,
                )
            )
            progress.set_postfix(ok=success_count, failed=failed_count, records=total_persisted)
            progress.finish_file(success=done.status is FileStatus.SUCCESS)

    try:
        log_path = error_log.flush()
        if log_path is not None:
            logger.info(f"error log written: {log_path}")
    except OSError as e:
        logger.error(f"failed to write error log: {e}")

    end_time = datetime.now(UTC)
    elapsed_seconds = (end_time - start_time).total_seconds()
    throughput = total_persisted / elapsed_seconds if elapsed_seconds > 0 else 0.0

    return ProcessingResult(
        success_files=success_count,
        failed_files=failed_count,
        skipped_files=skipped_count,
        total_extracted_records=total_extracted,
        total_persisted_records=total_persisted,
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=elapsed_seconds,
        throughput_rows_per_sec=throughput,
        file_stats=file_stats,
        errors=errors,
        warnings=warnings,
    )


def _process_single_file(
    source: SourceFile,
    cursor: Any,
    resolver: EntityResolver | None,
    config: ImportConfig,
    error_log: ErrorLogBuffer,
    errors: list[str],
    warnings: list[str],
    accumulator: BatchStatsAccumulator,
) -> tuple[SourceFile, str | None]:
    """Extract and persist one file. Returns (updated SourceFile, layout name)."""
    source = replace(source, status=FileStatus.PROCESSING)

    def fail(error_type: str, message: str, extracted: int = 0) -> tuple[SourceFile, str | None]:
        errors.append(f"{source.name}: {message}")
        error_log.append(ErrorRecord.create(source.name, FILE_LEVEL, -1, error_type, message))
        logger.error(f"{source.name}: {message}")
        return replace(source, status=FileStatus.FAILED, extracted_records=extracted, error=message), None

    try:
        extraction = extract_workbook(
            source.path, category=source.category, year=source.year, round=source.round
        )
    except SheetReadError as e:
        return fail("SHEET_READ_ERROR", str(e))

    warnings.extend(extraction.warnings)
    extracted = len(extraction.records)
    layout = extraction.layout.value
    if not extracted:
        warnings.append(f"{source.name}: no records extracted")

    if cursor is None:
        # dry run
        logger.debug(f"{source.name}: layout={layout} records={extracted} (dry run)")
        return replace(source, status=FileStatus.SUCCESS, extracted_records=extracted), layout

    resolver = resolver or EntityResolver(cursor)
    try:
        persisted = import_file_records(
            cursor,
            resolver,
            source,
            extraction.records,
            config.upsert_policy,
            batch_size=config.batch_size,
            metrics_callback=lambda m: accumulator.add_batch_time(m.elapsed_seconds),
        )
    except PersistenceError as e:
        done, _ = fail("PERSISTENCE_ERROR", str(e), extracted)
        return done, layout

    warnings.extend(persisted.warnings)
    logger.info(
        f"{source.name}: layout={layout} extracted={extracted} "
        f"persisted={persisted.inserted} dropped={persisted.dropped}"
    )
    return (
        replace(
            source,
            status=FileStatus.SUCCESS,
            extracted_records=extracted,
            persisted_records=persisted.inserted,
            dropped_records=persisted.dropped,
        ),
        layout,
    )
