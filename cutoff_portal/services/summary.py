from __future__ import annotations

from ..models.processing_result import ProcessingResult

"""SUMMARY line rendering.

    SUMMARY files=<n> success=<n> failed=<n> skipped=<n> records=<n>
            persisted=<n> warnings=<n> errors=<n> elapsed_sec=<x> throughput_rps=<x>

(one line; wrapped here for readability). Numbers that are whole are printed
without a decimal part; tiny floats are printed without scientific notation.
"""

__all__ = [
    "format_number",
    "render_summary_line",
]


def format_number(value: float) -> str:
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(result: ProcessingResult) -> str:
    """Render the SUMMARY line for a finished run.

    >>> from datetime import datetime, timezone
    >>> t = datetime(2024, 1, 1, tzinfo=timezone.utc)
    >>> r = ProcessingResult(
    ...     success_files=2, failed_files=1, skipped_files=0,
    ...     total_extracted_records=120, total_persisted_records=100,
    ...     start_time=t, end_time=t, elapsed_seconds=2.0,
    ...     throughput_rows_per_sec=50.0,
    ... )
    >>> render_summary_line(r)
    'SUMMARY files=3 success=2 failed=1 skipped=0 records=120 persisted=100 warnings=0 errors=0 elapsed_sec=2 throughput_rps=50'
    """
    return (
        f"SUMMARY files={result.total_files} "
        f"success={result.success_files} "
        f"failed={result.failed_files} "
        f"skipped={result.skipped_files} "
        f"records={result.total_extracted_records} "
        f"persisted={result.total_persisted_records} "
        f"warnings={len(result.warnings)} "
        f"errors={len(result.errors)} "
        f"elapsed_sec={format_number(result.elapsed_seconds)} "
        f"throughput_rps={format_number(result.throughput_rows_per_sec)}"
    )
