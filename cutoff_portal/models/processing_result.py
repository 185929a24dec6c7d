from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from datetime import datetime

"""Processing result models for the cutoff import run.

Aggregates per-file statistics, the collected error/warning strings and the
numbers rendered on the SUMMARY line.
"""


@dataclass(frozen=True)
class FileStat:
    """Per-file processing statistics (internal helper for ProcessingResult)."""
    file_name: str
    status: str  # success / failed / skipped
    extracted_records: int  # レコード抽出数
    persisted_records: int  # 書き込み行数
    elapsed_seconds: float
    dropped_records: int = 0  # lookup failures etc.
    layout: str | None = None
    total_batches: int = 0
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0


@dataclass(frozen=True)
class ProcessingResult:
    """Aggregated results and summary output for one import run."""
    success_files: int
    failed_files: int
    skipped_files: int
    total_extracted_records: int
    total_persisted_records: int
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    throughput_rows_per_sec: float
    file_stats: list[FileStat] | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def total_files(self) -> int:
        return self.success_files + self.failed_files + self.skipped_files


class BatchStatsAccumulator:
    """Collects batch insert timings for one file and summarizes them."""

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate batch statistics.

        Returns:
            tuple: (total_batches, avg_batch_seconds, p95_batch_seconds)
        """
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]  # 95th percentile

        return (total_batches, avg_batch_seconds, p95_batch_seconds)
