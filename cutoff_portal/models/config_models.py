from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

"""Config dataclasses for the cutoff import tool.

These are the typed form of config/import.yml after schema validation and
environment overrides have been applied by cutoff_portal.config.loader.
"""

UPSERT_POLICIES = ("replace", "ignore")


@dataclass(frozen=True)
class DatabaseConfig:
    """SQLite database file locations.

    Environment variables (COLLEGES_DB / CUTOFF_RANKS_DB) take precedence over
    these values.
    """
    colleges: Path  # colleges + courses (lookup only)
    cutoff_ranks: Path  # cutoff_ranks (written by the importer)


@dataclass(frozen=True)
class CacheConfig:
    """Parse cache settings for the on-demand query path."""
    ttl_seconds: float = 300.0
    max_entries: int = 64


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for import and query runs."""
    cutoff_directory: Path  # <CATEGORY>_<YEAR>/<...>_<ROUND>.xlsx tree
    databases: DatabaseConfig
    cleaned_directory: Path | None = None  # optional pre-cleaned copies
    upsert_policy: str = "replace"  # replace | ignore
    cache: CacheConfig = CacheConfig()
    batch_size: int = 500
