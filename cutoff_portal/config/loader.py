from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import CacheConfig, DatabaseConfig, ImportConfig

"""Config loader.

Responsibilities:
- Load YAML config/import.yml
- Validate against config_schema.json (shipped next to this module)
- Apply environment overrides (CUTOFF_DIRECTORY / COLLEGES_DB / CUTOFF_RANKS_DB)
- Apply defaults (upsert_policy=replace, cache ttl 300s)
"""

SCHEMA_PATH = Path(__file__).parent / "config_schema.json"
DEFAULT_CONFIG_PATH = Path("config/import.yml")

ENV_CUTOFF_DIRECTORY = "CUTOFF_DIRECTORY"
ENV_COLLEGES_DB = "COLLEGES_DB"
ENV_CUTOFF_RANKS_DB = "CUTOFF_RANKS_DB"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against JSON schema.

    Raises:
        ConfigError: If the schema file is missing or invalid, or the config
            data fails schema validation (missing required keys, wrong types,
            unknown keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    # 環境変数優先
    cutoff_dir = os.getenv(ENV_CUTOFF_DIRECTORY) or data["cutoff_directory"]
    db_raw = data["databases"]
    databases = DatabaseConfig(
        colleges=Path(os.getenv(ENV_COLLEGES_DB) or db_raw["colleges"]),
        cutoff_ranks=Path(os.getenv(ENV_CUTOFF_RANKS_DB) or db_raw["cutoff_ranks"]),
    )
    cache_raw = data.get("cache") or {}
    cache = CacheConfig(
        ttl_seconds=float(cache_raw.get("ttl_seconds", 300)),
        max_entries=int(cache_raw.get("max_entries", 64)),
    )
    cleaned = data.get("cleaned_directory")
    return ImportConfig(
        cutoff_directory=Path(cutoff_dir),
        databases=databases,
        cleaned_directory=Path(cleaned) if cleaned else None,
        upsert_policy=data.get("upsert_policy", "replace"),
        cache=cache,
        batch_size=int(data.get("batch_size", 500)),
    )
