"""Domain models for the cutoff import and query tool.

This package contains the domain model classes used throughout the
application: configuration, extracted records and processing results.
"""

from .config_models import CacheConfig, DatabaseConfig, ImportConfig
from .cutoff_record import ClassificationLabel, CutoffRecord, NormalizedFields, SheetLayout
from .excel_file import FileStatus, SourceFile

__all__ = [
    # Configuration models
    "CacheConfig",
    "DatabaseConfig",
    "ImportConfig",
    # Extraction models
    "ClassificationLabel",
    "CutoffRecord",
    "NormalizedFields",
    "SheetLayout",
    # Processing models
    "FileStatus",
    "SourceFile",
]
