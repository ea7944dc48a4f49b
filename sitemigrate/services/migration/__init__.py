from __future__ import annotations

__all__ = [
    "ArchiveCatalog",
    "ArchiveMetadata",
    "ExportOptions",
    "JobRecord",
    "MigrationError",
    "MigrationExportService",
    "MigrationRestoreService",
    "ProgressStore",
    "RestoreOptions",
    "SqliteCheckpointProvider",
    "get_archiver",
]

from .archivers import get_archiver
from .catalog import ArchiveCatalog
from .checkpoint import SqliteCheckpointProvider
from .errors import MigrationError
from .export_service import MigrationExportService
from .models import ArchiveMetadata, ExportOptions, JobRecord, RestoreOptions
from .restore_service import MigrationRestoreService
from .store import ProgressStore
