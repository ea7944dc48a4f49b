from __future__ import annotations

__all__ = [
    "ExportContext",
    "SCRATCH_FILES",
    "write_package_config",
    "export_database",
    "enumerate_content",
    "build_archive",
    "finalize_archive",
]

from .context import SCRATCH_FILES, ExportContext
from .config_step import write_package_config
from .database_step import export_database
from .enumerate_step import enumerate_content
from .archive_step import build_archive
from .finalize_step import finalize_archive
