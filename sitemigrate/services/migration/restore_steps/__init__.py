from __future__ import annotations

__all__ = [
    "RestoreContext",
    "create_restore_checkpoint",
    "restore_database",
    "restore_files",
]

from .context import RestoreContext
from .checkpoint_step import create_restore_checkpoint
from .database_step import restore_database
from .files_step import restore_files
