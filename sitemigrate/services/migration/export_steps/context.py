from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..archivers import Archiver
from ..catalog import ARCHIVE_FILE, ArchiveCatalog
from ..environment import SiteEnvironment
from ..models import ExportOptions, JobRecord
from ..phases import SliceClock

CONFIG_FILE = "config.json"
DUMP_FILE = "database.sql"
MANIFEST_FILE = "filemap.txt"

# Working files removed once the archive is finalized.
SCRATCH_FILES = (MANIFEST_FILE, "state.json", DUMP_FILE, CONFIG_FILE)


@dataclass
class ExportContext:
    record: JobRecord
    clock: SliceClock
    working_dir: Path
    content_root: Path
    site_db_path: Path
    environment: SiteEnvironment
    catalog: ArchiveCatalog
    archiver: Archiver | None = None
    own_dirs: tuple[str, ...] = ()
    use_external_dump: bool = True
    sqlite_bin: str = "sqlite3"
    max_migrations: int = 3

    @property
    def options(self) -> ExportOptions:
        return ExportOptions.from_mapping(self.record.options)

    @property
    def config_path(self) -> Path:
        return self.working_dir / CONFIG_FILE

    @property
    def dump_path(self) -> Path:
        return self.working_dir / DUMP_FILE

    @property
    def manifest_path(self) -> Path:
        return self.working_dir / MANIFEST_FILE

    @property
    def container_path(self) -> Path:
        return self.working_dir / ARCHIVE_FILE
