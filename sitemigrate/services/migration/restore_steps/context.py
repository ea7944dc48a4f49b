from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..archivers import Archiver
from ..checkpoint import CheckpointProvider
from ..models import JobRecord, RestoreOptions
from ..phases import SliceClock


@dataclass
class RestoreContext:
    record: JobRecord
    clock: SliceClock
    working_dir: Path
    container_path: Path
    content_root: Path
    site_db_path: Path
    archiver: Archiver
    checkpoints: CheckpointProvider | None = None
    # Content-relative prefixes an archive may never write into (our own archive dirs).
    protected_dirs: tuple[str, ...] = ()

    @property
    def options(self) -> RestoreOptions:
        return RestoreOptions.from_mapping(self.record.options)

    def is_protected(self, relative: str) -> bool:
        for prefix in self.protected_dirs:
            if relative == prefix or relative.startswith(prefix.rstrip("/") + "/"):
                return True
        return False
