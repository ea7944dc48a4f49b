from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Mapping

from sitemigrate.services.activity_log_store import ActivityLogStore

from .archivers import Archiver
from .catalog import ArchiveCatalog
from .checkpoint import CheckpointProvider
from .common import ensure_dir, new_job_id, remove_tree, sanitize_id, utc_now_iso
from .errors import MigrationError
from .models import JOB_KIND_RESTORE, JobRecord, RestoreOptions
from .phases import RESTORE_PROGRESS, RESTORE_TRANSITIONS, PhaseOutcome, RestorePhase, SliceClock, interpolate, next_phase
from .restore_steps import RestoreContext, create_restore_checkpoint, restore_database, restore_files
from .store import ProgressStore

logger = logging.getLogger(__name__)

RESTORE_JOB_PREFIX = "restore_"

RESTORE_STEPS: dict[RestorePhase, Callable[[RestoreContext], PhaseOutcome]] = {
    RestorePhase.CHECKPOINT: create_restore_checkpoint,
    RestorePhase.DATABASE: restore_database,
    RestorePhase.FILES: restore_files,
}


def _restore_progress(record: JobRecord, phase: RestorePhase, outcome: PhaseOutcome) -> int:
    if outcome is PhaseOutcome.PENDING and phase is RestorePhase.FILES:
        start, end = RESTORE_PROGRESS[RestorePhase.FILES], RESTORE_PROGRESS[RestorePhase.COMPLETE]
        return interpolate(start, end, record.extract_index, record.total_entries)
    return RESTORE_PROGRESS[phase]


class MigrationRestoreService:
    """Drives restore jobs through checkpoint -> database -> files against one source archive."""

    def __init__(
        self,
        *,
        migration_dir: Path,
        content_root: Path,
        site_db_path: Path,
        archiver: Archiver | None,
        catalog: ArchiveCatalog | None = None,
        checkpoints: CheckpointProvider | None = None,
        activity_log: ActivityLogStore | None = None,
        protected_dirs: tuple[str, ...] = (),
        slice_time_budget_s: float = 10.0,
        full_run_time_budget_s: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.migration_dir = Path(migration_dir)
        self.content_root = Path(content_root)
        self.site_db_path = Path(site_db_path)
        self.archiver = archiver
        self.catalog = catalog or ArchiveCatalog(self.migration_dir, archiver=archiver)
        self.checkpoints = checkpoints
        self.store = ProgressStore(self.migration_dir)
        self.activity_log = activity_log
        self.protected_dirs = tuple(protected_dirs)
        self.slice_time_budget_s = float(slice_time_budget_s)
        self.full_run_time_budget_s = float(full_run_time_budget_s)
        self._clock = clock

    def init_restore(self, source_id: str, options: RestoreOptions | Mapping[str, Any] | None = None) -> JobRecord:
        if not isinstance(options, RestoreOptions):
            options = RestoreOptions.from_mapping(options)

        if sanitize_id(source_id) is None or self.catalog.get_archive_file_path(source_id) is None:
            return JobRecord.failure("Migration backup not found", kind=JOB_KIND_RESTORE)
        if self.archiver is None:
            return JobRecord.failure("No ZIP archiver available on this server", kind=JOB_KIND_RESTORE)

        job_id = new_job_id(RESTORE_JOB_PREFIX)
        working_dir = self.migration_dir / job_id
        try:
            ensure_dir(self.migration_dir)
            working_dir.mkdir()
        except OSError as e:
            logger.error("[Restore] failed to create working directory %s: %s", working_dir, e)
            return JobRecord.failure("Failed to initialize migration restore", kind=JOB_KIND_RESTORE)

        record = JobRecord(
            id=job_id,
            kind=JOB_KIND_RESTORE,
            phase=RestorePhase.CHECKPOINT.value,
            options=options.as_dict(),
            created_at=utc_now_iso(),
            working_dir=str(working_dir),
            source_id=source_id,
        )
        if not self.store.save(job_id, record):
            remove_tree(working_dir)
            return JobRecord.failure("Failed to initialize migration restore", kind=JOB_KIND_RESTORE)

        logger.info("[Restore] job created: id=%s source=%s options=%s", job_id, source_id, record.options)
        return record

    def process_restore_slice(self, job_id: str, time_budget_s: float | None = None) -> JobRecord:
        record = self.store.load(job_id)
        if record is None:
            return JobRecord.failure("Restore state not found", kind=JOB_KIND_RESTORE, job_id=str(job_id or ""))
        if record.kind != JOB_KIND_RESTORE:
            return JobRecord.failure("Not a restore job", kind=JOB_KIND_RESTORE, job_id=record.id)
        if record.completed or record.error:
            return record

        try:
            phase = RestorePhase(record.phase)
            step = RESTORE_STEPS[phase]
        except (ValueError, KeyError):
            return self._fail(record, f"Unknown restore phase: {record.phase}")

        budget = self.slice_time_budget_s if time_budget_s is None else float(time_budget_s)
        clock = SliceClock(budget, clock=self._clock)
        try:
            outcome = step(self._context(record, clock))
        except MigrationError as e:
            return self._fail(record, str(e))
        except Exception as e:
            logger.exception("[Restore] unexpected failure in %s phase: job=%s", phase.value, record.id)
            return self._fail(record, f"Restore failed in {phase.value} phase: {e}")

        new_phase = next_phase(RESTORE_TRANSITIONS, phase, outcome)
        record.phase = new_phase.value
        record.progress = max(record.progress, _restore_progress(record, new_phase, outcome))

        if new_phase is RestorePhase.COMPLETE:
            return self._complete(record)

        self.store.save(record.id, record)
        return record

    def run_restore_to_completion(
        self, source_id: str, options: RestoreOptions | Mapping[str, Any] | None = None
    ) -> JobRecord:
        record = self.init_restore(source_id, options)
        while not record.completed and not record.error:
            record = self.process_restore_slice(record.id, time_budget_s=self.full_run_time_budget_s)
        return record

    def _context(self, record: JobRecord, clock: SliceClock) -> RestoreContext:
        container = self.catalog.get_archive_file_path(record.source_id or "")
        if container is None:
            raise MigrationError("Migration backup not found")
        return RestoreContext(
            record=record,
            clock=clock,
            working_dir=self.migration_dir / record.id,
            container_path=container,
            content_root=self.content_root,
            site_db_path=self.site_db_path,
            archiver=self.archiver,
            checkpoints=self.checkpoints,
            protected_dirs=self.protected_dirs,
        )

    def _complete(self, record: JobRecord) -> JobRecord:
        record.completed = True
        record.progress = 100
        record.completed_at = utc_now_iso()
        self.store.delete(record.id)
        logger.info(
            "[Restore] job complete: id=%s source=%s checkpoint=%s",
            record.id,
            record.source_id,
            record.checkpoint_id,
        )
        if self.activity_log is not None:
            self.activity_log.log(
                "migration_restored",
                {"id": record.source_id, "job_id": record.id, "checkpoint_id": record.checkpoint_id},
            )
        return record

    def _fail(self, record: JobRecord, message: str) -> JobRecord:
        logger.error("[Restore] job failed: id=%s phase=%s error=%s", record.id, record.phase, message)
        record.error = message
        self.store.save(record.id, record)
        return record
