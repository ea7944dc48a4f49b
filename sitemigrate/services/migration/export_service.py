from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Mapping

from sitemigrate.services.activity_log_store import ActivityLogStore

from .archivers import Archiver
from .catalog import ArchiveCatalog
from .common import ensure_dir, new_job_id, remove_tree, sanitize_id, utc_now_iso
from .environment import SiteEnvironment
from .errors import MigrationError
from .export_steps import (
    ExportContext,
    build_archive,
    enumerate_content,
    export_database,
    finalize_archive,
    write_package_config,
)
from .models import JOB_KIND_EXPORT, ArchiveMetadata, ExportOptions, JobRecord
from .phases import EXPORT_PROGRESS, EXPORT_TRANSITIONS, ExportPhase, PhaseOutcome, SliceClock, interpolate, next_phase
from .store import ProgressStore

logger = logging.getLogger(__name__)

EXPORT_STEPS: dict[ExportPhase, Callable[[ExportContext], PhaseOutcome]] = {
    ExportPhase.CONFIG: write_package_config,
    ExportPhase.DATABASE: export_database,
    ExportPhase.ENUMERATE: enumerate_content,
    ExportPhase.ARCHIVE: build_archive,
    ExportPhase.FINALIZE: finalize_archive,
}


def _export_progress(record: JobRecord, phase: ExportPhase, outcome: PhaseOutcome) -> int:
    # Long phases move within their band; everything else jumps to the next phase's start.
    if outcome is PhaseOutcome.PENDING:
        if phase is ExportPhase.DATABASE:
            start, end = EXPORT_PROGRESS[ExportPhase.DATABASE], EXPORT_PROGRESS[ExportPhase.ENUMERATE]
            return interpolate(start, end, record.table_index, record.total_tables)
        if phase is ExportPhase.ARCHIVE:
            start, end = EXPORT_PROGRESS[ExportPhase.ARCHIVE], EXPORT_PROGRESS[ExportPhase.FINALIZE]
            return interpolate(start, end, record.archived_files, record.total_files_count)
    return EXPORT_PROGRESS[phase]


class MigrationExportService:
    """
    Drives export jobs through config -> database -> enumerate -> archive -> finalize.

    Every public method returns a record (or bool) instead of raising: phase failures end up in
    `record.error` and are persisted so the caller can inspect them.
    """

    def __init__(
        self,
        *,
        migration_dir: Path,
        content_root: Path,
        site_db_path: Path,
        environment: SiteEnvironment,
        archiver: Archiver | None,
        catalog: ArchiveCatalog | None = None,
        activity_log: ActivityLogStore | None = None,
        own_dirs: tuple[str, ...] = (),
        slice_time_budget_s: float = 10.0,
        full_run_time_budget_s: float = 300.0,
        max_migrations: int = 3,
        use_external_dump: bool = True,
        sqlite_bin: str = "sqlite3",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.migration_dir = Path(migration_dir)
        self.content_root = Path(content_root)
        self.site_db_path = Path(site_db_path)
        self.environment = environment
        self.archiver = archiver
        self.catalog = catalog or ArchiveCatalog(self.migration_dir, archiver=archiver)
        self.store = ProgressStore(self.migration_dir)
        self.activity_log = activity_log
        self.own_dirs = tuple(own_dirs)
        self.slice_time_budget_s = float(slice_time_budget_s)
        self.full_run_time_budget_s = float(full_run_time_budget_s)
        self.max_migrations = int(max_migrations)
        self.use_external_dump = bool(use_external_dump)
        self.sqlite_bin = sqlite_bin
        self._clock = clock

    def init_export(self, options: ExportOptions | Mapping[str, Any] | None = None) -> JobRecord:
        if not isinstance(options, ExportOptions):
            options = ExportOptions.from_mapping(options)

        job_id = new_job_id()
        working_dir = self.migration_dir / job_id
        try:
            ensure_dir(self.migration_dir)
            working_dir.mkdir()
        except OSError as e:
            logger.error("[Export] failed to create working directory %s: %s", working_dir, e)
            return JobRecord.failure("Failed to initialize migration export", kind=JOB_KIND_EXPORT)

        record = JobRecord(
            id=job_id,
            kind=JOB_KIND_EXPORT,
            phase=ExportPhase.CONFIG.value,
            options=options.as_dict(),
            created_at=utc_now_iso(),
            working_dir=str(working_dir),
        )
        if not self.store.save(job_id, record):
            remove_tree(working_dir)
            return JobRecord.failure("Failed to initialize migration export", kind=JOB_KIND_EXPORT)

        logger.info("[Export] job created: id=%s options=%s", job_id, record.options)
        return record

    def process_export_slice(self, job_id: str, time_budget_s: float | None = None) -> JobRecord:
        """Advance the job by exactly one phase step within the time budget and persist it."""
        record = self.store.load(job_id)
        if record is None:
            metadata = self.catalog.get_archive_metadata(job_id)
            if metadata is not None:
                return self._record_from_metadata(metadata)
            return JobRecord.failure("Migration state not found", kind=JOB_KIND_EXPORT, job_id=str(job_id or ""))
        if record.kind != JOB_KIND_EXPORT:
            return JobRecord.failure("Not an export job", kind=JOB_KIND_EXPORT, job_id=record.id)
        if record.completed or record.error:
            return record

        budget = self.slice_time_budget_s if time_budget_s is None else float(time_budget_s)
        clock = SliceClock(budget, clock=self._clock)
        try:
            phase = ExportPhase(record.phase)
            step = EXPORT_STEPS[phase]
        except (ValueError, KeyError):
            return self._fail(record, f"Unknown export phase: {record.phase}")

        try:
            outcome = step(self._context(record, clock))
        except MigrationError as e:
            return self._fail(record, str(e))
        except Exception as e:
            logger.exception("[Export] unexpected failure in %s phase: job=%s", phase.value, record.id)
            return self._fail(record, f"Export failed in {phase.value} phase: {e}")

        new_phase = next_phase(EXPORT_TRANSITIONS, phase, outcome)
        record.phase = new_phase.value
        record.progress = max(record.progress, _export_progress(record, new_phase, outcome))

        if new_phase is ExportPhase.COMPLETE:
            # Finalize already removed state.json; migration.json is the durable result now.
            record.completed = True
            record.progress = 100
            self._log_activity(
                "migration_created",
                {"id": record.id, "size": record.archive_size_human, "files": record.archived_files},
            )
            return record

        self.store.save(record.id, record)
        return record

    def run_export_to_completion(self, options: ExportOptions | Mapping[str, Any] | None = None) -> JobRecord:
        """Single-call export: every slice gets the long budget and slices repeat until done."""
        record = self.init_export(options)
        while not record.completed and not record.error:
            record = self.process_export_slice(record.id, time_budget_s=self.full_run_time_budget_s)
        return record

    def cancel_export(self, job_id: str) -> bool:
        """Abandon an in-flight export and delete its working directory."""
        if sanitize_id(job_id) is None:
            return False
        record = self.store.load(job_id)
        if record is None or record.kind != JOB_KIND_EXPORT:
            return False
        if not self.store.delete(job_id):
            return False
        logger.info("[Export] job cancelled: id=%s phase=%s", job_id, record.phase)
        self._log_activity("migration_cancelled", {"id": job_id, "phase": record.phase})
        return True

    def _context(self, record: JobRecord, clock: SliceClock) -> ExportContext:
        return ExportContext(
            record=record,
            clock=clock,
            working_dir=self.migration_dir / record.id,
            content_root=self.content_root,
            site_db_path=self.site_db_path,
            environment=self.environment,
            catalog=self.catalog,
            archiver=self.archiver,
            own_dirs=self.own_dirs,
            use_external_dump=self.use_external_dump,
            sqlite_bin=self.sqlite_bin,
            max_migrations=self.max_migrations,
        )

    def _fail(self, record: JobRecord, message: str) -> JobRecord:
        logger.error("[Export] job failed: id=%s phase=%s error=%s", record.id, record.phase, message)
        record.error = message
        self.store.save(record.id, record)
        return record

    def _record_from_metadata(self, metadata: ArchiveMetadata) -> JobRecord:
        return JobRecord(
            id=metadata.id,
            kind=JOB_KIND_EXPORT,
            phase=ExportPhase.COMPLETE.value,
            progress=100,
            completed=True,
            options=dict(metadata.options),
            created_at=metadata.created_at,
            completed_at=metadata.completed_at,
            total_files_count=metadata.total_files,
            total_files_size=metadata.total_files_size,
            archived_files=metadata.total_files,
            archived_size=metadata.total_files_size,
            db_archived=metadata.has_database,
            archive_size=metadata.archive_size,
            archive_size_human=metadata.archive_size_human,
        )

    def _log_activity(self, action: str, details: dict[str, Any]) -> None:
        if self.activity_log is not None:
            self.activity_log.log(action, details)
