from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from sitemigrate.app.core.config import settings
from sitemigrate.app.core.paths import (
    resolve_checkpoint_dir,
    resolve_content_dir,
    resolve_migration_dir,
    resolve_repo_path,
    resolve_site_db_path,
)
from sitemigrate.database.schema import ensure_schema
from sitemigrate.services.activity_log_store import ActivityLogStore
from sitemigrate.services.migration import (
    ArchiveCatalog,
    MigrationExportService,
    MigrationRestoreService,
    SqliteCheckpointProvider,
    get_archiver,
)
from sitemigrate.services.migration.environment import environment_from_settings

logger = logging.getLogger(__name__)


@dataclass
class AppDependencies:
    export_service: MigrationExportService
    restore_service: MigrationRestoreService
    catalog: ArchiveCatalog
    checkpoints: SqliteCheckpointProvider
    activity_log: ActivityLogStore


def _relative_to(path: Path, root: Path) -> str | None:
    try:
        return path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return None


def create_dependencies() -> AppDependencies:
    content_root = resolve_content_dir()
    site_db_path = resolve_site_db_path()
    migration_dir = resolve_migration_dir()
    checkpoint_dir = resolve_checkpoint_dir()
    state_db_path = resolve_repo_path(settings.STATE_DB_PATH)

    ensure_schema(state_db_path)
    activity_log = ActivityLogStore(state_db_path)

    archiver = get_archiver(settings.ARCHIVE_BACKEND)
    if archiver is None:
        logger.warning("[Migration] no ZIP archiver available (preference=%s)", settings.ARCHIVE_BACKEND)
    else:
        logger.info("[Migration] archive backend: %s", archiver.name)

    catalog = ArchiveCatalog(migration_dir, archiver=archiver, max_upload_bytes=settings.MAX_UPLOAD_BYTES)
    environment = environment_from_settings(settings)
    checkpoints = SqliteCheckpointProvider(
        checkpoint_dir,
        site_db_path,
        site_url=environment.site_url,
        max_checkpoints=settings.MAX_CHECKPOINTS,
    )

    # Working directories inside the content tree are never exported nor overwritten by a restore.
    own_dirs = tuple(
        d for d in (_relative_to(migration_dir, content_root), _relative_to(checkpoint_dir, content_root)) if d
    )

    export_service = MigrationExportService(
        migration_dir=migration_dir,
        content_root=content_root,
        site_db_path=site_db_path,
        environment=environment,
        archiver=archiver,
        catalog=catalog,
        activity_log=activity_log,
        own_dirs=own_dirs,
        slice_time_budget_s=settings.SLICE_TIME_BUDGET_S,
        full_run_time_budget_s=settings.FULL_RUN_TIME_BUDGET_S,
        max_migrations=settings.MAX_MIGRATIONS,
        use_external_dump=settings.DUMP_USE_EXTERNAL,
        sqlite_bin=settings.SQLITE_BIN,
    )
    restore_service = MigrationRestoreService(
        migration_dir=migration_dir,
        content_root=content_root,
        site_db_path=site_db_path,
        archiver=archiver,
        catalog=catalog,
        checkpoints=checkpoints,
        activity_log=activity_log,
        protected_dirs=own_dirs,
        slice_time_budget_s=settings.SLICE_TIME_BUDGET_S,
        full_run_time_budget_s=settings.FULL_RUN_TIME_BUDGET_S,
    )

    return AppDependencies(
        export_service=export_service,
        restore_service=restore_service,
        catalog=catalog,
        checkpoints=checkpoints,
        activity_log=activity_log,
    )
