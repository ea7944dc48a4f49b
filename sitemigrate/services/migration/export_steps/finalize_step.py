from __future__ import annotations

import logging

from ..common import size_format, unlink_quietly, utc_now_iso
from ..errors import MigrationError
from ..models import SOURCE_LOCAL, ArchiveMetadata
from ..phases import PhaseOutcome
from .context import SCRATCH_FILES, ExportContext

logger = logging.getLogger(__name__)


def finalize_archive(ctx: ExportContext) -> PhaseOutcome:
    """
    Publish the archive: write `migration.json`, drop working files (the job record included)
    and enforce the archive retention cap.
    """
    record = ctx.record
    container = ctx.container_path
    try:
        size = container.stat().st_size
    except OSError:
        size = 0
    if size <= 0:
        raise MigrationError("Migration ZIP file not found")

    env = ctx.environment
    options = ctx.options
    completed_at = utc_now_iso()
    metadata = ArchiveMetadata(
        id=record.id,
        created_at=record.created_at,
        completed_at=completed_at,
        site_url=env.site_url,
        platform_version=env.platform_version,
        python_version=env.python_version,
        engine_version=env.engine_version,
        tool_version=env.tool_version,
        archive_file=container.name,
        archive_size=size,
        archive_size_human=size_format(size),
        options=options.as_dict(),
        total_files=record.archived_files,
        total_files_size=record.archived_size,
        has_database=options.include_database and ctx.dump_path.exists(),
        source=SOURCE_LOCAL,
    )
    try:
        ctx.catalog.write_metadata(record.id, metadata)
    except OSError as e:
        raise MigrationError(f"Failed to write migration metadata: {e}") from e

    for name in SCRATCH_FILES:
        unlink_quietly(ctx.working_dir / name)

    record.completed_at = completed_at
    record.archive_size = size
    record.archive_size_human = metadata.archive_size_human

    try:
        ctx.catalog.prune(ctx.max_migrations, keep_id=record.id)
    except OSError as e:
        logger.warning("[Export] retention prune skipped: %s", e, exc_info=True)

    logger.info("[Export] archive ready: job=%s size=%s files=%s", record.id, metadata.archive_size_human, record.archived_files)
    return PhaseOutcome.DONE
