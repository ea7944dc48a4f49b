from __future__ import annotations

import logging
import os

from ..archivers import CONFIG_ENTRY, CONTENT_PREFIX, DUMP_ENTRY, ArchiveWriter, resolve_within, safe_relative
from ..enumerator import iter_manifest
from ..errors import MigrationError, PathTraversalError
from ..phases import PhaseOutcome
from .context import ExportContext

logger = logging.getLogger(__name__)


def build_archive(ctx: ExportContext) -> PhaseOutcome:
    """
    Append config, dump and manifest files to the container, resuming at `filemap_offset`.

    `config_archived` / `db_archived` make the two fixed entries idempotent across slices. The
    manifest offset is a byte position, saved after every file so a resumed slice never adds a
    file twice.
    """
    if ctx.archiver is None:
        raise MigrationError("No ZIP archiver available on this server")

    record = ctx.record
    record.archiver = ctx.archiver.name
    try:
        with ctx.archiver.open_writer(ctx.container_path, scratch_dir=ctx.working_dir) as writer:
            if not record.config_archived:
                if ctx.config_path.exists():
                    writer.add(ctx.config_path, CONFIG_ENTRY)
                record.config_archived = True

            if not record.db_archived:
                if ctx.options.include_database and ctx.dump_path.exists():
                    writer.add(ctx.dump_path, DUMP_ENTRY)
                record.db_archived = True

            if not ctx.manifest_path.exists():
                return PhaseOutcome.DONE
            outcome = _archive_manifest(ctx, writer)
    except OSError as e:
        raise MigrationError(f"Failed to write archive: {e}") from e

    if outcome is PhaseOutcome.PENDING:
        logger.info(
            "[Export] archive slice: job=%s files=%s/%s",
            record.id,
            record.archived_files,
            record.total_files_count,
        )
    return outcome


def _archive_manifest(ctx: ExportContext, writer: ArchiveWriter) -> PhaseOutcome:
    record = ctx.record
    for rel, end_offset in iter_manifest(ctx.manifest_path, record.filemap_offset):
        if ctx.clock.should_yield():
            return PhaseOutcome.PENDING
        record.filemap_offset = end_offset
        ctx.clock.tick()

        try:
            rel = safe_relative(rel)
            full = resolve_within(ctx.content_root, rel)
        except PathTraversalError as e:
            logger.warning("[Export] skipped manifest entry: %s", e)
            record.skipped_files += 1
            continue
        # Files can disappear or lose permissions between enumeration and archiving.
        if not full.is_file() or not os.access(full, os.R_OK):
            record.skipped_files += 1
            continue

        size = full.stat().st_size
        writer.add(full, CONTENT_PREFIX + rel)
        record.archived_files += 1
        record.archived_size += size
    return PhaseOutcome.DONE
