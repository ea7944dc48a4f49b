from __future__ import annotations

import logging

from ..archivers import ArchiveReader, content_relative, resolve_within
from ..common import ensure_dir
from ..errors import MigrationError, PathTraversalError
from ..phases import PhaseOutcome
from .context import RestoreContext

logger = logging.getLogger(__name__)


def restore_files(ctx: RestoreContext) -> PhaseOutcome:
    """
    Write `content/` entries back onto the content tree.

    Random-access backends resume entry by entry from `extract_index`; the command-line backend
    extracts everything in one call.
    """
    if not ctx.options.restore_files:
        return PhaseOutcome.SKIPPED

    record = ctx.record
    try:
        ensure_dir(ctx.content_root)
        if ctx.archiver.supports_random_access:
            with ctx.archiver.open_reader(ctx.container_path) as reader:
                return _extract_entries(ctx, reader)

        stats = ctx.archiver.extract_all(
            ctx.container_path, ctx.content_root, scratch_dir=ctx.working_dir, is_protected=ctx.is_protected
        )
    except OSError as e:
        raise MigrationError(f"Failed to extract files: {e}") from e

    record.extracted_files = stats.extracted
    record.rejected_entries = stats.rejected
    record.total_entries = stats.extracted + stats.rejected
    record.extract_index = record.total_entries
    logger.info("[Restore] files extracted: job=%s extracted=%s rejected=%s", record.id, stats.extracted, stats.rejected)
    return PhaseOutcome.DONE


def _extract_entries(ctx: RestoreContext, reader: ArchiveReader) -> PhaseOutcome:
    record = ctx.record
    record.total_entries = reader.entry_count()
    while record.extract_index < record.total_entries:
        if ctx.clock.should_yield():
            logger.info(
                "[Restore] files slice: job=%s entry=%s/%s",
                record.id,
                record.extract_index,
                record.total_entries,
            )
            return PhaseOutcome.PENDING

        index = record.extract_index
        name = reader.name_at(index)
        record.extract_index = index + 1
        ctx.clock.tick()

        try:
            rel = content_relative(name)
            if rel is None:
                continue
            if ctx.is_protected(rel):
                raise PathTraversalError(f"protected directory: {rel!r}")
            target = resolve_within(ctx.content_root, rel)
        except PathTraversalError as e:
            logger.warning("[Restore] rejected archive entry: %s", e)
            record.rejected_entries += 1
            continue

        reader.extract_to(index, target)
        record.extracted_files += 1

    logger.info(
        "[Restore] files extracted: job=%s extracted=%s rejected=%s",
        record.id,
        record.extracted_files,
        record.rejected_entries,
    )
    return PhaseOutcome.DONE
