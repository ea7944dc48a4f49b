from __future__ import annotations

import logging

from ..common import size_format
from ..enumerator import build_exclusions, write_manifest
from ..errors import MigrationError
from ..phases import PhaseOutcome
from .context import ExportContext

logger = logging.getLogger(__name__)


def enumerate_content(ctx: ExportContext) -> PhaseOutcome:
    record = ctx.record
    if not ctx.content_root.is_dir():
        raise MigrationError(f"Content directory not found: {ctx.content_root}")

    exclusions = build_exclusions(
        ctx.options,
        ctx.content_root,
        ctx.environment.registry,
        own_dirs=ctx.own_dirs,
    )
    try:
        result = write_manifest(ctx.content_root, exclusions, ctx.manifest_path)
    except OSError as e:
        raise MigrationError(f"Failed to create filemap: {e}") from e

    record.total_files_count = result.file_count
    record.total_files_size = result.total_bytes
    logger.info(
        "[Export] enumerated %s files (%s): job=%s",
        result.file_count,
        size_format(result.total_bytes),
        record.id,
    )
    return PhaseOutcome.DONE
