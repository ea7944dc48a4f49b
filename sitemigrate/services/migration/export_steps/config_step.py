from __future__ import annotations

import logging

from ..common import utc_now_iso, write_json_atomic
from ..errors import MigrationError
from ..phases import PhaseOutcome
from .context import ExportContext

logger = logging.getLogger(__name__)


def write_package_config(ctx: ExportContext) -> PhaseOutcome:
    config = ctx.environment.package_config(ctx.options.as_dict(), created_at=ctx.record.created_at or utc_now_iso())
    try:
        write_json_atomic(ctx.config_path, config)
    except OSError as e:
        raise MigrationError(f"Failed to write config.json: {e}") from e
    logger.info("[Export] config written: job=%s", ctx.record.id)
    return PhaseOutcome.DONE
