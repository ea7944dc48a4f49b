from __future__ import annotations

import logging

from ..phases import PhaseOutcome
from .context import RestoreContext

logger = logging.getLogger(__name__)

OPERATION_TYPE = "migration_restore"


def create_restore_checkpoint(ctx: RestoreContext) -> PhaseOutcome:
    """Take a rollback point before anything is overwritten. A failed checkpoint never blocks the restore."""
    record = ctx.record
    checkpoint_id = None
    if ctx.checkpoints is None:
        logger.warning("[Restore] no checkpoint provider configured: job=%s", record.id)
    else:
        try:
            checkpoint_id = ctx.checkpoints.create_checkpoint(OPERATION_TYPE)
        except Exception as e:
            logger.warning("[Restore] checkpoint failed: %s", e, exc_info=True)
            checkpoint_id = None
        if checkpoint_id is None:
            logger.warning("[Restore] continuing without a checkpoint: job=%s", record.id)

    record.checkpoint_id = checkpoint_id
    record.checkpoint_done = True
    return PhaseOutcome.DONE
