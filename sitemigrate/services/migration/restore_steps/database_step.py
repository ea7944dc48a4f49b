from __future__ import annotations

import logging
import sqlite3

from sitemigrate.database.sqlite import connect_sqlite

from ..archivers import DUMP_ENTRY
from ..common import ensure_dir, unlink_quietly
from ..errors import MigrationError
from ..phases import PhaseOutcome
from ..sql_dump import load_sql_dump
from .context import RestoreContext

logger = logging.getLogger(__name__)


def restore_database(ctx: RestoreContext) -> PhaseOutcome:
    if not ctx.options.restore_database:
        return PhaseOutcome.SKIPPED

    record = ctx.record
    if record.db_imported:
        logger.info("[Restore] database already imported, not replaying dump: job=%s", record.id)
        return PhaseOutcome.DONE

    scratch = ctx.working_dir / DUMP_ENTRY
    try:
        if not ctx.archiver.extract_member(ctx.container_path, DUMP_ENTRY, scratch):
            logger.info("[Restore] archive has no database dump: job=%s", record.id)
            record.db_imported = True
            return PhaseOutcome.SKIPPED

        ensure_dir(ctx.site_db_path.parent)
        try:
            conn = connect_sqlite(ctx.site_db_path, autocommit=True)
        except sqlite3.Error as e:
            raise MigrationError(f"Failed to connect to database: {e}") from e
        try:
            result = load_sql_dump(conn, scratch)
        finally:
            conn.close()
    except OSError as e:
        raise MigrationError(f"Failed to read database dump: {e}") from e
    finally:
        unlink_quietly(scratch)

    record.db_imported = True
    record.db_statements_ok = result.succeeded
    record.db_statements_failed = result.failed
    if not result.ok:
        raise MigrationError(
            f"Database import failed: {result.failed} statements failed, {result.succeeded} succeeded"
        )
    logger.info(
        "[Restore] database imported: job=%s ok=%s failed=%s",
        record.id,
        result.succeeded,
        result.failed,
    )
    return PhaseOutcome.DONE
