from __future__ import annotations

import logging
import sqlite3

from sitemigrate.database.sqlite import connect_sqlite

from ..errors import MigrationError
from ..phases import PhaseOutcome
from ..sql_dump import DumpCursor, SqlDumper, row_filters_for, try_external_dump
from .context import ExportContext

logger = logging.getLogger(__name__)

DUMP_METHOD_EXTERNAL = "external"
DUMP_METHOD_BUILTIN = "builtin"


def export_database(ctx: ExportContext) -> PhaseOutcome:
    """
    Dump the site database into `database.sql`, resuming from the record's table cursor.

    The external `sqlite3 .dump` is tried once, on the job's first database slice, and only when
    no row filters apply (it cannot drop spam comments or revisions).
    """
    options = ctx.options
    if not options.include_database:
        return PhaseOutcome.SKIPPED

    record = ctx.record
    if not ctx.site_db_path.exists():
        raise MigrationError(f"Site database not found: {ctx.site_db_path}")

    filters = row_filters_for(options, ctx.environment.table_prefix)
    if record.dump_method is None:
        record.dump_method = DUMP_METHOD_BUILTIN
        if ctx.use_external_dump and not filters:
            if try_external_dump(ctx.site_db_path, ctx.dump_path, sqlite_bin=ctx.sqlite_bin, site_url=ctx.environment.site_url):
                record.dump_method = DUMP_METHOD_EXTERNAL
                record.dump_started = True
                logger.info("[Export] database dumped with %s: job=%s", ctx.sqlite_bin, record.id)
                return PhaseOutcome.DONE

    cursor = DumpCursor(
        started=record.dump_started,
        table_index=record.table_index,
        table_offset=record.table_offset,
        total_tables=record.total_tables,
    )
    try:
        conn = connect_sqlite(ctx.site_db_path)
    except sqlite3.Error as e:
        raise MigrationError(f"Failed to connect to database: {e}") from e
    try:
        done = SqlDumper(
            conn, ctx.dump_path, row_filters=filters, site_url=ctx.environment.site_url
        ).dump_chunk(cursor, ctx.clock)
    except sqlite3.Error as e:
        raise MigrationError(f"Database export failed: {e}") from e
    finally:
        conn.close()

    record.dump_started = cursor.started
    record.table_index = cursor.table_index
    record.table_offset = cursor.table_offset
    record.total_tables = cursor.total_tables
    if not done:
        logger.info(
            "[Export] database slice: job=%s table=%s/%s offset=%s",
            record.id,
            record.table_index,
            record.total_tables,
            record.table_offset,
        )
        return PhaseOutcome.PENDING
    return PhaseOutcome.DONE
