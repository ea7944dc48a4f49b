from __future__ import annotations

import logging
import math
import re
import shutil
import sqlite3
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, TextIO

from .common import run_cmd_to_file, unlink_quietly
from .errors import MigrationError
from .models import ExportOptions
from .phases import SliceClock

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000
FK_OFF = "PRAGMA foreign_keys = OFF;"
FK_ON = "PRAGMA foreign_keys = ON;"

_TABLE_IN_STATEMENT_RE = re.compile(
    r"""^\s*(?:INSERT\s+(?:OR\s+\w+\s+)?INTO|CREATE\s+TABLE(?:\s+IF\s+NOT\s+EXISTS)?|DROP\s+TABLE(?:\s+IF\s+EXISTS)?)\s+["`\[]?([^"`\]\s(]+)""",
    re.IGNORECASE,
)
_CREATE_OBJECT_RE = re.compile(
    r"""^CREATE\s+(?:TEMP\s+|TEMPORARY\s+)?(TABLE|VIEW|TRIGGER)\s+(?:IF\s+NOT\s+EXISTS\s+)?("(?:[^"]|"")+"|`[^`]+`|\[[^\]]+\]|[^\s(]+)""",
    re.IGNORECASE,
)
_LINE_BREAK_RE = re.compile(r"\s*[\r\n]+\s*")


@dataclass(frozen=True)
class RowFilter:
    """Drop rows of `table` whose `column` equals `value`."""

    table: str
    column: str
    value: Any

    def matches(self, table: str, row: Mapping[str, Any]) -> bool:
        if table != self.table:
            return False
        try:
            return row[self.column] == self.value
        except (IndexError, KeyError):
            return False


def row_filters_for(options: ExportOptions, table_prefix: str = "") -> list[RowFilter]:
    filters: list[RowFilter] = []
    if options.exclude_spam_comments:
        filters.append(RowFilter(f"{table_prefix}comments", "comment_approved", "spam"))
    if options.exclude_post_revisions:
        filters.append(RowFilter(f"{table_prefix}posts", "post_type", "revision"))
    return filters


def single_line(sql: str) -> str:
    # Trigger bodies hold `;`-terminated statements; keep them on the CREATE line.
    return _LINE_BREAK_RE.sub(" ", sql.strip())


def quote_identifier(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'


def sql_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "NULL"
        if math.isinf(value):
            return "9e999" if value > 0 else "-9e999"
        return repr(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "X'" + bytes(value).hex().upper() + "'"
    text = str(value)
    # One statement per line: text that would break the line (or the literal) goes out as hex.
    if "\n" in text or "\r" in text or "\x00" in text:
        return "CAST(X'" + text.encode("utf-8", errors="surrogatepass").hex().upper() + "' AS TEXT)"
    return "'" + text.replace("'", "''") + "'"


@dataclass
class DumpCursor:
    started: bool = False
    table_index: int = 0
    table_offset: int = 0
    total_tables: int = 0


class SqlDumper:
    """
    Table-by-table, row-batched dump of a SQLite database into a statement-replay file.

    The dump can be produced across many slices: the cursor (table index + row offset) is the
    only state needed to resume, and the file is appended to on every resumed slice.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        dump_path: Path,
        *,
        row_filters: Iterable[RowFilter] = (),
        batch_size: int = BATCH_SIZE,
        site_url: str = "",
    ) -> None:
        self.conn = conn
        self.dump_path = Path(dump_path)
        self.row_filters = tuple(row_filters)
        self.batch_size = int(max(1, batch_size))
        self.site_url = site_url
        self._columns: dict[str, list[str]] = {}

    def list_tables(self) -> list[str]:
        rows = self.conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()
        return [str(r[0]) for r in rows]

    def _write_header(self, fh: TextIO) -> None:
        fh.write("-- Site Migration Database Export\n")
        fh.write("-- Generated: " + time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime()) + " UTC\n")
        fh.write(f"-- Site: {self.site_url}\n\n")
        fh.write(FK_OFF + "\n\n")

    def _write_structure(self, fh: TextIO, table: str) -> None:
        row = self.conn.execute(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
        ).fetchone()
        if not row or not row[0]:
            return
        fh.write(f"-- Table: {table}\n")
        fh.write(f"DROP TABLE IF EXISTS {quote_identifier(table)};\n")
        fh.write(str(row[0]) + ";\n")
        indexes = self.conn.execute(
            "SELECT sql FROM sqlite_master WHERE type = 'index' AND tbl_name = ? AND sql IS NOT NULL ORDER BY name",
            (table,),
        ).fetchall()
        for idx in indexes:
            fh.write(str(idx[0]) + ";\n")
        fh.write("\n")

    def _write_trailer(self, fh: TextIO) -> None:
        # Views and triggers go last so triggers do not fire while rows are replayed.
        objects = self.conn.execute(
            "SELECT type, name, sql FROM sqlite_master WHERE type IN ('view', 'trigger') AND sql IS NOT NULL "
            "ORDER BY CASE type WHEN 'view' THEN 0 ELSE 1 END, name"
        ).fetchall()
        for obj_type, name, sql in objects:
            fh.write(f"DROP {str(obj_type).upper()} IF EXISTS {quote_identifier(name)};\n")
            fh.write(single_line(str(sql)) + ";\n")
        fh.write(FK_ON + "\n")

    def _excluded(self, table: str, row: Mapping[str, Any]) -> bool:
        return any(f.matches(table, row) for f in self.row_filters)

    def insertable_columns(self, table: str) -> list[str]:
        """Stored columns of `table`; generated and hidden columns cannot take an INSERT value."""
        if table not in self._columns:
            rows = self.conn.execute(f"PRAGMA table_xinfo({quote_identifier(table)})").fetchall()
            # hidden: 0 normal, 1 hidden (virtual tables), 2/3 generated virtual/stored
            self._columns[table] = [str(r[1]) for r in rows if int(r[6] or 0) == 0]
        return self._columns[table]

    def _write_batch(self, fh: TextIO, table: str, offset: int) -> int:
        columns = self.insertable_columns(table)
        if not columns:
            return 0
        column_list = ",".join(quote_identifier(c) for c in columns)
        target = quote_identifier(table)
        rows = self.conn.execute(
            f"SELECT {column_list} FROM {target} LIMIT ? OFFSET ?", (self.batch_size, offset)
        ).fetchall()
        for row in rows:
            if self.row_filters and self._excluded(table, row):
                continue
            values = ",".join(sql_literal(v) for v in tuple(row))
            fh.write(f"INSERT INTO {target} ({column_list}) VALUES ({values});\n")
        return len(rows)

    def dump_chunk(self, cursor: DumpCursor, clock: SliceClock) -> bool:
        """Advance the dump; True when the whole database has been written."""
        tables = self.list_tables()
        if not tables:
            raise MigrationError("No database tables found")
        cursor.total_tables = len(tables)

        mode = "a" if cursor.started else "w"
        try:
            fh = self.dump_path.open(mode, encoding="utf-8", errors="surrogatepass", newline="\n")
        except OSError as e:
            raise MigrationError(f"Failed to open database export file: {e}") from e

        with fh:
            if not cursor.started:
                self._write_header(fh)
                cursor.started = True
                cursor.table_index = 0
                cursor.table_offset = 0

            while cursor.table_index < len(tables):
                if clock.should_yield():
                    return False
                table = tables[cursor.table_index]
                if cursor.table_offset == 0:
                    self._write_structure(fh, table)

                first_batch = True
                while True:
                    if not first_batch and clock.should_yield():
                        return False
                    first_batch = False
                    fetched = self._write_batch(fh, table, cursor.table_offset)
                    cursor.table_offset += self.batch_size
                    clock.tick()
                    if fetched < self.batch_size:
                        break

                fh.write("\n")
                cursor.table_offset = 0
                cursor.table_index += 1

            self._write_trailer(fh)
        return True


def _normalize_external_dump(raw_path: Path, dump_path: Path, *, site_url: str) -> None:
    """Make a `sqlite3 .dump` replayable over an existing database (drop before create)."""
    with raw_path.open("r", encoding="utf-8", errors="surrogateescape") as src, dump_path.open(
        "w", encoding="utf-8", errors="surrogateescape", newline="\n"
    ) as dst:
        dst.write("-- Site Migration Database Export (sqlite3 .dump)\n")
        dst.write("-- Generated: " + time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime()) + " UTC\n")
        dst.write(f"-- Site: {site_url}\n\n")
        dst.write(FK_OFF + "\n\n")
        trigger: list[str] = []
        for line in src:
            if trigger:
                trigger.append(line)
                if line.strip().upper().endswith("END;"):
                    dst.write(single_line("".join(trigger)) + "\n")
                    trigger = []
                continue
            m = _CREATE_OBJECT_RE.match(line)
            if m:
                kind, name = m.group(1).upper(), m.group(2)
                dst.write(f"DROP {kind} IF EXISTS {name};\n")
                if kind == "TRIGGER" and not line.strip().upper().endswith("END;"):
                    trigger.append(line)
                    continue
            dst.write(line)
        if trigger:
            dst.write(single_line("".join(trigger)) + "\n")
        dst.write("\n" + FK_ON + "\n")


def try_external_dump(db_path: Path, dump_path: Path, *, sqlite_bin: str = "sqlite3", site_url: str = "") -> bool:
    """
    One-shot dump with the `sqlite3` command line shell.

    Returns False (leaving no file behind) when the tool is missing or produced nothing, in which
    case the caller falls back to `SqlDumper`.
    """
    if not shutil.which(sqlite_bin):
        return False
    raw_path = dump_path.with_name(dump_path.name + ".raw")
    code, err = run_cmd_to_file([sqlite_bin, str(db_path), ".dump"], raw_path)
    try:
        if code != 0 or not raw_path.exists() or raw_path.stat().st_size == 0:
            logger.warning("[Migration] sqlite3 .dump failed (code=%s), using built-in dump: %s", code, err)
            unlink_quietly(dump_path)
            return False
        _normalize_external_dump(raw_path, dump_path, site_url=site_url)
    finally:
        unlink_quietly(raw_path)
    return dump_path.exists() and dump_path.stat().st_size > 0


@dataclass
class LoadResult:
    succeeded: int = 0
    failed: int = 0
    failed_by_table: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        # Lenient on purpose: dumps often carry a few statements the target engine rejects.
        return self.succeeded > self.failed


def _statement_table(statement: str) -> str:
    m = _TABLE_IN_STATEMENT_RE.match(statement)
    return m.group(1) if m else "?"


def _execute_statement(conn: sqlite3.Connection, statement: str) -> None:
    head = statement.lstrip()[:16].upper()
    if head.startswith("BEGIN"):
        if not conn.in_transaction:
            conn.execute(statement)
        return
    if head.startswith(("COMMIT", "END", "ROLLBACK")):
        if conn.in_transaction:
            conn.execute(statement)
        return
    if head.startswith("PRAGMA"):
        # foreign_keys and friends are no-ops inside a transaction.
        if conn.in_transaction:
            conn.execute("COMMIT")
        conn.execute(statement)
        return
    if not conn.in_transaction:
        conn.execute("BEGIN")
    conn.execute(statement)


def load_sql_dump(conn: sqlite3.Connection, dump_path: Path, *, max_errors_kept: int = 20) -> LoadResult:
    """
    Replay a dump statement by statement.

    `conn` must be in autocommit mode (`isolation_level=None`); statements are batched into
    transactions here. A statement ends at a line whose trimmed text ends with `;`. Comment and
    blank lines are skipped. Individual failures are counted, never raised.
    """
    result = LoadResult()
    pending: list[str] = []

    with Path(dump_path).open("r", encoding="utf-8", errors="surrogateescape") as fh:
        for line in fh:
            trimmed = line.strip()
            if not trimmed or trimmed.startswith("--"):
                continue
            pending.append(line)
            if not trimmed.endswith(";"):
                continue

            statement = "".join(pending)
            pending = []
            try:
                _execute_statement(conn, statement)
                result.succeeded += 1
            except sqlite3.Error as e:
                result.failed += 1
                table = _statement_table(statement)
                result.failed_by_table[table] = result.failed_by_table.get(table, 0) + 1
                if len(result.errors) < max_errors_kept:
                    result.errors.append(f"{table}: {e}")

    if conn.in_transaction:
        conn.execute("COMMIT")

    if result.failed:
        logger.warning(
            "[Restore] import completed with %d errors and %d successful statements (by table: %s)",
            result.failed,
            result.succeeded,
            result.failed_by_table,
        )
    return result
