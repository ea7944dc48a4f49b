from __future__ import annotations

import sqlite3
from pathlib import Path

from sitemigrate.database.sqlite import connect_sqlite


def table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    cur = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=? LIMIT 1",
        (table_name,),
    )
    return cur.fetchone() is not None


def ensure_activity_log_table(conn: sqlite3.Connection) -> None:
    if table_exists(conn, "activity_log"):
        return
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS activity_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            action TEXT NOT NULL,
            actor TEXT NOT NULL,
            details_json TEXT,
            created_at_ms INTEGER NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_activity_log_time ON activity_log(created_at_ms)")


def ensure_schema(db_path: str | Path) -> None:
    """
    Ensure the tool's own bookkeeping schema exists.

    Safe to call repeatedly; no-op when schema already exists.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = connect_sqlite(db_path)
    try:
        ensure_activity_log_table(conn)
        conn.commit()
    finally:
        conn.close()
