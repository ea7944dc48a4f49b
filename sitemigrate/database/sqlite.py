from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Any, Iterable

DEFAULT_PRAGMAS = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA busy_timeout = 5000",
)


def connect_sqlite(
    db_path: str | Path,
    *,
    timeout_s: float = 30.0,
    row_factory: Any = sqlite3.Row,
    pragmas: Iterable[str] | None = None,
    autocommit: bool = False,
) -> sqlite3.Connection:
    """
    Open a sqlite3 connection with consistent defaults across the project.

    - row_factory defaults to sqlite3.Row (supports both index and name access).
    - pragmas are applied best-effort (ignored on unsupported/read-only setups).
    - autocommit=True leaves transaction control to the executed SQL, which is what
      statement-by-statement dump replay needs.
    """
    # The site database may be briefly locked by the running application; retry a few times
    # before surfacing the error.
    last_err: Exception | None = None
    for attempt in range(5):
        try:
            conn = sqlite3.connect(str(db_path), timeout=timeout_s)
            break
        except sqlite3.OperationalError as e:
            last_err = e
            msg = str(e).lower()
            if "unable to open database file" not in msg and "database is locked" not in msg:
                raise
            # 0.1s, 0.2s, 0.4s, 0.8s, 1.6s
            time.sleep(0.1 * (2**attempt))
    else:
        assert last_err is not None
        raise last_err
    conn.row_factory = row_factory
    if autocommit:
        conn.isolation_level = None

    for stmt in DEFAULT_PRAGMAS if pragmas is None else pragmas:
        try:
            conn.execute(stmt)
        except sqlite3.OperationalError:
            continue

    return conn
