from __future__ import annotations

import sqlite3
from pathlib import Path

from .common import ensure_dir


def sqlite_online_backup(src_db: Path, dest_db: Path, *, fresh: bool = True) -> None:
    """
    Copy `src_db` page-by-page into `dest_db` through the sqlite backup API.

    With `fresh=False` the destination is overwritten in place (live site database), otherwise
    any existing destination file is removed first.
    """
    ensure_dir(dest_db.parent)

    if fresh and dest_db.exists():
        dest_db.unlink()

    src = sqlite3.connect(str(src_db))
    try:
        dst = sqlite3.connect(str(dest_db))
        try:
            src.backup(dst)
            dst.commit()
        finally:
            dst.close()
    finally:
        src.close()
