from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sitemigrate.database.sqlite import connect_sqlite

logger = logging.getLogger(__name__)

MAX_ENTRIES = 50

ACTION_LABELS = {
    "migration_created": "Migration Backup Created",
    "migration_deleted": "Migration Backup Deleted",
    "migration_downloaded": "Migration Backup Downloaded",
    "migration_uploaded": "Migration Backup Uploaded",
    "migration_restored": "Migration Backup Restored",
    "migration_cancelled": "Migration Export Cancelled",
}


@dataclass(frozen=True)
class ActivityEntry:
    id: int
    action: str
    actor: str
    details: dict[str, Any]
    created_at_ms: int

    @property
    def label(self) -> str:
        return ACTION_LABELS.get(self.action, self.action)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "label": self.label,
            "actor": self.actor,
            "details": self.details,
            "created_at_ms": self.created_at_ms,
        }


class ActivityLogStore:
    """
    Rolling activity log for migration operations.

    Kept in the tool's own state database so exports/restores of the site database never
    include or overwrite it. Only the newest `max_entries` rows are retained.
    """

    def __init__(self, db_path: str | Path, *, max_entries: int = MAX_ENTRIES) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.max_entries = int(max(1, max_entries))

    def _get_connection(self):
        return connect_sqlite(self.db_path)

    def log(self, action: str, details: dict[str, Any] | None = None, *, actor: str = "system") -> None:
        """Record an activity. Never raises: a failed log write must not fail the operation."""
        now_ms = int(time.time() * 1000)
        try:
            details_json = json.dumps(details or {}, ensure_ascii=False, separators=(",", ":"))
        except (TypeError, ValueError):
            details_json = "{}"

        try:
            conn = self._get_connection()
        except Exception as e:
            logger.warning("[Activity] log skipped action=%s err=%s", action, e)
            return
        try:
            conn.execute(
                "INSERT INTO activity_log (action, actor, details_json, created_at_ms) VALUES (?, ?, ?, ?)",
                ((action or "").strip(), (actor or "system").strip(), details_json, now_ms),
            )
            # Trim to the rolling window.
            conn.execute(
                """
                DELETE FROM activity_log
                WHERE id NOT IN (SELECT id FROM activity_log ORDER BY id DESC LIMIT ?)
                """,
                (self.max_entries,),
            )
            conn.commit()
        except Exception as e:
            logger.warning("[Activity] log failed action=%s err=%s", action, e)
        finally:
            conn.close()

    def get_entries(self, limit: int = MAX_ENTRIES) -> list[ActivityEntry]:
        lim = int(max(1, min(self.max_entries, limit)))
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT id, action, actor, details_json, created_at_ms FROM activity_log ORDER BY id DESC LIMIT ?",
                (lim,),
            ).fetchall()
        finally:
            conn.close()

        entries: list[ActivityEntry] = []
        for r in rows:
            try:
                details = json.loads(r["details_json"] or "{}")
            except ValueError:
                details = {}
            entries.append(
                ActivityEntry(
                    id=int(r["id"]),
                    action=str(r["action"]),
                    actor=str(r["actor"]),
                    details=details if isinstance(details, dict) else {},
                    created_at_ms=int(r["created_at_ms"] or 0),
                )
            )
        return entries

    def clear(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute("DELETE FROM activity_log")
            conn.commit()
        finally:
            conn.close()
