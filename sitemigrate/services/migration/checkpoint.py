from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Protocol

from .common import ensure_dir, new_job_id, read_json, remove_tree, sanitize_id, utc_now_iso, write_json_atomic
from .sqlite_backup import sqlite_online_backup

logger = logging.getLogger(__name__)

CHECKPOINT_META = "checkpoint.json"
CHECKPOINT_DB = "database.db"


class CheckpointProvider(Protocol):
    def create_checkpoint(self, operation_type: str) -> str | None: ...


@dataclass(frozen=True)
class CheckpointInfo:
    id: str
    created_at: str
    operation_type: str
    site_url: str
    db_size: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class SqliteCheckpointProvider:
    """
    Rollback points for the site database, taken before a restore overwrites it.

    Each checkpoint is `<checkpoint_dir>/<id>/` holding a consistent copy of the database and a
    `checkpoint.json` descriptor. At most `max_checkpoints` are kept; older ones are pruned.
    """

    def __init__(self, checkpoint_dir: Path, site_db_path: Path, *, site_url: str, max_checkpoints: int = 5) -> None:
        self.checkpoint_dir = Path(checkpoint_dir)
        self.site_db_path = Path(site_db_path)
        self.site_url = site_url
        self.max_checkpoints = max(1, int(max_checkpoints))

    def _dir(self, checkpoint_id: str) -> Path | None:
        safe = sanitize_id(checkpoint_id)
        return self.checkpoint_dir / safe if safe else None

    def create_checkpoint(self, operation_type: str) -> str | None:
        if not self.site_db_path.exists():
            logger.warning("[Checkpoint] site database not found: %s", self.site_db_path)
            return None

        checkpoint_id = new_job_id()
        cdir = self.checkpoint_dir / checkpoint_id
        try:
            ensure_dir(cdir)
            sqlite_online_backup(self.site_db_path, cdir / CHECKPOINT_DB)
            info = CheckpointInfo(
                id=checkpoint_id,
                created_at=utc_now_iso(),
                operation_type=str(operation_type or "manual"),
                site_url=self.site_url,
                db_size=(cdir / CHECKPOINT_DB).stat().st_size,
            )
            write_json_atomic(cdir / CHECKPOINT_META, info.as_dict())
        except (OSError, sqlite3.Error) as e:
            logger.error("[Checkpoint] create failed: %s", e, exc_info=True)
            remove_tree(cdir)
            return None

        logger.info("[Checkpoint] created %s for %s", checkpoint_id, info.operation_type)
        self._prune(keep_id=checkpoint_id)
        return checkpoint_id

    def list_checkpoints(self) -> list[CheckpointInfo]:
        """Newest first."""
        try:
            dirs = [p for p in self.checkpoint_dir.iterdir() if p.is_dir()]
        except OSError:
            return []
        items: list[CheckpointInfo] = []
        for d in dirs:
            data = read_json(d / CHECKPOINT_META)
            if not data:
                continue
            items.append(
                CheckpointInfo(
                    id=str(data.get("id") or d.name),
                    created_at=str(data.get("created_at") or ""),
                    operation_type=str(data.get("operation_type") or ""),
                    site_url=str(data.get("site_url") or ""),
                    db_size=int(data.get("db_size") or 0),
                )
            )
        items.sort(key=lambda c: (c.created_at, c.id), reverse=True)
        return items

    def restore_checkpoint(self, checkpoint_id: str) -> tuple[bool, str | None]:
        cdir = self._dir(checkpoint_id)
        if cdir is None or not cdir.is_dir():
            return False, "checkpoint_not_found"
        data = read_json(cdir / CHECKPOINT_META)
        if not data:
            return False, "checkpoint_metadata_invalid"
        # A checkpoint only rolls back the site it was taken from.
        if str(data.get("site_url") or "") != self.site_url:
            return False, "checkpoint_site_mismatch"
        db_copy = cdir / CHECKPOINT_DB
        if not db_copy.exists():
            return False, "checkpoint_database_missing"
        try:
            sqlite_online_backup(db_copy, self.site_db_path, fresh=False)
        except (OSError, sqlite3.Error) as e:
            logger.error("[Checkpoint] restore %s failed: %s", checkpoint_id, e, exc_info=True)
            return False, f"restore_failed: {e}"
        logger.info("[Checkpoint] restored %s", checkpoint_id)
        return True, None

    def delete_checkpoint(self, checkpoint_id: str) -> bool:
        cdir = self._dir(checkpoint_id)
        if cdir is None:
            return False
        return remove_tree(cdir)

    def _prune(self, *, keep_id: str) -> list[str]:
        checkpoints = self.list_checkpoints()
        excess = max(0, len(checkpoints) - self.max_checkpoints)
        if not excess:
            return []
        deleted: list[str] = []
        candidates = [c for c in reversed(checkpoints) if c.id != keep_id]
        for c in candidates[:excess]:
            if self.delete_checkpoint(c.id):
                deleted.append(c.id)
        if deleted:
            logger.info("[Checkpoint] pruned old checkpoints: keep_max=%s deleted=%s", self.max_checkpoints, len(deleted))
        return deleted
