from __future__ import annotations

import logging
from pathlib import Path

from .common import read_json, remove_tree, sanitize_id, write_json_atomic
from .models import JobRecord

logger = logging.getLogger(__name__)

STATE_FILE = "state.json"


class ProgressStore:
    """
    Job records persisted as one JSON document per job under `<migration_dir>/<job_id>/`.

    Last writer wins; callers must drive a given job id from one thread of control at a time.
    """

    def __init__(self, migration_dir: str | Path) -> None:
        self.migration_dir = Path(migration_dir)

    def job_dir(self, job_id: str) -> Path | None:
        safe = sanitize_id(job_id)
        if safe is None:
            return None
        return self.migration_dir / safe

    def save(self, job_id: str, record: JobRecord) -> bool:
        d = self.job_dir(job_id)
        if d is None or not d.is_dir():
            return False
        try:
            write_json_atomic(d / STATE_FILE, record.as_dict())
        except (OSError, TypeError, ValueError) as e:
            logger.error("[Migration] failed to save job state id=%s err=%s", job_id, e)
            return False
        return True

    def load(self, job_id: str) -> JobRecord | None:
        d = self.job_dir(job_id)
        if d is None:
            return None
        data = read_json(d / STATE_FILE)
        if data is None:
            return None
        try:
            return JobRecord.from_dict(data)
        except TypeError:
            return None

    def delete(self, job_id: str) -> bool:
        d = self.job_dir(job_id)
        if d is None:
            return False
        return remove_tree(d)
