from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import BinaryIO

from .archivers import CONFIG_ENTRY, CONTENT_PREFIX, DUMP_ENTRY, Archiver
from .common import (
    ensure_dir,
    new_job_id,
    read_json,
    remove_tree,
    sanitize_id,
    size_format,
    utc_now_iso,
    write_json_atomic,
)
from .errors import MigrationError, UploadRejectedError
from .models import SOURCE_UPLOAD, ArchiveMetadata

logger = logging.getLogger(__name__)

METADATA_FILE = "migration.json"
ARCHIVE_FILE = "migration.zip"
UPLOAD_PREFIX = "upload_"
ALLOWED_UPLOAD_EXTENSIONS = (".zip",)
DEFAULT_MAX_UPLOAD_BYTES = 2 * 1024 * 1024 * 1024

_COPY_CHUNK = 1024 * 1024


class ArchiveCatalog:
    """
    Completed migration archives under `migration_dir`.

    A directory counts as an archive only once its `migration.json` exists; in-flight job
    directories (which hold `state.json` instead) are invisible here.
    """

    def __init__(
        self,
        migration_dir: Path,
        *,
        archiver: Archiver | None = None,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
    ) -> None:
        self.migration_dir = Path(migration_dir)
        self.archiver = archiver
        self.max_upload_bytes = int(max_upload_bytes)

    def archive_dir(self, archive_id: str) -> Path | None:
        safe = sanitize_id(archive_id)
        return self.migration_dir / safe if safe else None

    def write_metadata(self, archive_id: str, metadata: ArchiveMetadata) -> None:
        adir = self.archive_dir(archive_id)
        if adir is None:
            raise MigrationError(f"Invalid archive id: {archive_id!r}")
        write_json_atomic(adir / METADATA_FILE, metadata.as_dict())

    def get_archive_metadata(self, archive_id: str) -> ArchiveMetadata | None:
        adir = self.archive_dir(archive_id)
        if adir is None:
            return None
        data = read_json(adir / METADATA_FILE)
        if not data:
            return None
        try:
            meta = ArchiveMetadata.from_dict(data)
        except (TypeError, ValueError):
            logger.warning("[Migration] unreadable metadata for %s", archive_id)
            return None
        return meta

    def list_archives(self) -> list[ArchiveMetadata]:
        """Newest first by completion time."""
        try:
            dirs = [p for p in self.migration_dir.iterdir() if p.is_dir()]
        except OSError:
            return []
        items = [m for m in (self.get_archive_metadata(d.name) for d in dirs) if m is not None]
        items.sort(key=lambda m: (m.completed_at, m.created_at, m.id), reverse=True)
        return items

    def get_archive_file_path(self, archive_id: str) -> Path | None:
        meta = self.get_archive_metadata(archive_id)
        adir = self.archive_dir(archive_id)
        if meta is None or adir is None:
            return None
        path = adir / (Path(meta.archive_file).name or ARCHIVE_FILE)
        return path if path.is_file() else None

    def delete_archive(self, archive_id: str) -> bool:
        adir = self.archive_dir(archive_id)
        if adir is None or not adir.is_dir():
            return False
        return remove_tree(adir)

    def prune(self, keep_max: int, *, keep_id: str | None = None) -> list[str]:
        """
        Keep at most `keep_max` archives, deleting the oldest first.

        Never deletes `keep_id`. Returns the deleted ids.
        """
        keep_max = int(keep_max)
        if keep_max <= 0:
            return []
        archives = self.list_archives()
        excess = max(0, len(archives) - keep_max)
        if not excess:
            return []

        deleted: list[str] = []
        candidates = [m for m in reversed(archives) if m.id != keep_id]
        for meta in candidates[:excess]:
            if self.delete_archive(meta.id):
                deleted.append(meta.id)
        if deleted:
            logger.info("[Migration] pruned old archives: keep_max=%s deleted=%s", keep_max, len(deleted))
        return deleted

    # --- uploads ---------------------------------------------------------------------------

    def handle_uploaded_archive(self, filename: str, stream: BinaryIO) -> tuple[ArchiveMetadata | None, str | None]:
        """
        Register an externally produced container as a restorable archive.

        Returns `(metadata, None)` on success or `(None, reason)` when the upload is rejected; a
        rejected upload leaves nothing behind.
        """
        if self.archiver is None:
            return None, "No ZIP archiver available on this server"

        archive_id = new_job_id(UPLOAD_PREFIX)
        adir = self.migration_dir / archive_id
        try:
            ensure_dir(adir)
            meta = self._register_upload(archive_id, adir, filename, stream)
        except UploadRejectedError as e:
            remove_tree(adir)
            logger.warning("[Migration] upload rejected: %s", e.reason)
            return None, e.reason
        except OSError as e:
            remove_tree(adir)
            logger.error("[Migration] upload failed: %s", e, exc_info=True)
            return None, f"Failed to store uploaded file: {e}"

        logger.info("[Migration] upload registered: id=%s size=%s", archive_id, meta.archive_size_human)
        return meta, None

    def _register_upload(self, archive_id: str, adir: Path, filename: str, stream: BinaryIO) -> ArchiveMetadata:
        name = Path(str(filename or "")).name
        if not name.lower().endswith(ALLOWED_UPLOAD_EXTENSIONS):
            raise UploadRejectedError("Invalid file type. Only .zip archives are accepted")

        container = adir / ARCHIVE_FILE
        size = self._copy_limited(stream, container)
        if size == 0:
            raise UploadRejectedError("Uploaded file is empty")

        try:
            entries = self.archiver.list_entries(container)
        except MigrationError:
            raise UploadRejectedError("Uploaded file is not a readable ZIP archive")

        names = {e.name for e in entries}
        content = [e for e in entries if e.name.startswith(CONTENT_PREFIX) and not e.is_dir]
        has_database = DUMP_ENTRY in names
        if not has_database and not content:
            raise UploadRejectedError("Archive contains neither a database dump nor site files")

        config = self._read_config(container) if CONFIG_ENTRY in names else {}
        now = utc_now_iso()
        meta = ArchiveMetadata(
            id=archive_id,
            created_at=str(config.get("created_at") or now),
            completed_at=now,
            site_url=config.get("site_url"),
            platform_version=config.get("platform_version"),
            python_version=config.get("python_version"),
            engine_version=config.get("engine_version"),
            tool_version=config.get("version"),
            archive_file=ARCHIVE_FILE,
            archive_size=size,
            archive_size_human=size_format(size),
            options=dict(config.get("options") or {}),
            total_files=len(content),
            total_files_size=sum(e.size for e in content),
            has_database=has_database,
            source=SOURCE_UPLOAD,
        )
        self.write_metadata(archive_id, meta)
        return meta

    def _copy_limited(self, stream: BinaryIO, dest: Path) -> int:
        written = 0
        with dest.open("wb") as out:
            while True:
                chunk = stream.read(_COPY_CHUNK)
                if not chunk:
                    break
                written += len(chunk)
                if written > self.max_upload_bytes:
                    raise UploadRejectedError(
                        f"Uploaded file exceeds maximum size of {size_format(self.max_upload_bytes)}"
                    )
                out.write(chunk)
        return written

    def _read_config(self, container: Path) -> dict:
        # Best effort: a broken config.json still leaves the archive restorable.
        try:
            raw = self.archiver.read_entry(container, CONFIG_ENTRY)
            data = json.loads(raw.decode("utf-8")) if raw else {}
        except (MigrationError, ValueError) as e:
            logger.warning("[Migration] upload config.json unreadable: %s", e)
            return {}
        return data if isinstance(data, dict) else {}

