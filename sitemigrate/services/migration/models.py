from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Mapping

JOB_KIND_EXPORT = "export"
JOB_KIND_RESTORE = "restore"

SOURCE_LOCAL = "local"
SOURCE_UPLOAD = "upload"

_TRUE_STRINGS = {"1", "true", "yes", "on", "y"}
_FALSE_STRINGS = {"0", "false", "no", "off", "n", ""}


def coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        v = value.strip().lower()
        if v in _TRUE_STRINGS:
            return True
        if v in _FALSE_STRINGS:
            return False
    return bool(value)


def _options_from_mapping(cls, raw: Mapping[str, Any] | None):
    known = {f.name for f in fields(cls)}
    values = {k: coerce_bool(v) for k, v in (raw or {}).items() if k in known}
    return cls(**values)


@dataclass(frozen=True)
class ExportOptions:
    include_database: bool = True
    include_themes: bool = True
    include_plugins: bool = True
    include_uploads: bool = True
    include_mu_plugins: bool = False
    exclude_cache: bool = True
    exclude_inactive_themes: bool = False
    exclude_inactive_plugins: bool = False
    exclude_spam_comments: bool = True
    exclude_post_revisions: bool = False

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "ExportOptions":
        """Unknown keys are dropped, known keys coerced to bool, missing keys defaulted."""
        return _options_from_mapping(cls, raw)

    def as_dict(self) -> dict[str, bool]:
        return asdict(self)


@dataclass(frozen=True)
class RestoreOptions:
    restore_database: bool = True
    restore_files: bool = True

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "RestoreOptions":
        return _options_from_mapping(cls, raw)

    def as_dict(self) -> dict[str, bool]:
        return asdict(self)


@dataclass
class JobRecord:
    """Persisted, resumable progress state for one export or restore."""

    id: str
    kind: str
    phase: str
    progress: int = 0
    completed: bool = False
    error: str | None = None
    options: dict[str, bool] = field(default_factory=dict)
    created_at: str = ""
    completed_at: str | None = None
    working_dir: str = ""

    # database phase (export)
    dump_started: bool = False
    table_index: int = 0
    table_offset: int = 0
    total_tables: int = 0
    dump_method: str | None = None

    # enumerate phase
    total_files_count: int = 0
    total_files_size: int = 0

    # archive phase
    filemap_offset: int = 0
    archived_files: int = 0
    archived_size: int = 0
    skipped_files: int = 0
    config_archived: bool = False
    db_archived: bool = False
    archiver: str | None = None

    # finalize
    archive_size: int = 0
    archive_size_human: str | None = None

    # restore
    source_id: str | None = None
    checkpoint_done: bool = False
    checkpoint_id: str | None = None
    db_imported: bool = False
    db_statements_ok: int = 0
    db_statements_failed: int = 0
    extract_index: int = 0
    total_entries: int = 0
    extracted_files: int = 0
    rejected_entries: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "JobRecord":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def failure(cls, message: str, *, kind: str, job_id: str = "") -> "JobRecord":
        """A record describing a failure that was never persisted (setup failure / unknown id)."""
        return cls(id=job_id, kind=kind, phase="error", error=message)


@dataclass(frozen=True)
class ArchiveMetadata:
    """Durable catalog entry describing a completed (or uploaded) migration archive."""

    id: str
    created_at: str
    completed_at: str
    site_url: str | None
    platform_version: str | None
    python_version: str | None
    engine_version: str | None
    tool_version: str | None
    archive_file: str
    archive_size: int
    archive_size_human: str
    options: dict[str, bool]
    total_files: int
    total_files_size: int
    has_database: bool
    source: str = SOURCE_LOCAL

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ArchiveMetadata":
        return cls(
            id=str(data.get("id") or ""),
            created_at=str(data.get("created_at") or ""),
            completed_at=str(data.get("completed_at") or data.get("created_at") or ""),
            site_url=data.get("site_url"),
            platform_version=data.get("platform_version"),
            python_version=data.get("python_version"),
            engine_version=data.get("engine_version"),
            tool_version=data.get("tool_version"),
            archive_file=str(data.get("archive_file") or "migration.zip"),
            archive_size=int(data.get("archive_size") or 0),
            archive_size_human=str(data.get("archive_size_human") or ""),
            options=dict(data.get("options") or {}),
            total_files=int(data.get("total_files") or 0),
            total_files_size=int(data.get("total_files_size") or 0),
            has_database=bool(data.get("has_database", False)),
            source=str(data.get("source") or SOURCE_LOCAL),
        )
