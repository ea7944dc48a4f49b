from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import urlparse

from fastapi import APIRouter, File, HTTPException, UploadFile
from fastapi.responses import FileResponse

from sitemigrate.app.core.auth import AuthRequired, DepsDep
from sitemigrate.app.modules.migration.schemas import ExportOptionsBody, RestoreOptionsBody
from sitemigrate.services.migration.models import JobRecord

logger = logging.getLogger(__name__)

router = APIRouter()

_NOT_FOUND_ERRORS = {
    "Migration state not found",
    "Restore state not found",
    "Migration backup not found",
}


def _job_response(record: JobRecord) -> dict[str, Any]:
    """
    Return the job record, or raise when the service could not even produce one.

    Phase failures are part of the job state and come back as 200 with `error` set; only
    unknown ids and setup failures (records that were never persisted) become HTTP errors.
    """
    if record.phase == "error":
        status = 404 if record.error in _NOT_FOUND_ERRORS else 500
        raise HTTPException(status_code=status, detail=record.error or "migration_failed")
    return record.as_dict()


def _download_name(site_url: str | None) -> str:
    host = urlparse(site_url or "").hostname or "site"
    return f"{host}-migration-{time.strftime('%Y-%m-%d-%H%M%S', time.gmtime())}.zip"


# --- export ------------------------------------------------------------------------------------


@router.post("/export")
def init_export(_: AuthRequired, deps: DepsDep, body: ExportOptionsBody | None = None) -> dict[str, Any]:
    options = body.as_options() if body else {}
    return _job_response(deps.export_service.init_export(options))


@router.post("/export/run")
def run_export(_: AuthRequired, deps: DepsDep, body: ExportOptionsBody | None = None) -> dict[str, Any]:
    options = body.as_options() if body else {}
    return _job_response(deps.export_service.run_export_to_completion(options))


@router.post("/export/{job_id}/slice")
def export_slice(_: AuthRequired, deps: DepsDep, job_id: str) -> dict[str, Any]:
    return _job_response(deps.export_service.process_export_slice(job_id))


@router.post("/export/{job_id}/cancel")
def cancel_export(_: AuthRequired, deps: DepsDep, job_id: str) -> dict[str, Any]:
    if not deps.export_service.cancel_export(job_id):
        raise HTTPException(status_code=404, detail="export_job_not_found")
    return {"id": job_id, "cancelled": True}


# --- catalog -----------------------------------------------------------------------------------


@router.get("/")
async def list_migrations(_: AuthRequired, deps: DepsDep) -> dict[str, Any]:
    archives = deps.catalog.list_archives()
    return {"migrations": [m.as_dict() for m in archives], "count": len(archives)}


@router.get("/activity")
async def list_activity(_: AuthRequired, deps: DepsDep, limit: int = 50) -> dict[str, Any]:
    return {"items": [e.as_dict() for e in deps.activity_log.get_entries(limit=limit)]}


@router.post("/upload")
def upload_migration(payload: AuthRequired, deps: DepsDep, file: UploadFile = File(...)) -> dict[str, Any]:
    metadata, reason = deps.catalog.handle_uploaded_archive(file.filename or "", file.file)
    if metadata is None:
        raise HTTPException(status_code=400, detail=reason or "upload_rejected")
    deps.activity_log.log(
        "migration_uploaded",
        {"id": metadata.id, "filename": file.filename, "size": metadata.archive_size_human},
        actor=payload.sub or "system",
    )
    return metadata.as_dict()


@router.get("/{migration_id}")
async def get_migration(_: AuthRequired, deps: DepsDep, migration_id: str) -> dict[str, Any]:
    metadata = deps.catalog.get_archive_metadata(migration_id)
    if metadata is None:
        raise HTTPException(status_code=404, detail="migration_not_found")
    return metadata.as_dict()


@router.get("/{migration_id}/download")
def download_migration(payload: AuthRequired, deps: DepsDep, migration_id: str):
    metadata = deps.catalog.get_archive_metadata(migration_id)
    path = deps.catalog.get_archive_file_path(migration_id)
    if metadata is None or path is None:
        raise HTTPException(status_code=404, detail="migration_not_found")
    deps.activity_log.log("migration_downloaded", {"id": migration_id}, actor=payload.sub or "system")
    return FileResponse(path=str(path), filename=_download_name(metadata.site_url), media_type="application/zip")


@router.delete("/{migration_id}")
def delete_migration(payload: AuthRequired, deps: DepsDep, migration_id: str) -> dict[str, Any]:
    if not deps.catalog.delete_archive(migration_id):
        raise HTTPException(status_code=404, detail="migration_not_found")
    deps.activity_log.log("migration_deleted", {"id": migration_id}, actor=payload.sub or "system")
    logger.info("[Migration] archive deleted: id=%s by=%s", migration_id, payload.sub)
    return {"id": migration_id, "deleted": True}


# --- restore -----------------------------------------------------------------------------------


@router.post("/restore/{job_id}/slice")
def restore_slice(_: AuthRequired, deps: DepsDep, job_id: str) -> dict[str, Any]:
    return _job_response(deps.restore_service.process_restore_slice(job_id))


@router.post("/{migration_id}/restore")
def init_restore(
    _: AuthRequired, deps: DepsDep, migration_id: str, body: RestoreOptionsBody | None = None
) -> dict[str, Any]:
    options = body.as_options() if body else {}
    return _job_response(deps.restore_service.init_restore(migration_id, options))


@router.post("/{migration_id}/restore/run")
def run_restore(
    _: AuthRequired, deps: DepsDep, migration_id: str, body: RestoreOptionsBody | None = None
) -> dict[str, Any]:
    options = body.as_options() if body else {}
    return _job_response(deps.restore_service.run_restore_to_completion(migration_id, options))
