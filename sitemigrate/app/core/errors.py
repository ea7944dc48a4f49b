from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sitemigrate.services.migration.errors import MigrationError, UploadRejectedError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(MigrationError)
    async def _migration_error(request: Request, exc: MigrationError) -> JSONResponse:
        logger.warning("[Migration] %s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(UploadRejectedError)
    async def _upload_rejected(request: Request, exc: UploadRejectedError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": exc.reason})
