from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sitemigrate.app.core.config import settings
from sitemigrate.app.core.errors import register_exception_handlers
from sitemigrate.app.core.logging_setup import configure_logging
from sitemigrate.core.security import auth as authx_auth

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from sitemigrate.app.dependencies import create_dependencies

    app.state.deps = create_dependencies()
    logger.info("Dependencies initialized")
    yield
    logger.info("Shutting down...")


def create_app() -> FastAPI:
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Resumable site export / restore service",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    authx_auth.handle_errors(app)

    from sitemigrate.app.modules.migration.router import router as migration_router

    app.include_router(migration_router, prefix="/api/migrations", tags=["Migrations"])

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "service": "sitemigrate"}

    @app.get("/")
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "auth": "AuthX JWT",
        }

    return app


app = create_app()
