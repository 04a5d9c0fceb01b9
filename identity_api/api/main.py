"""FastAPI application factory.

Assembles exception handlers and all API routers.
This module is the authoritative app object — identity_api/main.py re-exports it.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from identity_api.api.routes.audit import router as audit_router
from identity_api.api.routes.health import router as health_router
from identity_api.api.routes.identify import router as identify_router
from identity_api.core.errors import register_exception_handlers
from identity_api.core.logging import setup_logging
from identity_api.core.settings import get_settings
from identity_api.db.base import Base
from identity_api.db.session import get_engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    setup_logging()
    if get_settings().create_schema_on_startup:
        logger.info("Creating database schema on startup")
        Base.metadata.create_all(bind=get_engine())
    yield


def create_app() -> FastAPI:
    settings = get_settings()
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    register_exception_handlers(application)

    application.include_router(health_router)
    application.include_router(identify_router)
    application.include_router(audit_router)
    return application


app = create_app()
