"""GET /health — liveness check."""
from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from identity_api.core.settings import get_settings

router = APIRouter(tags=["health"])


@router.get("/", summary="Service banner", response_class=PlainTextResponse)
def banner() -> str:
    return f"{get_settings().app_name} is running!"


@router.get("/health", summary="Basic health check")
def health_check() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
    }
