"""Typed errors and the FastAPI exception handlers that render them.

Error taxonomy
--------------
ObservationError       : the submitted observation is unusable; 400, the
                         resolver never touches the store
ClusterIntegrityError  : the stored identity graph violates a link
                         invariant; 500, the transaction is rolled back
SQLAlchemyError        : any store failure, including conflict aborts;
                         500, the transaction is rolled back

The wire shapes below are shared with existing ``/identify`` clients and
must not change.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    """Base error for identity resolution."""

    code: str = "identify.error"
    status_code: int = 500

    def __init__(self, message: str, *, meta: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.meta = dict(meta or {})


class ObservationError(IdentityError):
    """Neither an email nor a phone number was supplied."""

    code = "identify.invalid_observation"
    status_code = 400


class ClusterIntegrityError(IdentityError):
    """A stored contact breaks the primary/secondary link invariants."""

    code = "identify.cluster_integrity"
    status_code = 500


def _server_error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": message},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register identity-wide exception handlers on a FastAPI app."""

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid request data",
                "details": jsonable_encoder(exc.errors(), exclude={"input", "ctx"}),
            },
        )

    @app.exception_handler(ObservationError)
    async def _observation_error_handler(request: Request, exc: ObservationError) -> Response:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "Invalid request data",
                "details": [{"msg": exc.message, "code": exc.code}],
            },
        )

    @app.exception_handler(ClusterIntegrityError)
    async def _integrity_error_handler(request: Request, exc: ClusterIntegrityError) -> Response:
        logger.error(
            "Identity cluster integrity violation on %s: %s (meta=%s)",
            request.url.path,
            exc.message,
            exc.meta,
        )
        return _server_error(exc.message)

    @app.exception_handler(SQLAlchemyError)
    async def _store_error_handler(request: Request, exc: SQLAlchemyError) -> Response:
        logger.exception("Store failure on %s", request.url.path)
        return _server_error("An unexpected error occurred")

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
        logger.exception("Unhandled exception on %s", request.url.path)
        return _server_error("An unexpected error occurred")
