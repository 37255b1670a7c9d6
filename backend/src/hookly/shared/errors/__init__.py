"""Global exception handlers — map domain errors to HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
import structlog

from hookly.domain.exceptions import (
    DomainError,
    InvalidConfigurationError,
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


def _error(status_code: int, exc: DomainError) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=status_code,
        content={"code": exc.code, "message": exc.message},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all domain→HTTP exception mappings."""

    @app.exception_handler(ValidationError)
    async def handle_validation(request: Request, exc: ValidationError) -> ORJSONResponse:
        return _error(422, exc)

    @app.exception_handler(InvalidConfigurationError)
    async def handle_configuration(
        request: Request, exc: InvalidConfigurationError
    ) -> ORJSONResponse:
        logger.warning("invalid_configuration_http", message=exc.message)
        return _error(422, exc)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError) -> ORJSONResponse:
        return _error(404, exc)

    @app.exception_handler(StorageUnavailableError)
    async def handle_storage(request: Request, exc: StorageUnavailableError) -> ORJSONResponse:
        logger.error("storage_unavailable_http", operation=exc.operation, message=exc.message)
        return _error(503, exc)

    @app.exception_handler(DomainError)
    async def handle_domain(request: Request, exc: DomainError) -> ORJSONResponse:
        return _error(400, exc)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("unhandled_exception", error=str(exc))
        return ORJSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        )
