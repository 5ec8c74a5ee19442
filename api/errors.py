"""Map domain errors onto structured JSON error responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.structures import ErrorResponse
from observability.logger import get_logger
from pipeline.errors import AccumulatorClosedError, InvalidAlertTransition, LogPulseError

log = get_logger(__name__)


def _error(status_code: int, error: str, details: list | None = None) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        details=jsonable_encoder(details) if details is not None else None,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "Validation failed", exc.errors())

    @app.exception_handler(StarletteHTTPException)
    async def http_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(InvalidAlertTransition)
    async def transition_handler(request: Request, exc: InvalidAlertTransition) -> JSONResponse:
        return _error(409, str(exc))

    @app.exception_handler(AccumulatorClosedError)
    async def closed_handler(request: Request, exc: AccumulatorClosedError) -> JSONResponse:
        return _error(503, "Service is shutting down")

    @app.exception_handler(LogPulseError)
    async def domain_handler(request: Request, exc: LogPulseError) -> JSONResponse:
        log.error("api.domain_error", path=request.url.path, error=str(exc))
        return _error(500, str(exc))

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        log.error("api.unhandled_error", path=request.url.path, error=str(exc), exc_info=exc)
        return _error(500, "Internal server error")
