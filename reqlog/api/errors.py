"""Error payloads rendered by the HTTP layer.

An :class:`ErrorResponse` is both the JSON body sent to the client and a
loggable value (via ``log_value``) for the request-scoped logger.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from reqlog.observability.logger import Logger, emit_safely, new_test_logger
from reqlog.observability.records import Level, Value, group_value


class ErrorResponse(BaseModel):
    status: str
    error: str | None = None
    details: Any = None
    http_status_code: int = Field(default=500, exclude=True)

    def log_value(self) -> Value:
        return group_value(
            http_status_code=self.http_status_code,
            status_text=self.status,
            error_text=self.error,
            details=self.details,
        )

    def render(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.http_status_code,
            content=jsonable_encoder(self.model_dump(exclude_none=True)),
        )


class ApiError(Exception):
    """Raised by route handlers to answer with an :class:`ErrorResponse`."""

    def __init__(self, response: ErrorResponse) -> None:
        super().__init__(response.error or response.status)
        self.response = response

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        status_code: int,
        status: str,
        error: str | None = None,
        details: Any = None,
    ) -> "ApiError":
        err = cls(
            ErrorResponse(
                status=status,
                error=error if error is not None else str(exc),
                details=details,
                http_status_code=status_code,
            )
        )
        err.__cause__ = exc
        return err


def render_error_response(exc: Exception) -> ErrorResponse:
    return ErrorResponse(
        status="Error rendering response.",
        error=str(exc),
        http_status_code=422,
    )


def _request_logger(request: Request) -> Logger:
    return getattr(request.app.state, "logger", None) or new_test_logger()


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    logger = _request_logger(request)
    cause = exc.__cause__
    emit_safely(
        logger,
        Level.ERROR,
        "error in handler",
        error=exc.response,
        cause=repr(cause) if cause is not None else None,
    )
    try:
        return exc.response.render()
    except (TypeError, ValueError) as render_exc:
        emit_safely(logger, Level.ERROR, "error rendering response", error=repr(render_exc))
        return render_error_response(render_exc).render()


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    response = ErrorResponse(
        status="Invalid request.",
        error="request validation failed",
        details=jsonable_encoder(exc.errors()),
        http_status_code=422,
    )
    emit_safely(_request_logger(request), Level.WARN, "invalid request", error=response)
    return response.render()


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
