"""
MODULE OVERVIEW:
Translates exceptions into the uniform `ApiError` JSON body.

WHAT IS HAPPENING HERE:
Routes raise domain exceptions (`CommentNotFoundError`, `SubscriptionInitError`...)
and FastAPI raises `RequestValidationError`. Each one maps to exactly one status
code here, so no route builds error responses by hand.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from comment_stream.shared.errors import (
    CommentNotFoundError,
    SubscriptionInitError,
    UnsupportedMediaTypeError,
)
from comment_stream.shared.models import ApiError


def error_response(request: Request, status: int, error: str, message: str, field_errors: dict | None = None) -> JSONResponse:
    body = ApiError(
        status=status,
        error=error,
        message=message,
        path=request.url.path,
        field_errors=field_errors or None,
    )
    return JSONResponse(
        status_code=status,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


def field_errors_from(exc: RequestValidationError) -> dict[str, str]:
    field_errors = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or "body"
        cause = (err.get("ctx") or {}).get("error")
        field_errors.setdefault(field, str(cause) if cause else err.get("msg", "invalid"))
    return field_errors


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    field_errors = field_errors_from(exc)
    logger.warning(f"{request.method} {request.url.path} validation failed fields={sorted(field_errors)}")
    return error_response(request, 400, "Validation Error", "Request validation failed", field_errors)


async def handle_unsupported_media_type(request: Request, exc: UnsupportedMediaTypeError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} unsupported content_type={exc.content_type}")
    return error_response(request, 415, "Unsupported Media Type", str(exc))


async def handle_not_found(request: Request, exc: CommentNotFoundError) -> JSONResponse:
    return error_response(request, 404, "Not Found", str(exc))


async def handle_subscription_init(request: Request, exc: SubscriptionInitError) -> JSONResponse:
    logger.warning(f"connection_id={exc.connection_id} protocol=sse event=init_failed reason='{exc}'")
    return error_response(request, 503, "Service Unavailable", "Could not open the comment stream")


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f"{request.method} {request.url.path} failed")
    return error_response(request, 500, "Internal Server Error", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(UnsupportedMediaTypeError, handle_unsupported_media_type)
    app.add_exception_handler(CommentNotFoundError, handle_not_found)
    app.add_exception_handler(SubscriptionInitError, handle_subscription_init)
    app.add_exception_handler(Exception, handle_unexpected)
