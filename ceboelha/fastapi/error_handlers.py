"""FastAPI error handlers for Ceboelha exceptions.

Every error leaves the API in the same envelope::

    {"success": false, "error": "<ExceptionClass>", "code": "<CODE>", "message": "..."}
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ceboelha.core.exceptions import CeboelhaError, RateLimitError, UnauthorizedError

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: ("BadRequest", "VALIDATION_ERROR"),
    401: ("UnauthorizedError", "UNAUTHORIZED"),
    403: ("ForbiddenError", "FORBIDDEN"),
    404: ("NotFoundError", "NOT_FOUND"),
    405: ("MethodNotAllowed", "METHOD_NOT_ALLOWED"),
    409: ("ConflictError", "CONFLICT"),
    429: ("RateLimitError", "RATE_LIMIT"),
}


def error_envelope(error: str, code: str, message: str) -> dict:
    return {"success": False, "error": error, "code": code, "message": message}


async def ceboelha_exception_handler(
    request: Request,
    exc: CeboelhaError
) -> JSONResponse:
    """Handle Ceboelha exceptions.

    Args:
        request: The FastAPI request
        exc: The Ceboelha exception

    Returns:
        JSONResponse with the error envelope
    """
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")

    headers = {}
    if isinstance(exc, RateLimitError):
        headers.update(exc.headers)
        if exc.retry_after:
            headers["Retry-After"] = str(exc.retry_after)
    if isinstance(exc, UnauthorizedError):
        headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(type(exc).__name__, exc.code, exc.message),
        headers=headers or None,
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors as a 400 ValidationError.

    The message names the first invalid field.
    """
    errors = exc.errors()
    if errors:
        first = errors[0]
        # Drop the leading "body"/"query" location part
        location = [str(loc) for loc in first["loc"][1:]] or [str(loc) for loc in first["loc"]]
        message = f"{'.'.join(location)}: {first['msg']}"
    else:
        message = "Request validation failed"

    return JSONResponse(
        status_code=400,
        content=error_envelope("ValidationError", "VALIDATION_ERROR", message),
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException
) -> JSONResponse:
    """Render framework HTTP errors (unknown route, wrong method...) in the envelope."""
    error, code = _HTTP_CODES.get(exc.status_code, ("HTTPError", "HTTP_ERROR"))
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(error, code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions without exposing internals."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content=error_envelope(
            "InternalError",
            "INTERNAL_ERROR",
            "An unexpected error occurred. Please try again later.",
        ),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register all error handlers with a FastAPI app.

    Args:
        app: The FastAPI application
    """
    app.add_exception_handler(CeboelhaError, ceboelha_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
