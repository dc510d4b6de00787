"""Application error taxonomy and the FastAPI handlers that render it.

Every failure leaves a service as `{"success": false, "error": "<message>"}`:

- 400 request validation (missing or malformed fields)
- 401 missing or invalid bearer credential
- 403 authenticated caller acting for someone else
- 404 no matching ledger row / article
- 429 checkout rate limit exceeded
- 500 upstream (gateway, store) failure or anything unexpected; the upstream
  message is forwarded as-is
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from magsub.common.logging import logger


class AppError(Exception):
    """Base class for failures with a known HTTP status."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationFailed(AppError):
    status_code = 400


class AuthenticationFailed(AppError):
    status_code = 401


class PermissionDenied(AppError):
    status_code = 403


class NotFound(AppError):
    status_code = 404


class RateLimited(AppError):
    status_code = 429


class UpstreamError(AppError):
    status_code = 500


def error_body(message: str) -> dict:
    return {"success": False, "error": message}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed path=%s error=%s", request.url.path, exc.message)
    else:
        logger.info("request_rejected path=%s status=%s error=%s", request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted({".".join(str(part) for part in err["loc"] if part != "body") for err in exc.errors()})
    message = "missing or invalid fields: " + ", ".join(f for f in fields if f) if fields else "invalid request"
    logger.info("request_rejected path=%s status=400 error=%s", request.url.path, message)
    return JSONResponse(status_code=400, content=error_body(message))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error path=%s error=%s", request.url.path, exc)
    return JSONResponse(status_code=500, content=error_body(str(exc) or exc.__class__.__name__))


def register_error_handlers(app: FastAPI) -> None:
    """Attach the JSON error renderers to one FastAPI app."""

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
