"""Render ApiError (and request validation failures) as JSON responses."""

import math

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from rdpanel.core.errors import ApiError, ErrorKind, validation_error
from rdpanel.observability import get_logger

logger = get_logger(__name__)


def http_status_for(error: ApiError) -> int:
    """HTTP status the dashboard answers with for a classified error."""
    if error.kind == ErrorKind.VALIDATION_ERROR:
        return error.status if 400 <= error.status < 500 else 400
    if error.kind == ErrorKind.UNAUTHORIZED:
        return 401
    if error.kind == ErrorKind.RATE_LIMITED:
        return 429
    if error.kind == ErrorKind.NETWORK_ERROR:
        return 503
    if error.kind == ErrorKind.API_ERROR:
        return error.status if 400 <= error.status < 600 else 502
    return 500


def error_response(error: ApiError) -> JSONResponse:
    headers = {}
    if error.kind == ErrorKind.RATE_LIMITED and error.retry_after is not None:
        headers["Retry-After"] = str(max(1, math.ceil(error.retry_after)))
    return JSONResponse(
        status_code=http_status_for(error),
        content={"error": error.to_dict()},
        headers=headers,
    )


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    status = http_status_for(exc)
    log = logger.error if status >= 500 else logger.info
    log(
        f"{request.method} {request.url.path} failed",
        extra={"error_kind": exc.kind.value, "code": exc.code, "status": status},
    )
    return error_response(exc)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    ]
    return error_response(validation_error("Invalid request", errors=errors))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
