import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .request_context import get_request_id

logger = logging.getLogger(__name__)


class MessagingError(Exception):
    """Base class for errors raised by the messaging core."""

    status_code = 400
    error = "messaging_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(MessagingError):
    """Bad composer input; raised before any store I/O."""

    status_code = 400
    error = "validation_error"


class AuthorizationError(MessagingError):
    status_code = 403
    error = "authorization_error"


class NotFoundError(MessagingError):
    status_code = 404
    error = "not_found"


class ResolutionError(MessagingError):
    """The recipient selection resolved to nobody."""

    status_code = 422
    error = "resolution_error"


class DispatchError(MessagingError):
    """A delivery leg failed: store write or mail transport rejection."""

    status_code = 502
    error = "dispatch_error"

    def __init__(self, detail: str, *, channel: Optional[str] = None, kind: str = "dispatch_failed") -> None:
        super().__init__(detail)
        self.channel = channel
        self.kind = kind


def _error_response(request: Request, status_code: int, detail: Any, **extra: Any) -> JSONResponse:
    content: Dict[str, Any] = {"detail": detail, "path": request.url.path, **extra}
    request_id = get_request_id(request)
    if request_id:
        content["request_id"] = request_id
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(MessagingError)
    async def messaging_error_handler(request: Request, exc: MessagingError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", exc.error, request.url.path, exc.detail)
        return _error_response(request, exc.status_code, exc.detail, error=exc.error)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(
            request, 422, "Validation failed.", errors=jsonable_encoder(exc.errors())
        )

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
        response = _error_response(request, exc.status_code, exc.detail or "HTTP error.")
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return _error_response(request, 500, "Internal server error.")
