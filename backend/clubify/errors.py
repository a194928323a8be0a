"""Error taxonomy shared by the guard, the store and the handlers.

Every error renders as ``{"error": <message>}`` with the status code carried
by its class.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException


class ClubifyError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthenticated(ClubifyError):
    status_code = 401


class Forbidden(ClubifyError):
    status_code = 403


class NotFound(ClubifyError):
    status_code = 404


class ValidationFailed(ClubifyError):
    status_code = 400


class Conflict(ClubifyError):
    status_code = 409


class CapacityExceeded(ClubifyError):
    status_code = 400


class InvalidSignature(ClubifyError):
    status_code = 400


class Unavailable(ClubifyError):
    status_code = 503


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _describe_validation(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(item) for item in err.get("loc", ()) if item != "body")
        message = err.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ClubifyError)
    async def handle_clubify_error(request: Request, exc: ClubifyError):
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return _error(400, _describe_validation(exc))

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(OperationalError)
    async def handle_store_unavailable(request: Request, exc: OperationalError):
        logger.exception(f"Store unavailable during {request.method} {request.url.path}")
        return _error(503, "Service unavailable")

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(f"Unhandled error during {request.method} {request.url.path}")
        return _error(500, "Internal server error")
