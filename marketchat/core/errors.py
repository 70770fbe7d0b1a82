import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger(__name__)


class AppError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class TransientIOError(AppError):
    """Network or service failure on a read or write. Retrying may succeed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, 503)
        self.cause = cause


class ValidationError(AppError):
    """A local precondition failed; the operation was not attempted."""

    def __init__(self, message: str):
        super().__init__(message, 422)


class NotFoundError(AppError):
    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} '{identifier}' not found", 404)
        self.resource = resource
        self.identifier = identifier


class UniqueViolationError(AppError):
    def __init__(self, message: str = "Unique constraint violated"):
        super().__init__(message, 409)


class AuthenticationError(AppError):
    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message, 401)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(_: Request, exc: AppError):
        logger.warning("AppError: %s", exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(PydanticValidationError)
    async def validation_error_handler(_: Request, exc: PydanticValidationError):  # pragma: no cover
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
