from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error; rendered as {"error": {message, code, details}}."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code or type(self).code
        self.status_code = status_code or type(self).status_code
        self.details = details or {}
        super().__init__(message)


class BadRequestError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "BAD_REQUEST"

    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, details=details)


class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class ConflictError(AppError):
    """Record already processed, claimed by another worker, or not in a reconcilable state."""

    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"

    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, details=details)


class LedgerUpdateError(AppError):
    """The atomic user credit matched no document: nothing was applied."""

    code = "LEDGER_UPDATE_FAILED"

    def __init__(self, message: str = "Failed to update user record", details: dict[str, Any] | None = None):
        super().__init__(message, details=details)


class ServiceUnavailableError(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "Service unavailable"):
        super().__init__(message)


def _error_json(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> ORJSONResponse:
    body: dict[str, Any] = {"error": {"message": message, "code": code, "details": details or {}}}
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        body["request_id"] = request_id
    return ORJSONResponse(status_code=status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return _error_json(request, exc.status_code, exc.code, exc.message, exc.details)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    return _error_json(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "VALIDATION_ERROR",
        "Validation error",
        {"errors": jsonable_encoder(exc.errors())},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from app.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", path=request.url.path, exc_info=exc)
    return _error_json(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", "Internal server error")
