"""Error taxonomy shared by services and the HTTP layer.

Every application error carries the HTTP status it maps to. Services raise
these; ``error_response`` is the only place that turns an exception into a
``(message, status)`` pair.
"""

import logging

from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)


class AppError(ValueError):
    status = 500

    def __init__(self, message: str = "Internal Server Error") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    status = 400


class InvalidCategoryType(ValidationError):
    pass


class RemainingAmountExceeded(AppError):
    status = 400


class Unauthorized(AppError):
    status = 401


class Forbidden(AppError):
    status = 403


class NotFound(AppError):
    status = 404


class CategoryNotFound(NotFound):
    pass


class ExternalServiceError(AppError):
    status = 502


def _first_issue(errors: list) -> str:
    if not errors:
        return "Invalid request"
    issue = errors[0]
    loc = ".".join(str(part) for part in issue.get("loc", ()) if part != "body")
    msg = issue.get("msg", "Invalid value")
    return f"{loc}: {msg}" if loc else msg


def error_response(exc: BaseException) -> tuple[str, int]:
    if isinstance(exc, AppError):
        return exc.message, exc.status
    if isinstance(exc, (PydanticValidationError, RequestValidationError)):
        return _first_issue(list(exc.errors())), 400
    logger.error(f"unhandled_error: type={type(exc).__name__}", exc_info=exc)
    return "Internal Server Error", 500
