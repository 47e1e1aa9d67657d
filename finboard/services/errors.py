"""Service-layer errors.

Services raise these; the HTTP layer turns them into
``{"detail": message, "error": {field: [messages]}}`` responses.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)

GENERAL_FIELD = "general"


class ServiceError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_field_errors(self) -> dict[str, list[str]]:
        return {GENERAL_FIELD: [self.message]}


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any | None = None, message: str | None = None) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(message or f"{resource} not found")


class AuthenticationError(ServiceError):
    status_code = 401
    code = "AUTHENTICATION_REQUIRED"

    def __init__(self, message: str = "Your session expired. Please sign in again.") -> None:
        super().__init__(message)


class AuthorizationError(ServiceError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "You do not have access to this resource", field: str | None = None) -> None:
        self.field = field
        super().__init__(message)

    def to_field_errors(self) -> dict[str, list[str]]:
        return {self.field or GENERAL_FIELD: [self.message]}


class ValidationError(ServiceError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field_errors: dict[str, list[str]] | None = None) -> None:
        super().__init__(message)
        self.field_errors = field_errors or {}

    @classmethod
    def field(cls, name: str, message: str) -> "ValidationError":
        return cls(message, {name: [message]})

    def to_field_errors(self) -> dict[str, list[str]]:
        return self.field_errors or {GENERAL_FIELD: [self.message]}


class ConflictError(ServiceError):
    status_code = 409
    code = "CONFLICT"

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)

    def to_field_errors(self) -> dict[str, list[str]]:
        return {self.field or GENERAL_FIELD: [self.message]}


class RateLimitError(ServiceError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, message: str = "Too many requests. Please try again later.", retry_after: int | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class SubscriptionRequiredError(ServiceError):
    status_code = 402
    code = "SUBSCRIPTION_REQUIRED"

    def __init__(self, message: str = "An active subscription is required") -> None:
        super().__init__(message)


def _is_unique_violation(exc: IntegrityError) -> bool:
    text = str(exc.orig).lower()
    return "unique" in text or "duplicate" in text


def _is_foreign_key_violation(exc: IntegrityError) -> bool:
    return "foreign key" in str(exc.orig).lower()


def handle_db_error(
    exc: SQLAlchemyError,
    *,
    action: str,
    unique_message: str | None = None,
    foreign_key_message: str | None = None,
    fallback_message: str = "Something went wrong. Please try again.",
    context: dict[str, Any] | None = None,
) -> ServiceError:
    """Map a database exception to a user-facing ServiceError.

    The raw driver message is logged and never returned to the caller.
    """
    logger.error(
        "Database error during %s: %s",
        action,
        exc.__class__.__name__,
        extra={"action": action, "context": context or {}, "db_error": str(getattr(exc, "orig", exc))},
    )
    if isinstance(exc, IntegrityError):
        if unique_message and _is_unique_violation(exc):
            return ConflictError(unique_message)
        if foreign_key_message and _is_foreign_key_violation(exc):
            return ValidationError(foreign_key_message)
    return ServiceError(fallback_message)
