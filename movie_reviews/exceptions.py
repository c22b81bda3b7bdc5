"""Domain-specific exceptions for the Movie Reviews API."""

from typing import Any


class MovieAPIError(Exception):
    """Base exception for all Movie Reviews API errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception with context."""
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response."""
        result: dict[str, Any] = {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
        }
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(MovieAPIError):
    """Malformed or out-of-range input (not Pydantic)."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, details={"field": field} if field else None)
        self.field = field


class AuthenticationError(MovieAPIError):
    """Missing, invalid or expired credentials."""

    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ForbiddenError(MovieAPIError):
    """Authenticated but not allowed to perform the action."""

    status_code = 403

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class NotFoundError(MovieAPIError):
    """Referenced entity does not exist."""

    status_code = 404

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            f"{resource_type} with id '{resource_id}' not found",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(MovieAPIError):
    """Uniqueness or state-precondition violation."""

    status_code = 409


class UnavailableError(MovieAPIError):
    """Underlying store is unreachable."""

    status_code = 503

    def __init__(self, operation: str, original_error: str | None = None) -> None:
        message = f"Storage operation '{operation}' failed"
        if original_error:
            message += f": {original_error}"
        super().__init__(
            message, details={"operation": operation, "original_error": original_error}
        )
        self.operation = operation
