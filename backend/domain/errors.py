"""
Custom domain exceptions for consistent error handling.

These exceptions are mapped to HTTP status codes by the global exception handler
in main.py.
"""
from fastapi import HTTPException, status


class DomainError(HTTPException):
    """Base class for all domain-specific errors."""
    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST, details: dict | None = None):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class NotFoundError(DomainError):
    """Resource not found (404)."""
    def __init__(self, resource_type: str, identifier: str, details: dict | None = None):
        message = f"{resource_type} not found: {identifier}"
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, details=details)


class ValidationError(DomainError):
    """Validation error (400). Bad input, unavailable dish, insufficient stock."""
    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        if field:
            message = f"Validation error on {field}: {message}"
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InvalidTransitionError(ValidationError):
    """Status change outside the allowed graph (400)."""
    def __init__(self, current: str, target: str, kind: str = "order"):
        super().__init__(
            f"Cannot change {kind} status from {current} to {target}",
            details={"from": current, "to": target},
        )
        self.current = current
        self.target = target


class PermissionDeniedError(DomainError):
    """Permission denied (403)."""
    def __init__(self, message: str = "Permission denied", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN, details=details)


class UnauthorizedError(DomainError):
    """Unauthorized access (401)."""
    def __init__(self, message: str = "Unauthorized", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED, details=details)


class ConflictError(DomainError):
    """Resource conflict (409). Raised when a precondition went stale mid-flight."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_409_CONFLICT, details=details)


class ExternalGatewayError(DomainError):
    """Payment provider / network failure during dispatch or capture (502)."""
    def __init__(self, provider: str, message: str, details: dict | None = None):
        super().__init__(
            f"{provider} gateway error: {message}",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details,
        )
        self.provider = provider


class ReconciliationMismatchError(DomainError):
    """Callback rejected: bad signature or amount outside tolerance (409)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_409_CONFLICT, details=details)


class TransactionAbortError(DomainError):
    """A unit of work failed and was rolled back as a whole (500)."""
    def __init__(self, operation: str):
        # The underlying cause is logged server-side and kept on __cause__ only
        super().__init__(
            f"{operation} failed and was rolled back",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"operation": operation},
        )
