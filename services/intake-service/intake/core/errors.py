from typing import Any, Dict, Optional

from fastapi import status


class IntakeError(Exception):
    """Base exception for the intake service."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(IntakeError):
    """Missing or malformed input."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(IntakeError):
    """Resource not found."""
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier: str = None):
        message = f"{resource} not found"
        if identifier:
            message += f": {identifier}"
        super().__init__("NOT_FOUND", message)


class UnauthorizedError(IntakeError):
    """Caller has no valid session."""
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Not authenticated"):
        super().__init__("UNAUTHORIZED", message)


class ForbiddenError(IntakeError):
    """Caller's role does not allow the operation."""
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Permission denied"):
        super().__init__("FORBIDDEN", message)


class LockTimeoutError(IntakeError):
    """Mutation lock could not be acquired in time. Retryable."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, lock_name: str, timeout: float):
        super().__init__(
            "SERVER_BUSY",
            "Server is busy processing other requests, please try again shortly",
            {"lock": lock_name, "timeout_seconds": timeout},
        )
        self.retry_after = max(1, int(timeout // 10))


class StorageCorruptionError(IntakeError):
    """Stored table does not have the shape the service relies on."""

    def __init__(self, table: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_CORRUPTION", f"{table}: {message}", details)
