"""Custom exception classes for structured error handling."""

from typing import Any


class DispatcherError(Exception):
    """Base exception for all dispatcher errors."""

    def __init__(self, code: str, message: str, status_code: int = 500) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


class InvalidAPIKeyError(DispatcherError):
    def __init__(self, message: str = "Invalid or missing API key") -> None:
        super().__init__(code="INVALID_API_KEY", message=message, status_code=401)


class InvalidSignatureError(DispatcherError):
    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(code="INVALID_SIGNATURE", message=message, status_code=403)


class CompanyNotFoundError(DispatcherError):
    def __init__(self, message: str = "Company not found") -> None:
        super().__init__(code="COMPANY_NOT_FOUND", message=message, status_code=404)


class CompanyInactiveError(DispatcherError):
    def __init__(self, message: str = "Company is not active") -> None:
        super().__init__(code="COMPANY_INACTIVE", message=message, status_code=400)


class SessionNotFoundError(DispatcherError):
    def __init__(self, message: str = "No active session for this phone number") -> None:
        super().__init__(code="SESSION_NOT_FOUND", message=message, status_code=404)


class ListRecordNotFoundError(DispatcherError):
    def __init__(self, message: str = "List record not found") -> None:
        super().__init__(code="LIST_NOT_FOUND", message=message, status_code=404)


class InvalidListTransitionError(DispatcherError):
    def __init__(self, message: str = "List status transition not allowed") -> None:
        super().__init__(code="INVALID_LIST_TRANSITION", message=message, status_code=409)


class TransportError(DispatcherError):
    """Raised when the messaging provider rejects or fails a send."""

    def __init__(
        self,
        message: str = "Message transport failed",
        provider_code: str | None = None,
    ) -> None:
        self.provider_code = provider_code
        super().__init__(code="TRANSPORT_FAILED", message=message, status_code=502)


class DatabaseConnectionError(DispatcherError):
    def __init__(self, message: str = "Database connection failed") -> None:
        super().__init__(code="DATABASE_CONNECTION_ERROR", message=message, status_code=503)


class ConflictingWriteError(DispatcherError):
    """A concurrent writer won a unique constraint; the request can be retried."""

    def __init__(self, message: str = "Conflicting concurrent write") -> None:
        super().__init__(code="CONFLICTING_WRITE", message=message, status_code=409)


class RedisConnectionError(DispatcherError):
    def __init__(self, message: str = "Redis connection failed") -> None:
        super().__init__(code="REDIS_CONNECTION_ERROR", message=message, status_code=503)


class QueueError(DispatcherError):
    def __init__(self, message: str = "Task queue operation failed") -> None:
        super().__init__(code="QUEUE_ERROR", message=message, status_code=503)
