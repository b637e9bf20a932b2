"""Custom exceptions for the dashboard application."""

from typing import Dict, Optional


class DashboardException(Exception):
    """Base class for dashboard exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    headers: Optional[Dict[str, str]] = None

    def __init__(self, message: str = "Dashboard error"):
        self.message = message
        super().__init__(message)

    def to_response(self) -> dict:
        """Convert to API response body."""
        return {"error": self.error_code, "message": self.message}


class RateLimitExceededError(DashboardException):
    """Raised when a caller exceeds a rate limit.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        retry_after: Optional[int] = None,
        limit: Optional[float] = None,
        current: Optional[int] = None,
        reset_in: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.retry_after = retry_after
        self.limit = limit
        self.current = current
        self.reset_in = reset_in
        self.headers = headers
        if retry_after:
            message = f"Rate limit exceeded. Retry after {retry_after} seconds"
        else:
            message = "Rate limit exceeded"
        super().__init__(message)

    def to_response(self) -> dict:
        body = super().to_response()
        if self.retry_after:
            body["retry_after"] = self.retry_after
        for name in ("limit", "current", "reset_in"):
            value = getattr(self, name)
            if value is not None:
                body[name] = value
        return body


class AuthenticationError(DashboardException):
    """Raised when admin token authentication fails.

    Maps to HTTP 401 Unauthorized.
    """
    status_code = 401
    error_code = "UNAUTHORIZED"

    def __init__(self, detail: str = "Invalid or missing admin token"):
        self.detail = detail
        super().__init__(detail)


class ServiceUnavailableError(DashboardException):
    """Raised when a required feature is not configured.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503
    error_code = "SERVICE_UNAVAILABLE"
