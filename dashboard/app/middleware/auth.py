"""Admin authentication for protected endpoints."""

import hmac

from fastapi import Request

from dashboard.app.core.config import settings
from dashboard.app.exceptions import AuthenticationError, ServiceUnavailableError


def get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header.

    Args:
        request: The incoming request

    Returns:
        The token string if present, None otherwise
    """
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.replace("Bearer ", "", 1).strip()


def require_admin(request: Request) -> str:
    """Validate admin token for protected endpoints.

    Args:
        request: The incoming request

    Returns:
        Admin identifier if valid

    Raises:
        ServiceUnavailableError: 503 if no admin token is configured
        AuthenticationError: 401 if admin token is missing or invalid
    """
    expected_token = settings.admin_token
    if not expected_token:
        raise ServiceUnavailableError("Admin API is disabled (ADMIN_TOKEN is not set)")

    # Always perform comparison to prevent enumeration via timing analysis
    token = get_bearer_token(request) or ""
    if not hmac.compare_digest(token.encode(), expected_token.encode()):
        raise AuthenticationError()

    return "admin"
