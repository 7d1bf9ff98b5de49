"""Security: single-password session gate. No FastAPI."""

from infra_dashboard.security.exceptions import AuthenticationError, SecurityError, SessionError
from infra_dashboard.security.session import SessionManager

__all__ = [
    "AuthenticationError",
    "SecurityError",
    "SessionError",
    "SessionManager",
]
