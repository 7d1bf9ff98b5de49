"""Security-layer exceptions. Typed, no HTTP."""


class SecurityError(Exception):
    """Base for all security-layer errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AuthenticationError(SecurityError):
    """Raised when a request carries no valid session or the password is wrong."""


class SessionError(SecurityError):
    """Raised when a session token cannot be issued or decoded."""
