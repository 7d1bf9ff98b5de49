"""Application-layer exceptions. Do not reuse domain exceptions."""


class ApplicationError(Exception):
    """Base for all application-layer errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class BackendUnavailableError(ApplicationError):
    """Raised when a backend is unreachable, timed out, not configured, or its circuit is open."""


class ActionFailedError(ApplicationError):
    """Raised when a backend rejected a mutation. Not retried automatically."""


class StartupError(ApplicationError):
    """Raised when the service cannot construct any backend client. Fatal."""
