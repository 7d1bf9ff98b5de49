"""Domain-specific exceptions. Pure domain layer, no infrastructure."""


class DomainError(Exception):
    """Base for all domain-layer errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class DomainValidationError(DomainError):
    """Raised when an action request or filter violates validation rules."""


class InvalidCursorError(DomainValidationError):
    """Raised when a pagination cursor cannot be decoded."""


class NotFoundError(DomainError):
    """Raised when the addressed record does not exist."""


class UnknownQueueError(NotFoundError):
    """Raised when an action names a queue the store does not know about."""


class DeploymentNotFoundError(NotFoundError):
    """Raised when a deployment uuid has no record."""


class JobNotFoundError(NotFoundError):
    """Raised when a job id has no hash in its queue."""
