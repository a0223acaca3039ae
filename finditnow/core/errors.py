"""
Domain errors raised by the core services.

The HTTP layer maps each class to one status code; services never build
HTTP responses themselves. ConcurrencyError and LockTimeoutError come from
the store and are re-exported here for convenience.
"""

from ..db.store import ConcurrencyError, LockTimeoutError


class WorkflowError(Exception):
    """Base exception for domain errors."""
    pass


class ValidationError(WorkflowError):
    """Raised when input or a requested transition is not allowed."""
    pass


class NotFoundError(WorkflowError):
    """Raised when a referenced document does not exist."""
    pass


class PermissionDeniedError(WorkflowError):
    """Raised when the actor may not perform the action."""
    pass


class AuthenticationError(WorkflowError):
    """Raised on bad credentials or a bad one-time code."""
    pass


class AccountStatusError(WorkflowError):
    """Raised when a suspended or banned account tries to act."""

    def __init__(self, status: str):
        super().__init__(f"Account is {status}")
        self.status = status


class RateLimitError(WorkflowError):
    """Raised when a client exceeds an attempt limit."""
    pass


__all__ = [
    "WorkflowError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "AuthenticationError",
    "AccountStatusError",
    "RateLimitError",
    "ConcurrencyError",
    "LockTimeoutError",
]
