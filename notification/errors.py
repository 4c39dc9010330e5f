"""
Notification engine errors.

Configuration errors are deploy-time problems and are never retried.
Precondition and permission errors are rejected synchronously at the
API boundary. Transient delivery failures and soft render failures are
not exceptions; they are reported through result objects.
"""

from typing import Optional


class NotificationError(Exception):
    """Base class for notification engine errors."""
    pass


class ConfigurationError(NotificationError):
    """Unknown notification type, unregistered channel, undersized secret."""
    pass


class NotFoundError(NotificationError):
    """Raised when a referenced notification entity does not exist."""
    pass


class PreconditionError(NotificationError):
    """Inactive type, unmet subscription condition, invalid state."""
    pass


class PermissionDeniedError(NotificationError):
    """Raised when the user lacks a required permission."""
    pass


class TokenValidationError(NotificationError):
    """Raised when an action token is rejected.

    ``code`` is one of ``malformed``, ``invalid_signature``, ``expired``
    or ``already_used``.
    """

    def __init__(self, code: str, message: Optional[str] = None):
        self.code = code
        super().__init__(message or f"Action token rejected: {code}")
