"""Error taxonomy for the synchronization engine."""

from typing import Any, Dict, Optional


class SyncError(Exception):
    """
    Base class for all engine errors.

    Every error carries a machine-readable code and optional details so the
    runner can fold it into its per-item error list. Errors flagged ``fatal``
    halt the migration; everything else is scoped to one item or page.
    """

    fatal = False
    default_code = "SYNC_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize the error.

        Args:
            message: Human readable description
            error_code: Machine readable code (defaults to the class code)
            details: Extra context for logs and reports
        """
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "error": self.message,
            "error_code": self.error_code,
            "fatal": self.fatal,
            **self.details,
        }


class TransientNetworkError(SyncError):
    """Network failure or 429/5xx that survived the bounded retry."""
    default_code = "TRANSIENT_NETWORK"


class AuthError(SyncError):
    """Bearer token rejected (401). Fatal once the single refresh is spent."""
    fatal = True
    default_code = "AUTH_REJECTED"


class FetchError(SyncError):
    """A source page could not be fetched, so the cursor cannot advance."""
    fatal = True
    default_code = "FETCH_FAILED"


class NotFoundError(SyncError):
    """Expected lookup miss. Drives the create branch, never a failure."""
    default_code = "NOT_FOUND"


class ConfigurationError(SyncError):
    """Missing mapping or association entry, or an unusable config value."""
    default_code = "CONFIGURATION"


class ValidationError(SyncError):
    """A transformed record lacks a required field."""
    default_code = "VALIDATION"


class TargetError(SyncError):
    """Non-retryable rejection from the target system."""
    default_code = "TARGET_REJECTED"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        if status_code is not None:
            self.details.setdefault("status_code", status_code)


def is_fatal(error: BaseException) -> bool:
    """Return True if the error must stop the whole run."""
    return isinstance(error, SyncError) and error.fatal
