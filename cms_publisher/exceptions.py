"""
Custom exception classes for the publishing scheduler.

Publish failures are classified by ``PublishError.kind`` so the dispatch
coordinator can decide between another attempt and a terminal failure
without knowing anything about the platform that raised them.

Hierarchy:
    Exception
    +-- PublisherBaseError (base for all scheduler-specific errors)
    |   +-- PublishError (kind: validation | transient | permanent)
    |   |   +-- AuthenticationError
    |   |   +-- ValidationError
    |   |   +-- TransientError
    |   |   +-- UnsupportedPlatformError
    |   +-- WebhookDeliveryError
    |   +-- ScheduleNotFoundError
    |   +-- InvalidStateError
    |   +-- InvalidActionError
    +-- InvalidInputError (ValueError)
    +-- DatabaseError
    +-- ConfigurationError
"""

from enum import Enum
from typing import Any, Dict, List, Optional


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class PublisherBaseError(Exception):
    """Base exception for all publishing-scheduler errors."""

    pass


# =============================================================================
# CORE EXCEPTIONS
# =============================================================================


class InvalidInputError(ValueError):
    """Raised when input validation fails at a store or API boundary."""

    pass


class DatabaseError(Exception):
    """Raised when database operations fail."""

    pass


class ConfigurationError(Exception):
    """Raised when system configuration is invalid."""

    pass


# =============================================================================
# PUBLISH EXCEPTIONS
# =============================================================================


class PublishErrorKind(Enum):
    """How a failed publish attempt should be treated."""

    VALIDATION = "validation"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class PublishError(PublisherBaseError):
    """Raised by a destination publisher when an attempt fails.

    Attributes:
        platform: Platform tag of the publisher that failed.
        kind: Failure classification.
        details: Optional diagnostic payload (response body, field errors).
    """

    default_kind: PublishErrorKind = PublishErrorKind.PERMANENT

    def __init__(
        self,
        message: str,
        platform: Optional[str] = None,
        kind: Optional[PublishErrorKind] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.platform = platform
        self.kind = kind or self.default_kind
        self.details = details or {}
        prefix = f"[{platform}] " if platform else ""
        super().__init__(f"{prefix}{message}")

    @property
    def retryable(self) -> bool:
        """Only transient failures are worth another attempt."""
        return self.kind is PublishErrorKind.TRANSIENT


class AuthenticationError(PublishError):
    """Raised when credentials are missing, invalid, or expired."""

    default_kind = PublishErrorKind.PERMANENT


class ValidationError(PublishError):
    """Raised when the platform rejects the payload (e.g. length limits).

    Attributes:
        issues: Individual validation problems.
    """

    default_kind = PublishErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        platform: Optional[str] = None,
        issues: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.issues = issues or []
        super().__init__(message, platform=platform, details=details)


class TransientError(PublishError):
    """Raised for network failures, 5xx responses, and rate limits."""

    default_kind = PublishErrorKind.TRANSIENT


class UnsupportedPlatformError(PublishError):
    """Raised when no publisher is registered for a platform tag."""

    default_kind = PublishErrorKind.PERMANENT

    def __init__(self, platform: str):
        super().__init__(
            f"No publisher registered for platform '{platform}'",
            platform=platform,
        )


# =============================================================================
# WEBHOOK EXCEPTIONS
# =============================================================================


class WebhookDeliveryError(PublisherBaseError):
    """Raised inside the webhook dispatcher for a failed delivery attempt.

    Never propagates outside the dispatcher.

    Attributes:
        url: Endpoint that failed.
        status_code: HTTP status code, or ``None`` for network errors.
    """

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(f"Webhook delivery to {url} failed: {message}")


# =============================================================================
# CONTROL EXCEPTIONS
# =============================================================================


class ScheduleNotFoundError(PublisherBaseError):
    """Raised when a schedule id does not exist."""

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"Schedule {schedule_id} not found")


class InvalidStateError(PublisherBaseError):
    """Raised when an operation is not valid for the schedule's status.

    Attributes:
        schedule_id: The schedule the operation targeted.
        status: The status the schedule was in.
    """

    def __init__(self, schedule_id: str, status: str, operation: str):
        self.schedule_id = schedule_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} schedule {schedule_id} with status '{status}'"
        )


class InvalidActionError(PublisherBaseError):
    """Raised when the control surface receives a malformed request."""

    pass


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Base
    "PublisherBaseError",
    # Core
    "InvalidInputError",
    "DatabaseError",
    "ConfigurationError",
    # Publish
    "PublishErrorKind",
    "PublishError",
    "AuthenticationError",
    "ValidationError",
    "TransientError",
    "UnsupportedPlatformError",
    # Webhooks
    "WebhookDeliveryError",
    # Control
    "ScheduleNotFoundError",
    "InvalidStateError",
    "InvalidActionError",
]
