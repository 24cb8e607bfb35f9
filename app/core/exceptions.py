"""
Custom exceptions for the alert dispatch engine.

All engine errors inherit from JobAlertError. The `retryable` flag is what
the queue worker consults to decide between a backoff retry and a
permanent failure.
"""
from typing import Optional, Any


class JobAlertError(Exception):
    """
    Base exception for all engine errors.
    Provides a stable error code and the retry classification.
    """

    retryable = False

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Any] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(self.message)


# Job search provider errors
class ProviderError(JobAlertError):
    """Base class for classified job search provider failures."""


class RateLimitedError(ProviderError):
    """Provider answered 429. Retried by the queue and counted by the circuit breaker."""

    retryable = True

    def __init__(self, message: str = "Job search provider rate limit exceeded"):
        super().__init__("RATE_LIMITED", message)


class ProviderAuthError(ProviderError):
    """Provider rejected our credentials or is not configured. Needs an operator."""

    def __init__(self, message: str = "Job search provider rejected the credentials"):
        super().__init__("PROVIDER_UNAUTHENTICATED", message)


class TransientProviderError(ProviderError):
    """Timeouts, connection failures and 5xx answers."""

    retryable = True

    def __init__(self, message: str = "Job search provider is temporarily unavailable"):
        super().__init__("PROVIDER_TRANSIENT", message)


# Persistence errors
class LedgerConflictError(JobAlertError):
    """(user_id, listing_id) was already recorded by a concurrent or retried check."""

    def __init__(self, user_id: str, listing_id: Any):
        super().__init__(
            "LEDGER_CONFLICT",
            f"Notification already recorded for user {user_id} and listing {listing_id}",
        )


# Delivery errors
class MailTransportError(JobAlertError):
    """Sending the digest email failed."""

    def __init__(self, message: str = "Failed to send job alert email"):
        super().__init__("MAIL_TRANSPORT_FAILED", message)


# Queue errors
class QueueUnavailableError(JobAlertError):
    """The queue backend cannot be reached."""

    def __init__(self, message: str = "Queue backend is not available"):
        super().__init__("QUEUE_UNAVAILABLE", message)


class BatchEnqueueError(QueueUnavailableError):
    """The queue went away partway through a batch; `enqueued` holds the jobs that made it."""

    def __init__(self, enqueued: list, message: str = "Queue backend is not available"):
        super().__init__(message)
        self.enqueued = enqueued


class PayloadValidationError(JobAlertError):
    """A queue payload does not match the alert check schema."""

    def __init__(self, message: str = "Invalid alert check payload", details: Optional[Any] = None):
        super().__init__("INVALID_PAYLOAD", message, details)


# Alert lookups
class AlertNotFoundError(JobAlertError):
    """Alert does not exist"""

    def __init__(self, alert_id: Any = None):
        super().__init__("ALERT_NOT_FOUND", f"Alert not found: {alert_id}")


class AlertInactiveError(JobAlertError):
    """Alert exists but is paused by its owner"""

    def __init__(self, alert_id: Any = None):
        super().__init__("ALERT_INACTIVE", f"Alert is not active: {alert_id}")


def is_retryable(exc: BaseException) -> bool:
    """Only classified transient errors earn another queue attempt."""
    return isinstance(exc, JobAlertError) and exc.retryable
