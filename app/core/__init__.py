"""Core module exports."""
from app.core.config import settings, get_settings
from app.core.database import (
    Base,
    init_db,
    close_db,
    get_engine,
    async_session_maker,
    create_session_factory,
)
from app.core.exceptions import (
    JobAlertError,
    ProviderError,
    RateLimitedError,
    ProviderAuthError,
    TransientProviderError,
    LedgerConflictError,
    MailTransportError,
    QueueUnavailableError,
    BatchEnqueueError,
    PayloadValidationError,
    AlertNotFoundError,
    AlertInactiveError,
    is_retryable,
)
from app.core.logging import setup_logging, get_logger, job_context
from app.core.rate_limit import RequestRateLimiter

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "init_db",
    "close_db",
    "get_engine",
    "async_session_maker",
    "create_session_factory",
    # Exceptions
    "JobAlertError",
    "ProviderError",
    "RateLimitedError",
    "ProviderAuthError",
    "TransientProviderError",
    "LedgerConflictError",
    "MailTransportError",
    "QueueUnavailableError",
    "BatchEnqueueError",
    "PayloadValidationError",
    "AlertNotFoundError",
    "AlertInactiveError",
    "is_retryable",
    # Logging
    "setup_logging",
    "get_logger",
    "job_context",
    # Rate limiting
    "RequestRateLimiter",
]
