"""
Pydantic schemas for engine payloads, results and queue inspection.
"""
from app.schemas.base import BaseSchema, IDSchema
from app.schemas.listing import CachedListing
from app.schemas.alert import AlertCheckResult, AlertSummary, NotificationHistoryItem
from app.schemas.queue import (
    PAYLOAD_SCHEMA_VERSION,
    AlertCheckPayload,
    FailedQueueItem,
    QueueJob,
    QueueStats,
)

__all__ = [
    # Base
    "BaseSchema",
    "IDSchema",
    # Listings
    "CachedListing",
    # Alerts
    "AlertCheckResult",
    "AlertSummary",
    "NotificationHistoryItem",
    # Queue
    "PAYLOAD_SCHEMA_VERSION",
    "AlertCheckPayload",
    "FailedQueueItem",
    "QueueJob",
    "QueueStats",
]
