"""
Alert check schemas.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID
from app.schemas.base import BaseSchema


class AlertCheckResult(BaseSchema):
    """Outcome of one alert check."""

    alert_id: UUID
    new_listings_count: int = 0
    email_sent: bool = False
    message_id: Optional[str] = None
    skipped: bool = False
    reason: Optional[str] = None


class AlertSummary(BaseSchema):
    """Aggregate alert counters, optionally scoped to one user."""

    total_alerts: int = 0
    active_alerts: int = 0
    total_listings_found: int = 0
    total_notifications_sent: int = 0


class NotificationHistoryItem(BaseSchema):
    """One ledger row as shown in an alert's notification history."""

    listing_id: UUID
    external_id: str
    status: str
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    sent_at: datetime
