"""
Database models for the job alert dispatch engine.

All models use UUID primary keys and include created_at/updated_at timestamps.
"""
from app.models.base import BaseModel, TimestampMixin, UUIDMixin
from app.models.job_alert import JobAlert
from app.models.job_listing import JobListing
from app.models.notification_record import NotificationRecord

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "JobAlert",
    "JobListing",
    "NotificationRecord",
]
