"""
Repositories - data access layer.
"""
from app.repositories.base import BaseRepository
from app.repositories.alert_repository import AlertRepository
from app.repositories.listing_repository import ListingRepository
from app.repositories.notification_repository import NotificationRepository

__all__ = [
    "BaseRepository",
    "AlertRepository",
    "ListingRepository",
    "NotificationRepository",
]
