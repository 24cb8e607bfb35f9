"""
Notification repository - the deduplication ledger.
"""
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import is_unique_violation
from app.core.exceptions import LedgerConflictError
from app.core.logging import get_logger
from app.models.notification_record import NotificationRecord, STATUS_SENT
from app.repositories.base import BaseRepository

logger = get_logger(__name__)


class NotificationRepository(BaseRepository[NotificationRecord]):
    def __init__(self):
        super().__init__(NotificationRecord)

    async def already_notified(
        self,
        db: AsyncSession,
        user_id: str,
        listing_id: UUID,
    ) -> bool:
        """True if any record (sent or failed) exists for this user and listing."""
        result = await db.execute(
            select(NotificationRecord.id)
            .where(
                NotificationRecord.user_id == user_id,
                NotificationRecord.listing_id == listing_id,
            )
            .limit(1)
        )
        return result.first() is not None

    async def insert(
        self,
        db: AsyncSession,
        *,
        user_id: str,
        alert_id: UUID,
        listing_id: UUID,
        external_id: str,
        status: str = STATUS_SENT,
        message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> NotificationRecord:
        """
        Insert and commit one ledger row.

        Raises:
            LedgerConflictError: (user_id, listing_id) is already recorded
        """
        record = NotificationRecord(
            user_id=user_id,
            alert_id=alert_id,
            listing_id=listing_id,
            external_id=external_id,
            status=status,
            message_id=message_id,
            error_message=error,
        )
        db.add(record)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            if is_unique_violation(e):
                raise LedgerConflictError(user_id, listing_id) from e
            raise
        return record

    async def record_notification(
        self,
        db: AsyncSession,
        user_id: str,
        alert_id: UUID,
        listing_id: UUID,
        external_id: str,
        status: str = STATUS_SENT,
        message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        """
        Record that a user was told (or failed to be told) about a listing.

        Returns False when another check already recorded the pair.
        """
        try:
            await self.insert(
                db,
                user_id=user_id,
                alert_id=alert_id,
                listing_id=listing_id,
                external_id=external_id,
                status=status,
                message_id=message_id,
                error=error,
            )
        except LedgerConflictError:
            logger.info(
                "ledger_conflict_ignored",
                user_id=user_id,
                listing_id=str(listing_id),
            )
            return False
        return True

    async def history_for_alert(
        self,
        db: AsyncSession,
        alert_id: UUID,
        *,
        limit: int = 50,
    ) -> List[NotificationRecord]:
        """Most recent ledger rows for an alert."""
        result = await db.execute(
            select(NotificationRecord)
            .where(NotificationRecord.alert_id == alert_id)
            .order_by(NotificationRecord.sent_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_by_status(
        self,
        db: AsyncSession,
    ) -> Dict[str, int]:
        """Ledger row counts keyed by status."""
        result = await db.execute(
            select(NotificationRecord.status, func.count())
            .group_by(NotificationRecord.status)
        )
        return {status: count for status, count in result.all()}
