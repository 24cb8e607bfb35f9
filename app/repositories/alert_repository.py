"""
Alert repository - data access for JobAlert entity.

The engine reads alerts and writes only their check bookkeeping.
"""
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.job_alert import JobAlert
from app.repositories.base import BaseRepository
from app.schemas.alert import AlertSummary


class AlertRepository(BaseRepository[JobAlert]):
    def __init__(self):
        super().__init__(JobAlert)

    async def get_active_alerts(
        self,
        db: AsyncSession,
    ) -> List[JobAlert]:
        """Active alerts that have somewhere to send results, least recently checked first."""
        result = await db.execute(
            select(JobAlert)
            .where(
                JobAlert.is_active == True,
                JobAlert.user_email.is_not(None),
                JobAlert.user_email != "",
            )
            .order_by(JobAlert.last_checked_at.asc().nulls_first(), JobAlert.created_at.asc())
        )
        return list(result.scalars().all())

    async def record_check(
        self,
        db: AsyncSession,
        alert_id: UUID,
        *,
        listings_found: int = 0,
        notifications_sent: int = 0,
        checked_at: Optional[datetime] = None,
    ) -> bool:
        """
        Advance last_checked_at and add to the counters in one UPDATE.

        last_checked_at never moves backwards and counters only grow, so
        concurrent checks of the same alert cannot lose increments.

        Returns:
            False if the alert no longer exists.
        """
        checked_at = checked_at or datetime.now(timezone.utc)
        values = {
            "last_checked_at": case(
                (
                    or_(
                        JobAlert.last_checked_at.is_(None),
                        JobAlert.last_checked_at < checked_at,
                    ),
                    checked_at,
                ),
                else_=JobAlert.last_checked_at,
            ),
        }
        if listings_found:
            values["total_listings_found"] = JobAlert.total_listings_found + listings_found
        if notifications_sent:
            values["total_notifications_sent"] = (
                JobAlert.total_notifications_sent + notifications_sent
            )

        result = await db.execute(
            update(JobAlert)
            .where(JobAlert.id == alert_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount > 0

    async def summary(
        self,
        db: AsyncSession,
        user_id: Optional[str] = None,
    ) -> AlertSummary:
        """Alert counts and cumulative counters, optionally for one user."""
        query = select(
            func.count(JobAlert.id),
            func.coalesce(func.sum(case((JobAlert.is_active == True, 1), else_=0)), 0),
            func.coalesce(func.sum(JobAlert.total_listings_found), 0),
            func.coalesce(func.sum(JobAlert.total_notifications_sent), 0),
        )
        if user_id is not None:
            query = query.where(JobAlert.user_id == user_id)

        total, active, found, sent = (await db.execute(query)).one()
        return AlertSummary(
            total_alerts=total or 0,
            active_alerts=active or 0,
            total_listings_found=found or 0,
            total_notifications_sent=sent or 0,
        )
