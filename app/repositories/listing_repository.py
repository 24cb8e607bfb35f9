"""
Listing repository - the listing cache.

One JobListing row per provider external_id. Rows are written once and
never updated; whoever inserts first defines the canonical record.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import is_unique_violation
from app.core.logging import get_logger
from app.models.job_listing import JobListing
from app.providers.base import ListingData
from app.repositories.base import BaseRepository

logger = get_logger(__name__)


class ListingRepository(BaseRepository[JobListing]):
    def __init__(self):
        super().__init__(JobListing)

    async def get_by_external_id(
        self,
        db: AsyncSession,
        external_id: str,
    ) -> Optional[JobListing]:
        result = await db.execute(
            select(JobListing).where(JobListing.external_id == external_id)
        )
        return result.scalar_one_or_none()

    async def upsert_listing(
        self,
        db: AsyncSession,
        listing: ListingData,
    ) -> JobListing:
        """
        Return the cached listing for listing.external_id, inserting it first
        if it is not cached yet.

        Commits the insert. When a concurrent check wins the unique race on
        external_id the insert is rolled back and the winner is returned.
        """
        existing = await self.get_by_external_id(db, listing.external_id)
        if existing:
            return existing

        instance = JobListing(**listing.to_row())
        db.add(instance)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            if not is_unique_violation(e):
                raise
            winner = await self.get_by_external_id(db, listing.external_id)
            if winner is None:
                raise
            logger.debug("listing_insert_race_lost", external_id=listing.external_id)
            return winner

        return instance
