"""Tests for the listing cache, the notification ledger and alert bookkeeping."""

import asyncio
from datetime import datetime, timezone

import pytest

from app.core.exceptions import LedgerConflictError
from app.models.job_listing import JobListing
from app.models.notification_record import STATUS_FAILED, STATUS_SENT
from app.repositories.alert_repository import AlertRepository
from app.repositories.listing_repository import ListingRepository
from app.repositories.notification_repository import NotificationRepository

from tests.helpers import count_rows, create_alert, load_alert, make_listing


class TestListingCache:
    @pytest.mark.asyncio
    async def test_upsert_returns_canonical_row(self, session_factory):
        repo = ListingRepository()
        async with session_factory() as db:
            first = await repo.upsert_listing(db, make_listing("ext-1", title="First title"))
            second = await repo.upsert_listing(db, make_listing("ext-1", title="Changed title"))

        assert first.id == second.id
        assert second.title == "First title"
        async with session_factory() as db:
            assert await repo.count(db) == 1

    @pytest.mark.asyncio
    async def test_concurrent_upserts_store_one_row(self, session_factory):
        repo = ListingRepository()

        async def upsert():
            async with session_factory() as db:
                row = await repo.upsert_listing(db, make_listing("ext-race"))
                return row.id

        ids = await asyncio.gather(upsert(), upsert(), upsert())

        assert len(set(ids)) == 1
        assert await count_rows(session_factory, JobListing) == 1


class TestNotificationLedger:
    async def _setup(self, session_factory):
        alert = await create_alert(session_factory)
        async with session_factory() as db:
            listing = await ListingRepository().upsert_listing(db, make_listing("ext-1"))
        return alert, listing

    @pytest.mark.asyncio
    async def test_record_then_already_notified(self, session_factory):
        alert, listing = await self._setup(session_factory)
        repo = NotificationRepository()

        async with session_factory() as db:
            assert not await repo.already_notified(db, "user-1", listing.id)
            assert await repo.record_notification(
                db, "user-1", alert.id, listing.id, "ext-1", status=STATUS_SENT, message_id="<m1>"
            )
            assert await repo.already_notified(db, "user-1", listing.id)
            assert not await repo.already_notified(db, "user-2", listing.id)

    @pytest.mark.asyncio
    async def test_duplicate_is_swallowed(self, session_factory):
        alert, listing = await self._setup(session_factory)
        repo = NotificationRepository()

        async with session_factory() as db:
            assert await repo.record_notification(db, "user-1", alert.id, listing.id, "ext-1")
            assert not await repo.record_notification(
                db, "user-1", alert.id, listing.id, "ext-1", status=STATUS_FAILED, error="boom"
            )
            counts = await repo.count_by_status(db)

        assert counts == {STATUS_SENT: 1}

    @pytest.mark.asyncio
    async def test_insert_raises_conflict(self, session_factory):
        alert, listing = await self._setup(session_factory)
        repo = NotificationRepository()

        async with session_factory() as db:
            await repo.insert(db, user_id="user-1", alert_id=alert.id, listing_id=listing.id, external_id="ext-1")
            with pytest.raises(LedgerConflictError):
                await repo.insert(
                    db, user_id="user-1", alert_id=alert.id, listing_id=listing.id, external_id="ext-1"
                )

    @pytest.mark.asyncio
    async def test_failed_record_counts_as_notified(self, session_factory):
        alert, listing = await self._setup(session_factory)
        repo = NotificationRepository()

        async with session_factory() as db:
            await repo.record_notification(
                db, "user-1", alert.id, listing.id, "ext-1", status=STATUS_FAILED, error="SMTP down"
            )
            assert await repo.already_notified(db, "user-1", listing.id)
            [row] = await repo.history_for_alert(db, alert.id)

        assert row.status == STATUS_FAILED
        assert row.error_message == "SMTP down"


class TestAlertBookkeeping:
    @pytest.mark.asyncio
    async def test_record_check_adds_to_counters(self, session_factory):
        alert = await create_alert(session_factory)
        repo = AlertRepository()

        async with session_factory() as db:
            await repo.record_check(db, alert.id, listings_found=3, notifications_sent=1)
            await repo.record_check(db, alert.id, listings_found=2, notifications_sent=1)

        stored = await load_alert(session_factory, alert.id)
        assert stored.total_listings_found == 5
        assert stored.total_notifications_sent == 2
        assert stored.last_checked_at is not None

    @pytest.mark.asyncio
    async def test_last_checked_at_never_moves_backwards(self, session_factory):
        alert = await create_alert(session_factory)
        repo = AlertRepository()
        later = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
        earlier = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

        async with session_factory() as db:
            await repo.record_check(db, alert.id, checked_at=later)
            await repo.record_check(db, alert.id, checked_at=earlier)

        stored = await load_alert(session_factory, alert.id)
        assert stored.last_checked_at.replace(tzinfo=None) == later.replace(tzinfo=None)

    @pytest.mark.asyncio
    async def test_record_check_for_deleted_alert(self, session_factory):
        import uuid

        async with session_factory() as db:
            assert not await AlertRepository().record_check(db, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_active_alerts_need_email_and_active_flag(self, session_factory):
        active = await create_alert(session_factory, title="Active")
        await create_alert(session_factory, title="Paused", is_active=False)
        await create_alert(session_factory, title="No email", user_email="")

        async with session_factory() as db:
            alerts = await AlertRepository().get_active_alerts(db)

        assert [a.id for a in alerts] == [active.id]

    @pytest.mark.asyncio
    async def test_summary(self, session_factory):
        first = await create_alert(session_factory, user_id="user-1")
        await create_alert(session_factory, user_id="user-1", is_active=False)
        await create_alert(session_factory, user_id="user-2")
        repo = AlertRepository()

        async with session_factory() as db:
            await repo.record_check(db, first.id, listings_found=4, notifications_sent=1)
            mine = await repo.summary(db, "user-1")
            everyone = await repo.summary(db)

        assert mine.total_alerts == 2
        assert mine.active_alerts == 1
        assert mine.total_listings_found == 4
        assert mine.total_notifications_sent == 1
        assert everyone.total_alerts == 3
        assert everyone.active_alerts == 2
