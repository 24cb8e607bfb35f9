"""
Alert processor - checks one alert and sends at most one digest.

Pipeline for one queue item:
1. Reload the alert (it may have been deleted or paused since enqueue)
2. Search the provider with the alert's filters
3. Cache every listing (one row per external_id)
4. Keep only listings the user was never notified about
5. Send ONE digest email for the whole set
6. Write the ledger rows, bump counters, advance last_checked_at

The ledger is written after the send. A failed send is still recorded
(status 'failed') and therefore never retried for the same listing.
"""
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import async_session_maker
from app.core.exceptions import MailTransportError, ProviderError
from app.core.logging import get_logger
from app.models.notification_record import STATUS_FAILED, STATUS_SENT
from app.providers.base import JobSearchProvider
from app.repositories.alert_repository import AlertRepository
from app.repositories.listing_repository import ListingRepository
from app.repositories.notification_repository import NotificationRepository
from app.schemas.alert import AlertCheckResult
from app.schemas.listing import CachedListing
from app.schemas.queue import AlertCheckPayload
from app.services.event_sink import EventSink, NullEventSink
from app.services.mail_service import MailTransport

logger = get_logger(__name__)

# Number of listings included in the new-jobs event
EVENT_PREVIEW_SIZE = 5


def build_search_query(payload: AlertCheckPayload) -> str:
    """
    Title plus keywords, then a location or remote hint.

    "React Developer typescript in Berlin" / "Data Engineer spark remote"
    """
    parts = [payload.title, *payload.keywords]
    if payload.remote_only:
        parts.append("remote")
    elif payload.location:
        parts.append(f"in {payload.location}")
    return " ".join(p for p in parts if p)


class AlertProcessor:
    """
    Processes alert check payloads.

    Each call opens its own session, so several checks can run on the
    same event loop.
    """

    def __init__(
        self,
        provider: JobSearchProvider,
        mail: MailTransport,
        events: Optional[EventSink] = None,
        session_factory: Callable[[], AsyncSession] = async_session_maker,
    ):
        self.provider = provider
        self.mail = mail
        self.events = events or NullEventSink()
        self.session_factory = session_factory
        self.alert_repo = AlertRepository()
        self.listing_repo = ListingRepository()
        self.notification_repo = NotificationRepository()

    async def process(self, payload: AlertCheckPayload) -> AlertCheckResult:
        """
        Run one alert check.

        Raises:
            RateLimitedError, TransientProviderError: the queue retries these
            ProviderAuthError: fails the item for good
        """
        alert_id = payload.alert_id

        async with self.session_factory() as db:
            alert = await self.alert_repo.get_by_id(db, alert_id)
            if alert is None:
                return self._skip(payload, "alert_deleted")
            if not alert.is_active:
                return self._skip(payload, "alert_inactive")
            if not alert.user_email:
                return self._skip(payload, "no_email")

            # The stored contact details win over the copy taken at enqueue time
            user_id = alert.user_id
            email = alert.user_email
            name = alert.user_name or payload.name

            logger.info("alert_check_started", alert_id=str(alert_id), title=payload.title)
            await self._emit(user_id, "job_alert_processing", {
                "alertId": str(alert_id),
                "alertTitle": payload.title,
            })

            # ─── Search ──────────────────────────────────────────────
            try:
                found = await self.provider.search(
                    build_search_query(payload),
                    location=payload.location,
                    remote_only=payload.remote_only,
                    employment_type=",".join(payload.employment_types),
                )
            except ProviderError as e:
                logger.warning("alert_search_failed", alert_id=str(alert_id), code=e.code)
                await self.alert_repo.record_check(db, alert_id)
                raise

            if not found:
                await self.alert_repo.record_check(db, alert_id)
                logger.info("alert_check_no_listings", alert_id=str(alert_id))
                return AlertCheckResult(alert_id=alert_id)

            # ─── Cache + dedup ───────────────────────────────────────
            new_listings = await self._filter_new(db, user_id, found)

            if not new_listings:
                await self.alert_repo.record_check(db, alert_id)
                logger.info("alert_check_nothing_new", alert_id=str(alert_id), found=len(found))
                return AlertCheckResult(alert_id=alert_id)

            await self._emit(user_id, "job_alert_new_jobs", {
                "alertId": str(alert_id),
                "alertTitle": payload.title,
                "count": len(new_listings),
                "jobs": [listing.event_summary() for listing in new_listings[:EVENT_PREVIEW_SIZE]],
            })

            # ─── Deliver ─────────────────────────────────────────────
            try:
                receipt = await self.mail.send_alert_digest(email, name, payload.title, new_listings)
            except MailTransportError as e:
                await self._record_all(
                    db, user_id, alert_id, new_listings,
                    status=STATUS_FAILED, error=e.message,
                )
                await self.alert_repo.record_check(db, alert_id)
                logger.error(
                    "alert_digest_failed",
                    alert_id=str(alert_id),
                    new_listings=len(new_listings),
                    error=e.message,
                )
                await self._emit(user_id, "job_alert_email_failed", {
                    "alertId": str(alert_id),
                    "error": e.message,
                })
                return AlertCheckResult(
                    alert_id=alert_id,
                    new_listings_count=len(new_listings),
                    email_sent=False,
                    reason="mail_transport_failed",
                )

            await self._record_all(
                db, user_id, alert_id, new_listings,
                status=STATUS_SENT, message_id=receipt.message_id,
            )
            await self.alert_repo.record_check(
                db,
                alert_id,
                listings_found=len(new_listings),
                notifications_sent=1,
            )

        logger.info(
            "alert_check_completed",
            alert_id=str(alert_id),
            new_listings=len(new_listings),
            message_id=receipt.message_id,
        )
        await self._emit(user_id, "job_alert_email_sent", {
            "alertId": str(alert_id),
            "count": len(new_listings),
            "messageId": receipt.message_id,
        })

        return AlertCheckResult(
            alert_id=alert_id,
            new_listings_count=len(new_listings),
            email_sent=True,
            message_id=receipt.message_id,
        )

    async def _filter_new(
        self,
        db: AsyncSession,
        user_id: str,
        found: list,
    ) -> List[CachedListing]:
        """Cache every listing and return the ones this user has not seen."""
        new_listings: List[CachedListing] = []
        seen = set()
        for data in found:
            if data.external_id in seen:
                continue
            seen.add(data.external_id)

            row = await self.listing_repo.upsert_listing(db, data)
            listing = CachedListing.model_validate(row)

            if await self.notification_repo.already_notified(db, user_id, listing.id):
                continue
            new_listings.append(listing)
        return new_listings

    async def _record_all(
        self,
        db: AsyncSession,
        user_id: str,
        alert_id,
        listings: List[CachedListing],
        *,
        status: str,
        message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> int:
        recorded = 0
        for listing in listings:
            if await self.notification_repo.record_notification(
                db,
                user_id=user_id,
                alert_id=alert_id,
                listing_id=listing.id,
                external_id=listing.external_id,
                status=status,
                message_id=message_id,
                error=error,
            ):
                recorded += 1
        return recorded

    def _skip(self, payload: AlertCheckPayload, reason: str) -> AlertCheckResult:
        logger.info("alert_check_skipped", alert_id=str(payload.alert_id), reason=reason)
        return AlertCheckResult(alert_id=payload.alert_id, skipped=True, reason=reason)

    async def _emit(self, user_id: str, event: str, data: Dict[str, Any]) -> None:
        try:
            await self.events.notify_user(user_id, event, data)
        except Exception as e:
            # Live updates are optional; the check result is not.
            logger.warning("event_emit_failed", user_id=user_id, event_name=event, error=str(e))
