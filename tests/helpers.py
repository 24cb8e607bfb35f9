"""Fakes for the I/O boundaries and small database helpers shared by the tests."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select

from app.core.exceptions import MailTransportError
from app.models.job_alert import JobAlert
from app.models.job_listing import JobListing
from app.models.notification_record import NotificationRecord
from app.providers.base import JobSearchProvider, ListingData
from app.services.event_sink import EventSink
from app.services.mail_service import MailReceipt, MailTransport


class FakeClock:
    """Manually advanced clock for queue and limiter tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(JobSearchProvider):
    """Returns canned listings or raises a canned error."""

    source_name = "fake"

    def __init__(self, results: Optional[List[ListingData]] = None, error: Optional[Exception] = None):
        super().__init__(timeout=1.0)
        self.results = results or []
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def base_url(self) -> str:
        return "https://provider.example.com"

    async def search(self, query, location="", remote_only=False, employment_type=""):
        self.calls.append({
            "query": query,
            "location": location,
            "remote_only": remote_only,
            "employment_type": employment_type,
        })
        if self.error is not None:
            raise self.error
        return list(self.results)

    async def check_health(self):
        return {"healthy": True, "error": None}


class RecordingMailTransport(MailTransport):
    """Keeps every digest instead of sending it."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    async def send_alert_digest(self, to_email, to_name, alert_title, listings):
        if self.fail:
            raise MailTransportError("SMTP connection refused")
        self.sent.append({
            "to_email": to_email,
            "to_name": to_name,
            "alert_title": alert_title,
            "external_ids": [listing.external_id for listing in listings],
        })
        return MailReceipt(message_id=f"<digest-{len(self.sent)}@example.com>")


class RecordingEventSink(EventSink):
    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    async def notify_user(self, user_id, event, data):
        self.events.append({"user_id": user_id, "event": event, "data": data})

    def names(self) -> List[str]:
        return [e["event"] for e in self.events]


def make_listing(external_id: str, title: str = "Backend Engineer", company: str = "Acme", **overrides) -> ListingData:
    values = dict(
        external_id=external_id,
        title=title,
        company=company,
        apply_link=f"https://jobs.example.com/{external_id}",
        location="Berlin, BE, DE",
        description_snippet="Python, PostgreSQL",
        employment_type="full-time",
        source="fake",
        fetched_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return ListingData(**values)


async def create_alert(session_factory, **overrides) -> JobAlert:
    values = dict(
        user_id="user-1",
        user_email="dev@example.com",
        user_name="Dev User",
        title="Python Developer",
        keywords=["fastapi"],
        location="Berlin",
        employment_types=["full-time"],
    )
    values.update(overrides)
    async with session_factory() as db:
        alert = JobAlert(**values)
        db.add(alert)
        await db.commit()
    return alert


async def load_alert(session_factory, alert_id) -> Optional[JobAlert]:
    async with session_factory() as db:
        return await db.get(JobAlert, alert_id)


async def count_rows(session_factory, model) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar()


async def ledger_rows(session_factory) -> List[NotificationRecord]:
    async with session_factory() as db:
        return list((await db.execute(select(NotificationRecord))).scalars().all())


async def listing_rows(session_factory) -> List[JobListing]:
    async with session_factory() as db:
        return list((await db.execute(select(JobListing))).scalars().all())


