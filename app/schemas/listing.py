"""
Listing schemas.
"""
from datetime import datetime
from typing import Optional
from app.schemas.base import IDSchema


class CachedListing(IDSchema):
    """
    Detached snapshot of a cached JobListing row.

    The alert processor works with snapshots so that a rolled-back ledger
    insert (which expires ORM instances) cannot trigger lazy loads.
    """

    external_id: str
    title: str
    company: str
    location: str = "Remote"
    description_snippet: str = ""
    employment_type: str = "unknown"
    is_remote: bool = False
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    salary_currency: str = "USD"
    salary_period: str = "yearly"
    apply_link: str
    company_logo: Optional[str] = None
    posted_at: Optional[datetime] = None
    fetched_at: Optional[datetime] = None

    def event_summary(self) -> dict:
        """Compact form pushed to connected clients."""
        return {
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "applyLink": self.apply_link,
        }
