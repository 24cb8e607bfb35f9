"""
Base classes for job search providers.

A provider turns a search query into normalized ListingData records and
classifies its own failures into RateLimitedError / ProviderAuthError /
TransientProviderError. Everything else propagates unchanged.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import hashlib

import httpx

from app.core.config import settings


@dataclass
class ListingData:
    """A job posting as returned by a provider, before caching."""

    external_id: str
    title: str
    company: str
    apply_link: str
    location: str = "Remote"
    description: str = ""
    description_snippet: str = ""
    employment_type: str = "unknown"  # 'full-time', 'part-time', 'contract', 'internship', 'unknown'
    is_remote: bool = False
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    salary_currency: str = "USD"
    salary_period: str = "yearly"
    company_logo: Optional[str] = None
    posted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    source: str = "unknown"
    source_url: Optional[str] = None
    skills: List[str] = field(default_factory=list)
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_row(self) -> Dict[str, Any]:
        """Column values for a JobListing insert."""
        return {
            "external_id": self.external_id,
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "description": self.description,
            "description_snippet": self.description_snippet,
            "employment_type": self.employment_type,
            "is_remote": self.is_remote,
            "salary_min": self.salary_min,
            "salary_max": self.salary_max,
            "salary_currency": self.salary_currency,
            "salary_period": self.salary_period,
            "apply_link": self.apply_link,
            "company_logo": self.company_logo,
            "posted_at": self.posted_at,
            "expires_at": self.expires_at,
            "source": self.source,
            "source_url": self.source_url,
            "skills": list(self.skills),
            "fetched_at": self.fetched_at,
        }


def derive_external_id(
    provider_id: Optional[str],
    company: str,
    title: str,
    fetched_at: datetime,
) -> str:
    """
    Stable cache key for a listing.

    Provider ids are used verbatim. Without one, hash company + title +
    fetch time; such listings are only deduplicated within one fetch.
    """
    if provider_id:
        return str(provider_id)
    basis = f"{company.strip().lower()}|{title.strip().lower()}|{fetched_at.isoformat()}"
    return "h-" + hashlib.sha256(basis.encode("utf-8")).hexdigest()[:32]


class JobSearchProvider(ABC):
    """
    Base class for job search providers.

    Owns the HTTP client lifecycle. Subclasses implement `search()` and
    `check_health()`.
    """

    source_name = "unknown"

    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the provider.

        Args:
            timeout: Per-request timeout in seconds (every call has one)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.timeout = timeout if timeout is not None else settings.provider_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url(),
            timeout=self.timeout,
            headers=self.default_headers(),
            transport=self._transport,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    @abstractmethod
    def base_url(self) -> str:
        """Provider API root."""

    def default_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    @abstractmethod
    async def search(
        self,
        query: str,
        location: str = "",
        remote_only: bool = False,
        employment_type: str = "",
    ) -> List[ListingData]:
        """
        Search the provider.

        Args:
            query: Full query text (title, keywords, location and remote tokens)
            location: Alert location, for providers that filter on it
            remote_only: Restrict to remote postings
            employment_type: Comma-separated internal employment types

        Raises:
            RateLimitedError, ProviderAuthError, TransientProviderError
        """

    @abstractmethod
    async def check_health(self) -> Dict[str, Any]:
        """Return {"healthy": bool, "error": Optional[str]}."""
