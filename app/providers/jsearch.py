"""
RapidAPI JSearch provider.

JSearch is a JOB AGGREGATOR: one query returns postings from many boards
(LinkedIn, Indeed, Glassdoor, ...), already de-HTML'd.

API docs: https://rapidapi.com/letscrape-6bRBa3QguO5/api/jsearch

Example API call:
  GET https://jsearch.p.rapidapi.com/search?query=React%20Developer%20in%20Berlin&page=1&num_pages=1&date_posted=week

Error mapping:
  429           -> RateLimitedError (queue retries, circuit breaker counts it)
  400/401/403   -> ProviderAuthError (bad key, expired subscription, bad params)
  5xx, timeout  -> TransientProviderError
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import (
    ProviderAuthError,
    RateLimitedError,
    TransientProviderError,
)
from app.core.logging import get_logger
from app.providers.base import JobSearchProvider, ListingData, derive_external_id

logger = get_logger(__name__)


# Internal employment type -> JSearch employment_types code
EMPLOYMENT_TYPE_CODES = {
    "full-time": "FULLTIME",
    "fulltime": "FULLTIME",
    "part-time": "PARTTIME",
    "parttime": "PARTTIME",
    "contract": "CONTRACTOR",
    "contractor": "CONTRACTOR",
    "internship": "INTERN",
    "intern": "INTERN",
}


def map_employment_types(employment_type: str) -> str:
    """
    Map "full-time,contract" to "FULLTIME,CONTRACTOR".

    Unknown names are dropped; an empty result means "no filter".
    """
    codes = []
    for raw in (employment_type or "").split(","):
        code = EMPLOYMENT_TYPE_CODES.get(raw.strip().lower())
        if code and code not in codes:
            codes.append(code)
    return ",".join(codes)


class JSearchProvider(JobSearchProvider):
    """
    JSearch client.

    Config:
        api_key: RapidAPI key (defaults to settings.jsearch_api_key)
        host: RapidAPI host (defaults to settings.jsearch_host)
        date_posted: freshness filter ("all", "today", "3days", "week", "month")
    """

    source_name = "rapidapi-jsearch"

    def __init__(
        self,
        api_key: Optional[str] = None,
        host: Optional[str] = None,
        date_posted: Optional[str] = None,
        **kwargs,
    ):
        self.api_key = api_key if api_key is not None else settings.jsearch_api_key
        self.host = host or settings.jsearch_host
        self.date_posted = date_posted or settings.jsearch_date_posted
        super().__init__(**kwargs)

    def base_url(self) -> str:
        return f"https://{self.host}"

    def default_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "X-RapidAPI-Key": self.api_key or "",
            "X-RapidAPI-Host": self.host,
        }

    async def search(
        self,
        query: str,
        location: str = "",
        remote_only: bool = False,
        employment_type: str = "",
    ) -> List[ListingData]:
        """
        Fetch one page of results for the query.

        The response looks like:
        {
            "status": "OK",
            "data": [
                {
                    "job_id": "x7sdf...==",
                    "job_title": "Senior React Developer",
                    "employer_name": "Acme Corp",
                    "employer_logo": "https://...",
                    "job_employment_type": "FULLTIME",
                    "job_city": "Berlin", "job_state": "BE", "job_country": "DE",
                    "job_is_remote": false,
                    "job_min_salary": 70000, "job_max_salary": 90000,
                    "job_salary_currency": "EUR", "job_salary_period": "YEAR",
                    "job_apply_link": "https://...",
                    "job_google_link": "https://...",
                    "job_posted_at_datetime_utc": "2024-01-15T00:00:00.000Z",
                    ...
                }
            ]
        }
        """
        if not self.api_key:
            logger.error("provider_not_configured", provider=self.source_name)
            raise ProviderAuthError(
                "Job search API is not configured. Set JSEARCH_API_KEY."
            )

        params = {
            "query": query,
            "page": "1",
            "num_pages": "1",
            "date_posted": self.date_posted,
        }

        codes = map_employment_types(employment_type)
        if codes:
            params["employment_types"] = codes

        if remote_only:
            params["remote_jobs_only"] = "true"

        logger.info("provider_search", provider=self.source_name, query=query)

        data = await self._get_json("/search", params)

        raw_jobs = (data or {}).get("data") or []
        fetched_at = datetime.now(timezone.utc)
        listings = [self._map_job(raw, fetched_at) for raw in raw_jobs]

        logger.info("provider_search_done", provider=self.source_name, found=len(listings))
        return listings

    async def check_health(self) -> Dict[str, Any]:
        """Minimal test request against the search endpoint."""
        if not self.api_key:
            return {"healthy": False, "error": "JSEARCH_API_KEY not configured"}
        try:
            await self._get_json("/search", {"query": "test", "page": "1", "num_pages": "1"})
            return {"healthy": True, "error": None}
        except RateLimitedError:
            return {"healthy": False, "error": "Rate limited"}
        except Exception as e:
            return {"healthy": False, "error": str(e)}

    async def _get_json(self, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        """GET and classify failures."""
        try:
            response = await self.client.get(path, params=params)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning("provider_timeout", provider=self.source_name)
            raise TransientProviderError("Job search request timed out") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429:
                logger.warning("provider_rate_limited", provider=self.source_name)
                raise RateLimitedError() from e
            if status in (400, 401, 403):
                logger.error("provider_auth_error", provider=self.source_name, status=status)
                raise ProviderAuthError(
                    f"Job search API rejected the request (HTTP {status}). "
                    "Check the API key and subscription."
                ) from e
            if status >= 500:
                logger.warning("provider_server_error", provider=self.source_name, status=status)
                raise TransientProviderError(f"Job search API error (HTTP {status})") from e
            raise
        except httpx.TransportError as e:
            logger.warning("provider_connection_error", provider=self.source_name, error=str(e))
            raise TransientProviderError(f"Job search connection failed: {e}") from e

        return response.json()

    # ─── Mapping ─────────────────────────────────────────────────

    def _map_job(self, raw: Dict[str, Any], fetched_at: datetime) -> ListingData:
        """Map a JSearch record to ListingData."""
        title = (raw.get("job_title") or "").strip() or "Untitled Position"
        company = (raw.get("employer_name") or "").strip() or "Unknown Company"

        salary_min = raw.get("job_min_salary")
        salary_max = raw.get("job_max_salary")
        currency = "USD"
        period = "yearly"
        if salary_min or salary_max:
            currency = raw.get("job_salary_currency") or "USD"
            period = self._map_salary_period(raw.get("job_salary_period"))

        description = raw.get("job_description") or ""

        return ListingData(
            external_id=derive_external_id(raw.get("job_id"), company, title, fetched_at),
            title=title,
            company=company,
            location=self._build_location(raw),
            description=description,
            description_snippet=self._snippet(raw, description),
            employment_type=self._map_employment_type(raw.get("job_employment_type")),
            is_remote=bool(raw.get("job_is_remote")),
            salary_min=self._to_int(salary_min),
            salary_max=self._to_int(salary_max),
            salary_currency=currency,
            salary_period=period,
            apply_link=raw.get("job_apply_link") or raw.get("job_google_link") or "#",
            company_logo=raw.get("employer_logo"),
            posted_at=self._parse_date(raw.get("job_posted_at_datetime_utc")),
            expires_at=self._parse_date(raw.get("job_offer_expiration_datetime_utc")),
            source=self.source_name,
            source_url=raw.get("job_google_link"),
            skills=list(raw.get("job_required_skills") or []),
            fetched_at=fetched_at,
        )

    @staticmethod
    def _build_location(raw: Dict[str, Any]) -> str:
        parts = [raw.get(k) for k in ("job_city", "job_state", "job_country")]
        parts = [p for p in parts if p]
        return ", ".join(parts) if parts else "Remote"

    @staticmethod
    def _snippet(raw: Dict[str, Any], description: str) -> str:
        highlights = raw.get("job_highlights") or {}
        qualifications = highlights.get("Qualifications") or []
        if qualifications:
            return qualifications[0]
        if description:
            return description[:300] + ("..." if len(description) > 300 else "")
        return ""

    @staticmethod
    def _map_employment_type(value: Optional[str]) -> str:
        """
        Map JSearch's employment type to our enum.

        JSearch uses: "FULLTIME", "PARTTIME", "CONTRACTOR", "INTERN"
        """
        if not value:
            return "unknown"
        jt = value.lower()
        if "full" in jt:
            return "full-time"
        if "part" in jt:
            return "part-time"
        if "contract" in jt:
            return "contract"
        if "intern" in jt:
            return "internship"
        return "unknown"

    @staticmethod
    def _map_salary_period(value: Optional[str]) -> str:
        if not value:
            return "yearly"
        period = value.lower()
        if period.startswith("hour"):
            return "hourly"
        if period.startswith("month"):
            return "monthly"
        if period.startswith("week"):
            return "weekly"
        return "yearly"

    @staticmethod
    def _to_int(value: Any) -> Optional[int]:
        if value is None or value == "":
            return None
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _parse_date(date_str: Optional[str]) -> Optional[datetime]:
        """Parse JSearch's ISO timestamps ("2024-01-15T00:00:00.000Z")."""
        if not date_str:
            return None
        try:
            dt = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt
        except ValueError:
            return None
