"""Tests for the JSearch provider: request building, normalization, error classification."""

import httpx
import pytest

from app.core.exceptions import ProviderAuthError, RateLimitedError, TransientProviderError
from app.providers.jsearch import JSearchProvider, map_employment_types


def _job(**overrides):
    record = {
        "job_id": "abc123==",
        "job_title": "Senior Python Developer",
        "employer_name": "Acme Corp",
        "employer_logo": "https://cdn.example.com/acme.png",
        "job_employment_type": "FULLTIME",
        "job_city": "Berlin",
        "job_state": "BE",
        "job_country": "DE",
        "job_is_remote": False,
        "job_min_salary": 70000,
        "job_max_salary": 90000,
        "job_salary_currency": "EUR",
        "job_salary_period": "YEAR",
        "job_apply_link": "https://apply.example.com/1",
        "job_google_link": "https://google.example.com/1",
        "job_description": "We build things. " * 40,
        "job_highlights": {"Qualifications": ["5+ years of Python", "SQL"]},
        "job_posted_at_datetime_utc": "2026-01-15T00:00:00.000Z",
        "job_required_skills": ["python", "sql"],
    }
    record.update(overrides)
    return record


def _provider(handler, **kwargs):
    kwargs.setdefault("api_key", "test-key")
    return JSearchProvider(transport=httpx.MockTransport(handler), **kwargs)


class TestEmploymentTypeMapping:
    def test_maps_internal_names_to_provider_codes(self):
        assert map_employment_types("full-time,contract") == "FULLTIME,CONTRACTOR"
        assert map_employment_types("part-time, internship") == "PARTTIME,INTERN"

    def test_drops_unknown_and_duplicate_names(self):
        assert map_employment_types("full-time,freelance,full-time") == "FULLTIME"
        assert map_employment_types("") == ""


class TestSearchRequest:
    @pytest.mark.asyncio
    async def test_sends_query_filters_and_credentials(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            seen["headers"] = request.headers
            seen["path"] = request.url.path
            return httpx.Response(200, json={"status": "OK", "data": []})

        async with _provider(handler) as provider:
            result = await provider.search(
                "Data Engineer spark remote",
                remote_only=True,
                employment_type="full-time,contract",
            )

        assert result == []
        assert seen["path"] == "/search"
        assert seen["params"]["query"] == "Data Engineer spark remote"
        assert seen["params"]["date_posted"] == "week"
        assert seen["params"]["employment_types"] == "FULLTIME,CONTRACTOR"
        assert seen["params"]["remote_jobs_only"] == "true"
        assert seen["headers"]["X-RapidAPI-Key"] == "test-key"
        assert seen["headers"]["X-RapidAPI-Host"] == "jsearch.p.rapidapi.com"

    @pytest.mark.asyncio
    async def test_omits_optional_filters(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"data": []})

        async with _provider(handler) as provider:
            await provider.search("Python Developer in Berlin")

        assert "employment_types" not in seen["params"]
        assert "remote_jobs_only" not in seen["params"]


class TestNormalization:
    @pytest.mark.asyncio
    async def test_maps_provider_record(self):
        async with _provider(lambda r: httpx.Response(200, json={"data": [_job()]})) as provider:
            [listing] = await provider.search("python")

        assert listing.external_id == "abc123=="
        assert listing.title == "Senior Python Developer"
        assert listing.company == "Acme Corp"
        assert listing.location == "Berlin, BE, DE"
        assert listing.employment_type == "full-time"
        assert listing.salary_min == 70000
        assert listing.salary_max == 90000
        assert listing.salary_currency == "EUR"
        assert listing.salary_period == "yearly"
        assert listing.apply_link == "https://apply.example.com/1"
        assert listing.description_snippet == "5+ years of Python"
        assert listing.posted_at.year == 2026
        assert listing.source == "rapidapi-jsearch"
        assert listing.skills == ["python", "sql"]

    @pytest.mark.asyncio
    async def test_fallbacks_for_sparse_record(self):
        sparse = _job(
            job_id=None,
            job_city=None,
            job_state=None,
            job_country=None,
            job_apply_link=None,
            job_google_link=None,
            job_highlights={},
            job_description="x" * 400,
            job_employment_type="TEMPORARY",
            job_min_salary=None,
            job_max_salary=None,
        )
        async with _provider(lambda r: httpx.Response(200, json={"data": [sparse]})) as provider:
            [listing] = await provider.search("python")

        assert listing.location == "Remote"
        assert listing.apply_link == "#"
        assert listing.description_snippet == "x" * 300 + "..."
        assert listing.employment_type == "unknown"
        assert listing.salary_min is None
        assert listing.external_id.startswith("h-")

    @pytest.mark.asyncio
    async def test_apply_link_falls_back_to_source_link(self):
        record = _job(job_apply_link=None)
        async with _provider(lambda r: httpx.Response(200, json={"data": [record]})) as provider:
            [listing] = await provider.search("python")

        assert listing.apply_link == "https://google.example.com/1"


class TestErrorClassification:
    @pytest.mark.asyncio
    async def test_429_is_rate_limited(self):
        async with _provider(lambda r: httpx.Response(429)) as provider:
            with pytest.raises(RateLimitedError) as exc_info:
                await provider.search("python")
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 403])
    async def test_rejected_credentials_are_fatal(self, status):
        async with _provider(lambda r: httpx.Response(status)) as provider:
            with pytest.raises(ProviderAuthError) as exc_info:
                await provider.search("python")
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_missing_api_key_fails_without_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"data": []})

        async with _provider(handler, api_key="") as provider:
            with pytest.raises(ProviderAuthError):
                await provider.search("python")
        assert calls == []

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        async with _provider(lambda r: httpx.Response(503)) as provider:
            with pytest.raises(TransientProviderError):
                await provider.search("python")

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with _provider(handler) as provider:
            with pytest.raises(TransientProviderError):
                await provider.search("python")

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with _provider(handler) as provider:
            with pytest.raises(TransientProviderError):
                await provider.search("python")

    @pytest.mark.asyncio
    async def test_other_statuses_propagate_unchanged(self):
        async with _provider(lambda r: httpx.Response(404)) as provider:
            with pytest.raises(httpx.HTTPStatusError):
                await provider.search("python")


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_reports_rate_limit(self):
        async with _provider(lambda r: httpx.Response(429)) as provider:
            health = await provider.check_health()
        assert health == {"healthy": False, "error": "Rate limited"}

    @pytest.mark.asyncio
    async def test_healthy(self):
        async with _provider(lambda r: httpx.Response(200, json={"data": []})) as provider:
            assert (await provider.check_health())["healthy"] is True
