"""Tests for settings validation and logging context."""

import pytest
import structlog
from pydantic import ValidationError

from app.core.config import Settings
from app.core.logging import job_context


class TestSettings:
    def test_defaults_match_dispatch_policy(self):
        settings = Settings(_env_file=None)

        assert settings.queue_max_attempts == 3
        assert settings.queue_backoff_seconds == 5.0
        assert settings.worker_concurrency == 1
        assert settings.worker_requests_per_minute == 30
        assert settings.alert_dispatch_spacing_seconds == 2.0
        assert settings.circuit_breaker_threshold == 5
        assert settings.circuit_breaker_cooldown_seconds == 3600.0
        assert settings.alert_check_interval_seconds == 6 * 3600
        assert settings.provider_timeout_seconds == 30.0

    def test_production_requires_provider_key(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, environment="production", jsearch_api_key=None)

    def test_production_with_key(self):
        settings = Settings(_env_file=None, environment="production", jsearch_api_key="key")
        assert settings.environment == "production"


class TestJobContext:
    def test_binds_and_restores(self):
        with job_context(job_id="alert-1-0", alert_id="1"):
            assert structlog.contextvars.get_contextvars()["job_id"] == "alert-1-0"
        assert "job_id" not in structlog.contextvars.get_contextvars()
