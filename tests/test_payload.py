"""Tests for the versioned alert check payload."""

import uuid

import pytest
from pydantic import ValidationError

from app.models.job_alert import JobAlert
from app.schemas.queue import AlertCheckPayload


def _values(**overrides):
    values = dict(
        alert_id=uuid.uuid4(),
        user_id="user-1",
        email="dev@example.com",
        title="Python Developer",
    )
    values.update(overrides)
    return values


class TestAlertCheckPayload:
    def test_defaults(self):
        payload = AlertCheckPayload(**_values())

        assert payload.schema_version == 1
        assert payload.name == "Job Seeker"
        assert payload.keywords == []
        assert payload.remote_only is False

    def test_normalizes_text_fields(self):
        payload = AlertCheckPayload(**_values(
            title="  Python Developer ",
            keywords=[" fastapi ", "", "  "],
            employment_types=["Full-Time", "contract"],
        ))

        assert payload.title == "Python Developer"
        assert payload.keywords == ["fastapi"]
        assert payload.employment_types == ["full-time", "contract"]

    @pytest.mark.parametrize("overrides", [
        {"title": "   "},
        {"employment_types": ["freelance"]},
        {"email": "nope"},
        {"user_id": ""},
    ])
    def test_rejects_invalid_values(self, overrides):
        with pytest.raises(ValidationError):
            AlertCheckPayload(**_values(**overrides))

    def test_from_alert(self):
        alert = JobAlert(
            id=uuid.uuid4(),
            user_id="user-1",
            user_email="dev@example.com",
            user_name="Dev User",
            title="Data Engineer",
            keywords=["spark"],
            location="",
            remote_only=True,
            employment_types=["full-time", "contract"],
        )

        payload = AlertCheckPayload.from_alert(alert)

        assert payload.alert_id == alert.id
        assert payload.email == "dev@example.com"
        assert payload.name == "Dev User"
        assert payload.remote_only is True
        assert payload.employment_types == ["full-time", "contract"]
