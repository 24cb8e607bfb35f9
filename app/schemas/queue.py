"""
Queue schemas: the versioned alert check payload and queue inspection models.
"""
from datetime import datetime
from typing import TYPE_CHECKING, List, Literal, Optional
from uuid import UUID

from pydantic import ConfigDict, EmailStr, Field, field_validator

from app.schemas.base import BaseSchema

if TYPE_CHECKING:
    from app.models.job_alert import JobAlert


PAYLOAD_SCHEMA_VERSION = 1

_EMPLOYMENT_TYPES = {"full-time", "part-time", "contract", "internship"}


class AlertCheckPayload(BaseSchema):
    """
    Everything a worker needs to check one alert, fixed at enqueue time.

    Version 1. Unknown fields are rejected so producers and consumers
    cannot drift apart silently.
    """

    model_config = ConfigDict(extra="forbid", from_attributes=True)

    schema_version: Literal[1] = PAYLOAD_SCHEMA_VERSION

    # Required
    alert_id: UUID
    user_id: str = Field(min_length=1)
    email: EmailStr
    title: str = Field(min_length=1)

    # Optional
    name: str = "Job Seeker"
    keywords: List[str] = Field(default_factory=list)
    location: str = ""
    remote_only: bool = False
    employment_types: List[str] = Field(default_factory=list)

    @field_validator("title", "location", "name")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        if not value:
            raise ValueError("title must not be blank")
        return value

    @field_validator("keywords")
    @classmethod
    def _drop_blank_keywords(cls, value: List[str]) -> List[str]:
        return [k.strip() for k in value if k and k.strip()]

    @field_validator("employment_types")
    @classmethod
    def _known_employment_types(cls, value: List[str]) -> List[str]:
        normalized = [t.strip().lower() for t in value if t and t.strip()]
        unknown = sorted(set(normalized) - _EMPLOYMENT_TYPES)
        if unknown:
            raise ValueError(f"unknown employment types: {', '.join(unknown)}")
        return normalized

    @classmethod
    def from_alert(cls, alert: "JobAlert") -> "AlertCheckPayload":
        return cls(
            alert_id=alert.id,
            user_id=alert.user_id,
            email=alert.user_email,
            name=alert.user_name or "Job Seeker",
            title=alert.title,
            keywords=list(alert.keywords or []),
            location=alert.location or "",
            remote_only=bool(alert.remote_only),
            employment_types=list(alert.employment_types or []),
        )


class QueueJob(BaseSchema):
    """A queued alert check and its retry bookkeeping."""

    id: str
    payload: AlertCheckPayload
    priority: int = 1
    attempts_made: int = 0
    max_attempts: int = 3
    state: str = "waiting"  # waiting, delayed, active, completed, failed
    available_at: float = 0.0  # epoch seconds
    enqueued_at: float = 0.0
    started_at: Optional[float] = None  # set when a consumer reserves it
    finished_at: Optional[float] = None
    failed_reason: Optional[str] = None


class QueueStats(BaseSchema):
    """Counts per queue state."""

    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: bool = False
    available: bool = True

    @property
    def pending(self) -> int:
        return self.waiting + self.active + self.delayed


class FailedQueueItem(BaseSchema):
    """A failed queue job as shown to operators."""

    id: str
    alert_id: UUID
    title: str
    email: str
    failed_reason: Optional[str] = None
    attempts_made: int
    max_attempts: int
    failed_at: Optional[datetime] = None
