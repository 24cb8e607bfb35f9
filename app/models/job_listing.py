"""
JobListing model - a cached, provider-agnostic job posting.
"""
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class JobListing(BaseModel):
    """
    Job listing entity.

    One row per provider external_id. Rows are immutable once cached: the
    listing id is the join key between "what was found" and "what was sent".
    """

    __tablename__ = "job_listings"

    __table_args__ = (
        Index("ix_job_listings_source_fetched", "source", "fetched_at"),
    )

    # Identification (deduplication key)
    external_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
    )

    # Core fields
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    company: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    location: Mapped[str] = mapped_column(String(255), default="Remote")
    description: Mapped[str] = mapped_column(Text, default="")
    description_snippet: Mapped[str] = mapped_column(Text, default="")
    employment_type: Mapped[str] = mapped_column(
        String(20),
        default="unknown",
    )  # 'full-time', 'part-time', 'contract', 'internship', 'unknown'
    is_remote: Mapped[bool] = mapped_column(Boolean, default=False)

    # Compensation
    salary_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    salary_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    salary_currency: Mapped[str] = mapped_column(String(10), default="USD")
    salary_period: Mapped[str] = mapped_column(String(20), default="yearly")

    # Application
    apply_link: Mapped[str] = mapped_column(Text, nullable=False)
    company_logo: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Provenance
    source: Mapped[str] = mapped_column(String(50), default="rapidapi-jsearch")
    source_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    skills: Mapped[List[str]] = mapped_column(JSON, default=list)

    # Timestamps
    posted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<JobListing {self.title} at {self.company} ({self.external_id})>"
