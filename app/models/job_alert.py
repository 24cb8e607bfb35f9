"""
JobAlert model - a user's saved search plus its check bookkeeping.
"""
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional
from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel

if TYPE_CHECKING:
    from app.models.notification_record import NotificationRecord


EMPLOYMENT_TYPES = ("full-time", "part-time", "contract", "internship")


class JobAlert(BaseModel):
    """
    Job alert entity.

    Filters are owned by the user. The dispatch engine only ever touches
    last_checked_at and the two cumulative counters, and never deletes rows.
    """

    __tablename__ = "job_alerts"

    __table_args__ = (
        Index("ix_job_alerts_user_active", "user_id", "is_active"),
        Index("ix_job_alerts_active_checked", "is_active", "last_checked_at"),
    )

    # Owner
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), default="Job Seeker")

    # Search criteria
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    keywords: Mapped[List[str]] = mapped_column(JSON, default=list)
    location: Mapped[str] = mapped_column(String(255), default="")
    remote_only: Mapped[bool] = mapped_column(Boolean, default=False)
    salary_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    salary_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    employment_types: Mapped[List[str]] = mapped_column(
        JSON,
        default=lambda: ["full-time"],
    )  # subset of EMPLOYMENT_TYPES
    frequency: Mapped[str] = mapped_column(
        String(20),
        default="daily",
    )  # 'realtime', 'daily', 'weekly'

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    # Check bookkeeping (engine-owned)
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    total_listings_found: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    total_notifications_sent: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    # Relationships
    notifications: Mapped[List["NotificationRecord"]] = relationship(
        "NotificationRecord",
        back_populates="alert",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<JobAlert {self.title!r} user_id={self.user_id}>"
