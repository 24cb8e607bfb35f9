"""
NotificationRecord model - the deduplication ledger.
"""
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional
from sqlalchemy import DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel

if TYPE_CHECKING:
    from app.models.job_alert import JobAlert
    from app.models.job_listing import JobListing


STATUS_PENDING = "pending"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"


class NotificationRecord(BaseModel):
    """
    Proof that a user was (or was attempted to be) told about a listing.

    The unique (user_id, listing_id) constraint is the only thing that stops
    a user from getting the same listing twice, including under retried or
    concurrent alert checks. A failed send still occupies the slot.
    """

    __tablename__ = "notification_records"

    # Unique constraint: one notification per user per listing
    __table_args__ = (
        UniqueConstraint("user_id", "listing_id", name="uq_notification_user_listing"),
        Index("ix_notification_records_alert_listing", "alert_id", "listing_id"),
        Index("ix_notification_records_status_sent", "status", "sent_at"),
    )

    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    # Foreign Keys
    alert_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("job_alerts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("job_listings.id"),
        nullable=False,
        index=True,
    )
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Delivery
    status: Mapped[str] = mapped_column(
        String(20),
        default=STATUS_PENDING,
    )  # 'pending', 'sent', 'failed'
    message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    alert: Mapped["JobAlert"] = relationship("JobAlert", back_populates="notifications")
    listing: Mapped["JobListing"] = relationship("JobListing")

    def __repr__(self) -> str:
        return f"<NotificationRecord user_id={self.user_id} listing_id={self.listing_id} {self.status}>"
