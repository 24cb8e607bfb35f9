"""create job alert dispatch tables

Revision ID: 001_alert_dispatch
Revises:
Create Date: 2026-10-19

Creates the three tables the dispatch engine works on:
  • job_alerts            saved searches + check bookkeeping (counters, last_checked_at)
  • job_listings          listing cache, UNIQUE external_id
  • notification_records  dedup ledger, UNIQUE (user_id, listing_id)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers
revision = "001_alert_dispatch"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "job_alerts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("user_email", sa.String(length=255), nullable=False),
        sa.Column("user_name", sa.String(length=255), nullable=False, server_default="Job Seeker"),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("keywords", sa.JSON(), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("remote_only", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("salary_min", sa.Integer(), nullable=True),
        sa.Column("salary_max", sa.Integer(), nullable=True),
        sa.Column("employment_types", sa.JSON(), nullable=False),
        sa.Column("frequency", sa.String(length=20), nullable=False, server_default="daily"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_listings_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_notifications_sent", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_job_alerts_user_id", "job_alerts", ["user_id"])
    op.create_index("ix_job_alerts_is_active", "job_alerts", ["is_active"])
    op.create_index("ix_job_alerts_user_active", "job_alerts", ["user_id", "is_active"])
    op.create_index("ix_job_alerts_active_checked", "job_alerts", ["is_active", "last_checked_at"])

    op.create_table(
        "job_listings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("company", sa.String(length=255), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=False, server_default="Remote"),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("description_snippet", sa.Text(), nullable=False, server_default=""),
        sa.Column("employment_type", sa.String(length=20), nullable=False, server_default="unknown"),
        sa.Column("is_remote", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("salary_min", sa.Integer(), nullable=True),
        sa.Column("salary_max", sa.Integer(), nullable=True),
        sa.Column("salary_currency", sa.String(length=10), nullable=False, server_default="USD"),
        sa.Column("salary_period", sa.String(length=20), nullable=False, server_default="yearly"),
        sa.Column("apply_link", sa.Text(), nullable=False),
        sa.Column("company_logo", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=50), nullable=False, server_default="rapidapi-jsearch"),
        sa.Column("source_url", sa.Text(), nullable=True),
        sa.Column("skills", sa.JSON(), nullable=False),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_job_listings_external_id", "job_listings", ["external_id"], unique=True)
    op.create_index("ix_job_listings_title", "job_listings", ["title"])
    op.create_index("ix_job_listings_company", "job_listings", ["company"])
    op.create_index("ix_job_listings_source_fetched", "job_listings", ["source", "fetched_at"])

    op.create_table(
        "notification_records",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column(
            "alert_id",
            sa.Uuid(),
            sa.ForeignKey("job_alerts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("listing_id", sa.Uuid(), sa.ForeignKey("job_listings.id"), nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("message_id", sa.String(length=255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        # The dedup guarantee lives here, not in application code
        sa.UniqueConstraint("user_id", "listing_id", name="uq_notification_user_listing"),
    )
    op.create_index("ix_notification_records_user_id", "notification_records", ["user_id"])
    op.create_index("ix_notification_records_alert_id", "notification_records", ["alert_id"])
    op.create_index("ix_notification_records_listing_id", "notification_records", ["listing_id"])
    op.create_index(
        "ix_notification_records_alert_listing",
        "notification_records",
        ["alert_id", "listing_id"],
    )
    op.create_index(
        "ix_notification_records_status_sent",
        "notification_records",
        ["status", "sent_at"],
    )


def downgrade() -> None:
    op.drop_table("notification_records")
    op.drop_table("job_listings")
    op.drop_table("job_alerts")
