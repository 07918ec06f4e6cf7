"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 00:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
MONEY = sa.Numeric(12, 2)
TS = sa.DateTime(timezone=True)

TRUST = "'basic', 'verified', 'kyc_gold'"


def upgrade() -> None:
    op.create_table(
        "workers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(120), nullable=True),
        sa.Column("trust_level", sa.String(20), nullable=False),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("skills", JSON, nullable=False),
        sa.Column("available", sa.Boolean, nullable=False),
        sa.Column("jobs_completed", sa.Integer, nullable=False),
        sa.Column("total_earned", MONEY, nullable=False),
        sa.Column("rating", sa.Float, nullable=False),
        sa.Column("rating_count", sa.Integer, nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("last_active", TS, nullable=True),
        sa.CheckConstraint(f"trust_level IN ({TRUST})", name="ck_worker_trust_level"),
        sa.CheckConstraint("rating >= 0 AND rating <= 5", name="ck_worker_rating_range"),
    )
    op.create_index("idx_worker_available", "workers", ["available"])
    op.create_index("idx_worker_location", "workers", ["latitude", "longitude"])

    op.create_table(
        "agents",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("callback_url", sa.String(500), nullable=True),
        sa.Column("jobs_created", sa.Integer, nullable=False),
        sa.Column("jobs_completed", sa.Integer, nullable=False),
        sa.Column("total_spent", MONEY, nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
    )

    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("agent_id", sa.String(64), sa.ForeignKey("agents.id"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("category", sa.String(30), nullable=False),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("radius_meters", sa.Integer, nullable=False),
        sa.Column("required_trust_level", sa.String(20), nullable=False),
        sa.Column("required_deliverables", JSON, nullable=False),
        sa.Column("estimated_duration_minutes", sa.Integer, nullable=True),
        sa.Column("payment_amount", MONEY, nullable=False),
        sa.Column("payment_currency", sa.String(3), nullable=False),
        sa.Column("escrow_hold_id", sa.String(128), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("worker_id", sa.String(64), sa.ForeignKey("workers.id"), nullable=True),
        sa.Column("assigned_at", TS, nullable=True),
        sa.Column("started_at", TS, nullable=True),
        sa.Column("submitted_at", TS, nullable=True),
        sa.Column("completed_at", TS, nullable=True),
        sa.Column("expires_at", TS, nullable=True),
        sa.Column("must_complete_by", TS, nullable=True),
        sa.Column("rejection_count", sa.Integer, nullable=False),
        sa.Column("last_rejection_reason", sa.Text, nullable=True),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.CheckConstraint(
            "status IN ('available', 'assigned', 'in_progress', 'submitted', "
            "'completed', 'cancelled')",
            name="ck_job_valid_status",
        ),
        sa.CheckConstraint(
            "category IN ('photo_survey', 'verification', 'transcription', 'delivery', "
            "'inspection', 'data_collection', 'other')",
            name="ck_job_valid_category",
        ),
        sa.CheckConstraint(f"required_trust_level IN ({TRUST})", name="ck_job_trust_level"),
        sa.CheckConstraint("payment_amount > 0", name="ck_job_positive_amount"),
        sa.CheckConstraint("radius_meters > 0", name="ck_job_positive_radius"),
    )
    op.create_index("idx_job_status", "jobs", ["status"])
    op.create_index("idx_job_agent", "jobs", ["agent_id"])
    op.create_index("idx_job_worker", "jobs", ["worker_id"])
    op.create_index("idx_job_location", "jobs", ["latitude", "longitude"])
    op.create_index("idx_job_created_at", "jobs", ["created_at"])

    op.create_table(
        "job_deliverables",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "job_id", sa.Uuid, sa.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("worker_id", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("storage_key", sa.String(500), nullable=False),
        sa.Column("size_bytes", sa.Integer, nullable=False),
        sa.Column("media_type", sa.String(100), nullable=True),
        sa.Column("caption", sa.Text, nullable=True),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("captured_at", TS, nullable=True),
        sa.Column("verified", sa.Boolean, nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint(
            "kind IN ('photo', 'video', 'audio', 'document')", name="ck_deliverable_kind"
        ),
    )
    op.create_index("idx_deliverable_job", "job_deliverables", ["job_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("job_id", sa.Uuid, sa.ForeignKey("jobs.id"), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("metadata", JSON, nullable=True),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("completed_at", TS, nullable=True),
        sa.CheckConstraint(
            "type IN ('job_payment', 'withdrawal', 'bonus', 'refund')",
            name="ck_transaction_type",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'cancelled')",
            name="ck_transaction_status",
        ),
        sa.CheckConstraint("amount > 0", name="ck_transaction_positive_amount"),
    )
    op.create_index("idx_transaction_user", "transactions", ["user_id"])
    op.create_index("idx_transaction_job", "transactions", ["job_id"])
    op.create_index("idx_transaction_created_at", "transactions", ["created_at"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("job_id", sa.Uuid, sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("agent_id", sa.String(64), nullable=False),
        sa.Column("worker_id", sa.String(64), nullable=False),
        sa.Column("sender_role", sa.String(10), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("kind", sa.String(10), nullable=False),
        sa.Column("is_read", sa.Boolean, nullable=False),
        sa.Column("read_at", TS, nullable=True),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint(
            "sender_role IN ('agent', 'worker')", name="ck_message_sender_role"
        ),
        sa.CheckConstraint("kind IN ('text', 'system')", name="ck_message_kind"),
    )
    op.create_index("idx_message_job_created", "messages", ["job_id", "created_at"])
    op.create_index("idx_message_worker", "messages", ["worker_id"])

    op.create_table(
        "reviews",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("job_id", sa.Uuid, sa.ForeignKey("jobs.id"), nullable=False, unique=True),
        sa.Column("reviewer_id", sa.String(64), nullable=False),
        sa.Column("worker_id", sa.String(64), sa.ForeignKey("workers.id"), nullable=False),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("quality_rating", sa.Integer, nullable=True),
        sa.Column("speed_rating", sa.Integer, nullable=True),
        sa.Column("communication_rating", sa.Integer, nullable=True),
        sa.Column("review_text", sa.Text, nullable=True),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_review_rating_range"),
    )
    op.create_index("idx_review_worker", "reviews", ["worker_id"])


def downgrade() -> None:
    op.drop_table("reviews")
    op.drop_table("messages")
    op.drop_table("transactions")
    op.drop_table("job_deliverables")
    op.drop_table("jobs")
    op.drop_table("agents")
    op.drop_table("workers")
