"""initial schema: jobs and job_logs

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_PAYLOAD = sa.JSON(none_as_null=True).with_variant(postgresql.JSONB(none_as_null=True), "postgresql")


def upgrade() -> None:
    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("job_type", sa.String(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("params", JSON_PAYLOAD, nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("progress_percent", sa.Integer(), nullable=False),
        sa.Column("progress_message", sa.Text(), nullable=True),
        sa.Column("result", JSON_PAYLOAD, nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("error_details", JSON_PAYLOAD, nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("max_retries", sa.Integer(), nullable=False),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    # Partial indexes only take their WHERE clause on PostgreSQL.
    op.create_index(
        "ix_jobs_pickup", "jobs", ["status", "scheduled_for", "priority", "created_at"],
        postgresql_where=sa.text("status = 'pending'"),
    )
    op.create_index("ix_jobs_owner_status_created", "jobs", ["owner_id", "status", "created_at"])
    op.create_index("ix_jobs_owner_type_status", "jobs", ["owner_id", "job_type", "status"])
    op.create_index(
        "ix_jobs_expiry", "jobs", ["status", "expires_at"],
        postgresql_where=sa.text("status = 'pending'"),
    )
    op.create_index(
        "ix_jobs_stuck", "jobs", ["status", "started_at"],
        postgresql_where=sa.text("status = 'processing'"),
    )
    op.create_index(
        "ix_jobs_retry", "jobs", ["status", "retry_count", "completed_at"],
        postgresql_where=sa.text("status = 'failed'"),
    )
    op.create_index(
        "ix_jobs_cleanup", "jobs", ["status", "completed_at"],
        postgresql_where=sa.text("status IN ('completed', 'failed', 'cancelled')"),
    )

    op.create_table(
        "job_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("level", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata", JSON_PAYLOAD, nullable=True),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_logs_job_id", "job_logs", ["job_id"])
    op.create_index("ix_job_logs_job_created", "job_logs", ["job_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_job_logs_job_created", table_name="job_logs")
    op.drop_index("ix_job_logs_job_id", table_name="job_logs")
    op.drop_table("job_logs")

    for name in (
        "ix_jobs_cleanup",
        "ix_jobs_retry",
        "ix_jobs_stuck",
        "ix_jobs_expiry",
        "ix_jobs_owner_type_status",
        "ix_jobs_owner_status_created",
        "ix_jobs_pickup",
    ):
        op.drop_index(name, table_name="jobs")
    op.drop_table("jobs")
