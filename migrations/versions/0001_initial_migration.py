"""Initial migration

Revision ID: 0001
Revises:
Create Date: 2025-01-28 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create reportjobs table
    op.create_table(
        "reportjobs",
        sa.Column("report_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("district_id", sa.Integer(), nullable=False),
        sa.Column("report_type", sa.String(length=50), nullable=False),
        sa.Column("report_params", sa.Text(), nullable=True),
        sa.Column("status", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requested_date", sa.DateTime(), nullable=False),
        sa.Column("started_date", sa.DateTime(), nullable=True),
        sa.Column("completed_date", sa.DateTime(), nullable=True),
        sa.Column("result_location", sa.String(length=2048), nullable=True),
        sa.Column("filename", sa.String(length=255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("report_id"),
        sa.CheckConstraint("status IN (0, 1, 2, 3)", name="ck_reportjobs_status"),
    )
    op.create_index("idx_district_status", "reportjobs", ["district_id", "status"])
    op.create_index("idx_user_date", "reportjobs", ["user_id", "requested_date"])
    op.create_index("idx_status_requested", "reportjobs", ["status", "requested_date"])

    # Create download_tokens table
    op.create_table(
        "download_tokens",
        sa.Column("token", sa.String(length=64), nullable=False),
        sa.Column("report_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("district_id", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("access_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_accessed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("token"),
    )
    op.create_index("idx_tokens_report_id", "download_tokens", ["report_id"])
    op.create_index("idx_tokens_expires_at", "download_tokens", ["expires_at"])

    # Create threshold_configs table
    op.create_table(
        "threshold_configs",
        sa.Column("report_type", sa.String(length=50), nullable=False),
        sa.Column("max_records", sa.Integer(), nullable=False, server_default="5000"),
        sa.Column("max_duration_seconds", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("report_type"),
    )

    # Create notification_queue table
    op.create_table(
        "notification_queue",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("report_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("district_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=40), nullable=False),
        sa.Column("level", sa.String(length=40), nullable=True),
        sa.Column("queued", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("notification_queue")
    op.drop_table("threshold_configs")

    op.drop_index("idx_tokens_expires_at", table_name="download_tokens")
    op.drop_index("idx_tokens_report_id", table_name="download_tokens")
    op.drop_table("download_tokens")

    # Drop indexes
    op.drop_index("idx_status_requested", table_name="reportjobs")
    op.drop_index("idx_user_date", table_name="reportjobs")
    op.drop_index("idx_district_status", table_name="reportjobs")

    # Drop table
    op.drop_table("reportjobs")
