"""initial schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "reports",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("repo_url", sa.String(length=512), nullable=False),
        sa.Column("keyword", sa.String(length=255), nullable=False),
        sa.Column("issues", sa.JSON(), nullable=False),
        sa.Column("cursor", sa.Text()),
        sa.Column("is_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_canceled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("emails_sent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("request_counter", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_partial_cursor", sa.Text()),
        sa.Column("final_email_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("last_fetched_at", sa.DateTime()),
        sa.Column("last_handoff_at", sa.DateTime()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_reports_user_id", "reports", ["user_id"])
    op.create_index("ix_reports_user_repo_keyword", "reports", ["user_id", "repo_url", "keyword"])
    op.create_index("ix_reports_complete_final_email", "reports", ["is_complete", "final_email_at"])

    op.create_table(
        "analysis_tasks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("report_id", sa.Integer(), sa.ForeignKey("reports.id"), nullable=False),
        sa.Column("owner_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("keyword", sa.String(length=255), nullable=False),
        sa.Column("issue_id", sa.String(length=128), nullable=False),
        sa.Column("issue", sa.JSON(), nullable=False),
        sa.Column("estimated_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="queued"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("report_id", "issue_id", name="uq_analysis_tasks_report_issue"),
    )
    op.create_index("ix_analysis_tasks_status_created", "analysis_tasks", ["status", "created_at"])
    op.create_index("ix_analysis_tasks_owner_status", "analysis_tasks", ["owner_user_id", "status"])
    op.create_index("ix_analysis_tasks_report_status", "analysis_tasks", ["report_id", "status"])

    op.create_table(
        "rate_limits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("bucket", sa.String(length=64), nullable=False),
        sa.Column("window", sa.String(length=8), nullable=False),
        sa.Column("window_start", sa.DateTime(), nullable=False),
        sa.Column("requests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_rate_limits_bucket", "rate_limits", ["bucket"], unique=True)
    op.create_index("ix_rate_limits_window_start", "rate_limits", ["window_start"])

    op.create_table(
        "locks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("lease_expires_at", sa.DateTime(), nullable=False),
        sa.Column("owner", sa.String(length=255)),
        sa.Column("acquired_at", sa.DateTime()),
    )
    op.create_index("ix_locks_name", "locks", ["name"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_locks_name", table_name="locks")
    op.drop_table("locks")

    op.drop_index("ix_rate_limits_window_start", table_name="rate_limits")
    op.drop_index("ix_rate_limits_bucket", table_name="rate_limits")
    op.drop_table("rate_limits")

    op.drop_index("ix_analysis_tasks_report_status", table_name="analysis_tasks")
    op.drop_index("ix_analysis_tasks_owner_status", table_name="analysis_tasks")
    op.drop_index("ix_analysis_tasks_status_created", table_name="analysis_tasks")
    op.drop_table("analysis_tasks")

    op.drop_index("ix_reports_complete_final_email", table_name="reports")
    op.drop_index("ix_reports_user_repo_keyword", table_name="reports")
    op.drop_index("ix_reports_user_id", table_name="reports")
    op.drop_table("reports")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_id", table_name="users")
    op.drop_table("users")
