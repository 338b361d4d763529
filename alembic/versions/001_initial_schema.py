"""Initial schema for the test inventory store

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates the collector schema:
- codebases: canonical repository identity (host, owner, name)
- analyses: one pipeline run per commit with its status state machine
- test_suites: suite forest of an analysis (self-referencing parent)
- test_cases: test cases under a suite
- oauth_accounts: provider tokens written by the account service
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enum types first
    analysis_status_enum = postgresql.ENUM(
        "running", "completed", "failed",
        name="analysis_status",
        create_type=False,
    )
    analysis_status_enum.create(op.get_bind(), checkfirst=True)

    test_status_enum = postgresql.ENUM(
        "active", "skipped", "todo",
        name="test_status",
        create_type=False,
    )
    test_status_enum.create(op.get_bind(), checkfirst=True)

    # Create codebases table
    op.create_table(
        "codebases",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("host", sa.String(255), nullable=False),
        sa.Column("owner", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("default_branch", sa.String(255), nullable=True),
        sa.Column("refresh_user_id", sa.UUID(), nullable=True),
        sa.Column("last_refresh_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_unique_constraint("uq_codebases_host_owner_name", "codebases", ["host", "owner", "name"])

    # Create analyses table
    op.create_table(
        "analyses",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("codebase_id", sa.UUID(), sa.ForeignKey("codebases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("commit_sha", sa.String(64), nullable=False),
        sa.Column("branch_name", sa.String(255), nullable=True),
        sa.Column(
            "status",
            postgresql.ENUM("running", "completed", "failed", name="analysis_status", create_type=False),
            server_default="running",
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("total_suites", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_tests", sa.Integer(), server_default="0", nullable=False),
        sa.CheckConstraint("commit_sha <> ''", name="ck_analyses_commit_sha_not_empty"),
        sa.CheckConstraint(
            "error_message IS NULL OR char_length(error_message) <= 1000",
            name="ck_analyses_error_message_length",
        ),
    )
    op.create_index("ix_analyses_codebase_id", "analyses", ["codebase_id"])
    op.create_index("ix_analyses_commit_sha", "analyses", ["commit_sha"])
    op.create_index("ix_analyses_status", "analyses", ["status"])

    # Create test_suites table
    op.create_table(
        "test_suites",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("analysis_id", sa.UUID(), sa.ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("parent_id", sa.UUID(), sa.ForeignKey("test_suites.id", ondelete="CASCADE"), nullable=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("line_number", sa.Integer(), server_default="1", nullable=False),
        sa.Column("framework", sa.String(50), nullable=True),
        sa.Column("depth", sa.Integer(), server_default="0", nullable=False),
        sa.CheckConstraint("line_number >= 1", name="ck_test_suites_line_number_positive"),
        sa.CheckConstraint(
            "(parent_id IS NULL AND depth = 0) OR (parent_id IS NOT NULL AND depth > 0)",
            name="ck_test_suites_depth_matches_parent",
        ),
    )
    op.create_index("ix_test_suites_analysis_id", "test_suites", ["analysis_id"])
    op.create_index("ix_test_suites_parent_id", "test_suites", ["parent_id"])

    # Create test_cases table
    op.create_table(
        "test_cases",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("suite_id", sa.UUID(), sa.ForeignKey("test_suites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(2000), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=True),
        sa.Column(
            "status",
            postgresql.ENUM("active", "skipped", "todo", name="test_status", create_type=False),
            server_default="active",
            nullable=False,
        ),
        sa.Column(
            "tags",
            postgresql.JSONB(),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
    )
    op.create_index("ix_test_cases_suite_id", "test_cases", ["suite_id"])

    # Create oauth_accounts table
    op.create_table(
        "oauth_accounts",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_unique_constraint(
        "uq_oauth_accounts_user_id_provider", "oauth_accounts", ["user_id", "provider"]
    )
    op.create_index("ix_oauth_accounts_user_id", "oauth_accounts", ["user_id"])


def downgrade() -> None:
    # Drop tables in reverse order of creation (respecting foreign keys)
    op.drop_table("oauth_accounts")
    op.drop_table("test_cases")
    op.drop_table("test_suites")
    op.drop_table("analyses")
    op.drop_table("codebases")

    # Drop enum types
    postgresql.ENUM(name="test_status").drop(op.get_bind(), checkfirst=True)
    postgresql.ENUM(name="analysis_status").drop(op.get_bind(), checkfirst=True)
