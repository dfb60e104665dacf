"""Initial schema: scan_record

Revision ID: 0001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "scan_record",
        sa.Column("id", sa.String(36), primary_key=True),
        # --- repository identity ---
        sa.Column("repo_url", sa.Text(), nullable=False),
        sa.Column("provider", sa.String(16), nullable=False, server_default="other"),
        sa.Column("owner", sa.Text(), nullable=False, server_default=""),
        sa.Column("repo", sa.Text(), nullable=False, server_default=""),
        sa.Column("commit_hash", sa.String(64), nullable=True),
        # --- state machine ---
        sa.Column(
            "status",
            sa.String(16),
            sa.CheckConstraint(
                "status IN ('queued', 'running', 'succeeded', 'failed')",
                name="scan_status",
            ),
            nullable=False,
            server_default="queued",
        ),
        sa.Column("progress", postgresql.JSONB(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("error_code", sa.String(32), nullable=True),
        sa.Column("error_type", sa.String(16), nullable=True),
        # --- results ---
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("tech_stack", postgresql.JSONB(), nullable=True),
        sa.Column("categorized_tech_stack", postgresql.JSONB(), nullable=True),
        sa.Column("skill_level", sa.String(16), nullable=True),
        sa.Column("repository_info", postgresql.JSONB(), nullable=True),
        sa.Column("detailed_assessment", postgresql.JSONB(), nullable=True),
        sa.Column("timeline", postgresql.JSONB(), nullable=True),
        sa.Column("stats", postgresql.JSONB(), nullable=True),
        # --- quota identity ---
        sa.Column("user_id", sa.Text(), nullable=True),
        sa.Column("ip", sa.String(64), nullable=True),
        sa.Column("ip_hash", sa.String(64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    # Cache lookup: newest succeeded scan for a URL at a revision
    op.create_index(
        "ix_scan_record_cache_key",
        "scan_record",
        ["repo_url", "commit_hash", "status"],
    )
    op.create_index("ix_scan_record_user_id", "scan_record", ["user_id"])
    op.create_index("ix_scan_record_created_at", "scan_record", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_scan_record_created_at", table_name="scan_record")
    op.drop_index("ix_scan_record_user_id", table_name="scan_record")
    op.drop_index("ix_scan_record_cache_key", table_name="scan_record")
    op.drop_table("scan_record")
