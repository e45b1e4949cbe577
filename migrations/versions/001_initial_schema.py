"""initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates the videos table with its status/progress check constraints.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "videos",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("owner_id", sa.String(100), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("original_name", sa.String(255), nullable=False),
        sa.Column("file_path", sa.Text, nullable=False),
        sa.Column("mime_type", sa.String(100), nullable=False),
        sa.Column("size_bytes", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("duration", sa.Integer, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("sensitivity_status", sa.String(20), nullable=False, server_default="unknown"),
        sa.Column("processing_progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column("view_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("thumbnail", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_videos_status",
        ),
        sa.CheckConstraint(
            "sensitivity_status IN ('unknown', 'safe', 'flagged')",
            name="ck_videos_sensitivity_status",
        ),
        sa.CheckConstraint(
            "processing_progress >= 0 AND processing_progress <= 100",
            name="ck_videos_processing_progress",
        ),
    )
    op.create_index("ix_videos_tenant_owner", "videos", ["tenant_id", "owner_id"])
    op.create_index("ix_videos_status_sensitivity", "videos", ["status", "sensitivity_status"])
    op.create_index("ix_videos_created_at", "videos", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_videos_created_at", table_name="videos")
    op.drop_index("ix_videos_status_sensitivity", table_name="videos")
    op.drop_index("ix_videos_tenant_owner", table_name="videos")
    op.drop_table("videos")
