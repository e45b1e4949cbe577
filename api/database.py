from datetime import datetime, timezone

import sqlalchemy as sa
from databases import Database

from config import DATABASE_URL

# Create database instance - works with PostgreSQL or SQLite
database = Database(DATABASE_URL)
metadata = sa.MetaData()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


videos = sa.Table(
    "videos",
    metadata,
    sa.Column("id", sa.String(32), primary_key=True),  # uuid4 hex
    sa.Column("tenant_id", sa.String(100), nullable=False),
    sa.Column("owner_id", sa.String(100), nullable=False),
    sa.Column("title", sa.String(255), nullable=False),
    sa.Column("description", sa.Text, default=""),
    sa.Column("filename", sa.String(255), nullable=False),
    sa.Column("original_name", sa.String(255), nullable=False),
    sa.Column("file_path", sa.Text, nullable=False),
    sa.Column("mime_type", sa.String(100), nullable=False),
    sa.Column("size_bytes", sa.BigInteger, nullable=False, default=0),
    sa.Column("duration", sa.Integer, nullable=True),  # seconds
    sa.Column(
        "status",
        sa.String(20),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_videos_status",
        ),
        nullable=False,
        default="pending",
    ),
    sa.Column(
        "sensitivity_status",
        sa.String(20),
        sa.CheckConstraint(
            "sensitivity_status IN ('unknown', 'safe', 'flagged')",
            name="ck_videos_sensitivity_status",
        ),
        nullable=False,
        default="unknown",
    ),
    sa.Column(
        "processing_progress",
        sa.Integer,
        sa.CheckConstraint(
            "processing_progress >= 0 AND processing_progress <= 100",
            name="ck_videos_processing_progress",
        ),
        nullable=False,
        default=0,
    ),
    sa.Column("view_count", sa.Integer, nullable=False, default=0),
    sa.Column("thumbnail", sa.Text, nullable=True),  # data URI
    sa.Column("created_at", sa.DateTime(timezone=True), default=utcnow),
    sa.Column("updated_at", sa.DateTime(timezone=True), default=utcnow),
    sa.Index("ix_videos_tenant_owner", "tenant_id", "owner_id"),
    sa.Index("ix_videos_status_sensitivity", "status", "sensitivity_status"),
    sa.Index("ix_videos_created_at", "created_at"),
)


def create_tables():
    """Create all tables (used for SQLite development setups and tests)."""
    engine = sa.create_engine(DATABASE_URL)
    metadata.create_all(engine)
    engine.dispose()


if __name__ == "__main__":
    create_tables()
    print("Database tables created successfully!")
