"""Initial scraper schema.

Creates the four tables the scraper core reads and writes:

- ``sources``          feed + scraping policy + derived health metrics
- ``scraping_jobs``    one row per job run, with lifecycle and counters
- ``scraped_content``  extracted articles (immutable once inserted)
- ``scraping_logs``    append-only job log with JSON diagnostics payload

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    """Create sources, scraping_jobs, scraped_content and scraping_logs."""
    op.create_table(
        "sources",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("rss_url", sa.Text(), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        # Scraping policy
        sa.Column(
            "respect_robots_txt", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "delay_between_requests_ms",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("1000"),
        ),
        sa.Column("timeout_ms", sa.Integer(), nullable=False, server_default=sa.text("15000")),
        sa.Column("user_agent", sa.Text(), nullable=True),
        # Derived health metrics
        sa.Column("success_rate", sa.Float(), nullable=False, server_default=sa.text("1.0")),
        sa.Column("avg_response_time_ms", sa.Float(), nullable=True),
        sa.Column(
            "consecutive_failures", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("is_healthy", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("total_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_scraped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "scraping_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("sources_requested", _JSON, nullable=False),
        sa.Column(
            "articles_per_source", sa.Integer(), nullable=False, server_default=sa.text("3")
        ),
        # Lifecycle
        sa.Column("status", sa.String(20), nullable=False, server_default="new"),
        sa.Column(
            "cancel_requested", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("celery_task_id", sa.String(255), nullable=True),
        # Counters
        sa.Column(
            "total_articles_scraped", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("total_errors", sa.Integer(), nullable=False, server_default=sa.text("0")),
        # Timing
        sa.Column(
            "triggered_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_scraping_jobs_status", "scraping_jobs", ["status"])

    op.create_table(
        "scraped_content",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "job_id",
            sa.Uuid(),
            sa.ForeignKey("scraping_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "source_id",
            sa.Uuid(),
            sa.ForeignKey("sources.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source_url", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("author", sa.Text(), nullable=True),
        sa.Column("publication_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("language", sa.String(10), nullable=True),
        sa.Column(
            "processing_status", sa.String(30), nullable=False, server_default="pending"
        ),
        sa.Column("quality_score", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("content_hash", sa.String(64), nullable=True),
        sa.Column("extraction_strategy", sa.String(30), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_scraped_content_hash", "scraped_content", ["content_hash"])
    op.create_index("idx_scraped_content_job", "scraped_content", ["job_id"])
    op.create_index("idx_scraped_content_source", "scraped_content", ["source_id"])

    op.create_table(
        "scraping_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "job_id",
            sa.Uuid(),
            sa.ForeignKey("scraping_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "source_id",
            sa.Uuid(),
            sa.ForeignKey("sources.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("log_level", sa.String(10), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("event_type", sa.String(20), nullable=False),
        sa.Column("event_name", sa.String(50), nullable=False),
        sa.Column(
            "counts_as_error", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "additional_data",
            _JSON,
            nullable=False,
            server_default=sa.text("'{}'"),
        ),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_scraping_logs_job", "scraping_logs", ["job_id"])
    op.create_index(
        "idx_scraping_logs_source_event", "scraping_logs", ["source_id", "event_name"]
    )


def downgrade() -> None:
    """Drop all scraper tables."""
    op.drop_index("idx_scraping_logs_source_event", table_name="scraping_logs")
    op.drop_index("idx_scraping_logs_job", table_name="scraping_logs")
    op.drop_table("scraping_logs")
    op.drop_index("idx_scraped_content_source", table_name="scraped_content")
    op.drop_index("idx_scraped_content_job", table_name="scraped_content")
    op.drop_index("idx_scraped_content_hash", table_name="scraped_content")
    op.drop_table("scraped_content")
    op.drop_index("idx_scraping_jobs_status", table_name="scraping_jobs")
    op.drop_table("scraping_jobs")
    op.drop_table("sources")
