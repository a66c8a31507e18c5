"""SQLAlchemy ORM model for scraping jobs.

One job is one execution of the orchestrator across a set of sources,
fetching up to ``articles_per_source`` articles from each.  The row is the
persisted backing of the pull-based status surface: status and counters are
written only by the job's accumulator while the job runs.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from veritas_scraper.core.models.base import Base, JSONType, utcnow


class ScrapingJob(Base):
    """A scraping job across N sources with M articles per source.

    Attributes:
        id: UUID primary key.
        sources_requested: JSON list of source IDs (as strings) to scrape.
        articles_per_source: Candidate cap per source.
        status: Lifecycle state: ``"new"``, ``"in-progress"``,
            ``"successful"``, ``"partial"``, ``"failed"`` or ``"cancelled"``.
        cancel_requested: Cooperative cancellation flag set by the API and
            polled by the orchestrator between sources and articles.
        total_articles_scraped: Items stored with a completed status.
        total_errors: Error log entries attributable to this job.
        error_message: Human-readable reason when the job aborted.
        celery_task_id: ID of the Celery task running this job.
        triggered_at: Timestamp when the job was created.
        started_at: Timestamp of the ``new -> in-progress`` transition.
        completed_at: Timestamp when the job reached a terminal state.
    """

    __tablename__ = "scraping_jobs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    sources_requested: Mapped[list] = mapped_column(JSONType, nullable=False)
    articles_per_source: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=3
    )

    # Lifecycle
    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default="new")
    cancel_requested: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False
    )
    error_message: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    celery_task_id: Mapped[Optional[str]] = mapped_column(
        sa.String(255), nullable=True
    )

    # Counters
    total_articles_scraped: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0
    )
    total_errors: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    # Timing
    triggered_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    __table_args__ = (sa.Index("idx_scraping_jobs_status", "status"),)
