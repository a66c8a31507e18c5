"""SQLAlchemy ORM model for job-scoped structured log entries.

Append-only.  ``additional_data`` carries the machine-readable payload
(extraction traces, HTTP timing, error detail) that the diagnostics queries
aggregate over.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from veritas_scraper.core.models.base import Base, JSONType, utcnow


class ScrapingLog(Base):
    """A leveled log entry attached to a job and optionally a source.

    Attributes:
        log_level: ``"info"``, ``"warning"`` or ``"error"``.
        event_type: Coarse category: ``lifecycle``, ``source``, ``http``,
            ``extraction``, ``article`` or ``error``.
        event_name: Specific event, e.g. ``article_fetch`` or
            ``duplicate_skipped``.
        counts_as_error: True for entries that feed the job's error counter.
    """

    __tablename__ = "scraping_logs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("scraping_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    source_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.ForeignKey("sources.id", ondelete="SET NULL"),
        nullable=True,
    )
    log_level: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    message: Mapped[str] = mapped_column(sa.Text, nullable=False)
    event_type: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    event_name: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    counts_as_error: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False
    )
    additional_data: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    timestamp: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        sa.Index("idx_scraping_logs_job", "job_id"),
        sa.Index("idx_scraping_logs_source_event", "source_id", "event_name"),
    )
