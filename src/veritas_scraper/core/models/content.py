"""SQLAlchemy ORM model for scraped article content.

Rows are immutable once inserted; re-scrapes of the same article are
deduplicated by ``content_hash`` instead of updating the existing row.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from veritas_scraper.core.models.base import Base, utcnow


class ScrapedContent(Base):
    """One extracted article.

    ``content`` holds the body paragraphs joined with the triple-newline
    paragraph separator.  ``processing_status`` is one of ``"pending"``,
    ``"completed"``, ``"completed-low-quality"`` or ``"failed"``.
    """

    __tablename__ = "scraped_content"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("scraping_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    source_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("sources.id", ondelete="CASCADE"),
        nullable=False,
    )
    source_url: Mapped[str] = mapped_column(sa.Text, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    author: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    publication_date: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    content: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    language: Mapped[Optional[str]] = mapped_column(sa.String(10), nullable=True)
    processing_status: Mapped[str] = mapped_column(
        sa.String(30), nullable=False, default="pending"
    )
    quality_score: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    content_hash: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    extraction_strategy: Mapped[Optional[str]] = mapped_column(
        sa.String(30), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        sa.Index("idx_scraped_content_hash", "content_hash"),
        sa.Index("idx_scraped_content_job", "job_id"),
        sa.Index("idx_scraped_content_source", "source_id"),
    )
