"""SQLAlchemy ORM model for configured news sources.

A source is a news feed plus its scraping policy.  Sources are created by
an admin action outside the scraper core; the core reads the policy columns
and writes the derived health columns after every fetch attempt.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from veritas_scraper.core.models.base import Base, utcnow


class Source(Base):
    """A configured news source.

    Attributes:
        id: UUID primary key.
        name: Unique human-readable name (also accepted as an identifier by
            the job trigger surface).
        domain: Site domain, e.g. ``"www.bbc.com"``.
        rss_url: RSS/Atom feed URL.
        is_enabled: Disabled sources cannot be requested in new jobs.
        respect_robots_txt: Whether article fetches honour robots.txt.
        delay_between_requests_ms: Politeness delay between sequential
            article fetches of this source.
        timeout_ms: Per-request timeout for article fetches.
        user_agent: User-Agent header; ``None`` uses the configured default.
        success_rate: Trailing-window success rate (0.0-1.0).
        avg_response_time_ms: Mean response time over the trailing window.
        consecutive_failures: Current failure streak.
        is_healthy: Derived health flag.
        total_attempts: Lifetime number of article fetch attempts.
        last_scraped_at: Timestamp of the last fetch attempt.
        created_at: Row creation timestamp.
    """

    __tablename__ = "sources"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False, unique=True)
    domain: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    rss_url: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    is_enabled: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)

    # Scraping policy
    respect_robots_txt: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=True
    )
    delay_between_requests_ms: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=1000
    )
    timeout_ms: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=15000)
    user_agent: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    # Derived health metrics
    success_rate: Mapped[float] = mapped_column(sa.Float, nullable=False, default=1.0)
    avg_response_time_ms: Mapped[Optional[float]] = mapped_column(
        sa.Float, nullable=True
    )
    consecutive_failures: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0
    )
    is_healthy: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    total_attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    last_scraped_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
