"""Pydantic request/response schemas for scraping jobs, logs and sources.

Used by the scraper API routes for validation, serialisation, and OpenAPI
documentation generation.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ScrapingJobCreate(BaseModel):
    """Payload for triggering a new scraping job.

    Attributes:
        source_identifiers: Source names or UUIDs to scrape.  Every entry must
            resolve to an enabled source.
        articles_per_source: Candidate cap per source.  Defaults to the
            configured ``scraper_default_articles_per_source``; the upper
            bound is enforced by the route against
            ``scraper_max_articles_per_source``.
    """

    source_identifiers: List[str] = Field(min_length=1)
    articles_per_source: Optional[int] = Field(default=None, ge=1)


class ScrapingJobAccepted(BaseModel):
    """Immediate response to a trigger request; the job runs asynchronously."""

    job_id: uuid.UUID
    status: str


class ScrapingJobRead(BaseModel):
    """Full representation of a persisted scraping job."""

    id: uuid.UUID
    sources_requested: list
    articles_per_source: int

    status: str
    cancel_requested: bool
    celery_task_id: Optional[str]
    error_message: Optional[str]

    total_articles_scraped: int
    total_errors: int

    triggered_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class ScrapingLogRead(BaseModel):
    """One persisted job log entry."""

    id: uuid.UUID
    job_id: uuid.UUID
    source_id: Optional[uuid.UUID]
    log_level: str
    message: str
    event_type: str
    event_name: str
    counts_as_error: bool
    additional_data: Dict[str, Any]
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class SourceRead(BaseModel):
    """A configured source with its scraping policy and derived health."""

    id: uuid.UUID
    name: str
    domain: str
    rss_url: Optional[str]
    is_enabled: bool
    respect_robots_txt: bool
    delay_between_requests_ms: int
    timeout_ms: int

    success_rate: float
    avg_response_time_ms: Optional[float]
    consecutive_failures: int
    is_healthy: bool
    total_attempts: int
    last_scraped_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class SourceHealthRead(BaseModel):
    """Health snapshot of one source.

    ``window_attempts`` is the number of fetch attempts found in the trailing
    window when the snapshot was recomputed from the log history.
    """

    source_id: uuid.UUID
    name: str
    is_healthy: bool
    success_rate: float
    avg_response_time_ms: Optional[float]
    consecutive_failures: int
    window_attempts: int
    last_scraped_at: Optional[datetime]


class JobDiagnosticsRead(BaseModel):
    """Aggregated log-query summaries for one job."""

    job_id: uuid.UUID
    timeline: Dict[str, Any]
    http_errors: List[Dict[str, Any]]
    error_summary: Dict[str, int]
    extraction_quality: Dict[str, Any]
    response_times: Dict[str, Any]
    source_performance: List[Dict[str, Any]]
