"""FastAPI routers for scraping jobs and sources.

Jobs are executed by a Celery worker; these routes only create, inspect and
cancel them.  Status is pull-based: clients poll the job row and its logs.

Routes:
    POST   /scraping-jobs/                      — create + enqueue job (202)
    GET    /scraping-jobs/                      — list jobs (paginated)
    GET    /scraping-jobs/{job_id}              — status, counters, timestamps
    GET    /scraping-jobs/{job_id}/logs         — persisted log entries
    GET    /scraping-jobs/{job_id}/diagnostics  — log-query summaries
    POST   /scraping-jobs/{job_id}/cancel       — request cooperative cancel (202)
    GET    /sources/                            — configured sources with health
    GET    /sources/{source_id}/health          — health recomputed from history
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from veritas_scraper.config.settings import get_settings
from veritas_scraper.core.database import get_db
from veritas_scraper.core.exceptions import (
    InvalidJobTransitionError,
    JobNotFoundError,
    UnknownSourceError,
)
from veritas_scraper.core.models import ScrapingJob, ScrapingLog, Source
from veritas_scraper.core.schemas.scraping import (
    JobDiagnosticsRead,
    ScrapingJobAccepted,
    ScrapingJobCreate,
    ScrapingJobRead,
    ScrapingLogRead,
    SourceHealthRead,
    SourceRead,
)
from veritas_scraper.scraper.health import SourceHealthTracker
from veritas_scraper.scraper.job_state import JobStatus
from veritas_scraper.scraper.log_queries import job_diagnostics
from veritas_scraper.scraper.repository import ScrapingRepository

logger = structlog.get_logger(__name__)

router = APIRouter()
sources_router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies / helpers
# ---------------------------------------------------------------------------


async def get_repository(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ScrapingRepository:
    """Bind a repository to the request-scoped session."""
    return ScrapingRepository(session=db)


Repository = Annotated[ScrapingRepository, Depends(get_repository)]


async def _get_job_or_404(job_id: uuid.UUID, repo: ScrapingRepository) -> ScrapingJob:
    """Fetch a ScrapingJob by primary key or raise HTTP 404."""
    try:
        return await repo.get_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Scraping job '{job_id}' not found.",
        ) from exc


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "/",
    response_model=ScrapingJobAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_scraping_job(
    payload: ScrapingJobCreate,
    repo: Repository,
) -> ScrapingJobAccepted:
    """Create a job and dispatch it to the ``scraping`` queue.

    Args:
        payload: Source identifiers (names or UUIDs) and the per-source cap.
        repo: Request-scoped repository.

    Returns:
        The new job's ID and its initial ``new`` status.

    Raises:
        HTTPException 422: If a source is unknown or disabled, or the cap
            exceeds ``scraper_max_articles_per_source``.
    """
    settings = get_settings()
    per_source = payload.articles_per_source or settings.scraper_default_articles_per_source
    if per_source > settings.scraper_max_articles_per_source:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=(
                f"articles_per_source must be at most "
                f"{settings.scraper_max_articles_per_source}."
            ),
        )

    try:
        sources = await repo.resolve_sources(payload.source_identifiers)
    except UnknownSourceError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc

    job = await repo.create_job([s.id for s in sources], per_source)

    # Dispatch Celery task
    from veritas_scraper.scraper.tasks import run_scraping_job_task  # noqa: PLC0415

    run_scraping_job_task.apply_async(
        kwargs={"job_id": str(job.id)},
        queue="scraping",
    )

    logger.info(
        "scraping_job_created",
        job_id=str(job.id),
        sources=[s.name for s in sources],
        articles_per_source=per_source,
    )
    return ScrapingJobAccepted(job_id=job.id, status=job.status)


# ---------------------------------------------------------------------------
# List / detail
# ---------------------------------------------------------------------------


@router.get("/", response_model=list[ScrapingJobRead])
async def list_scraping_jobs(
    repo: Repository,
    status_filter: Optional[str] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[ScrapingJob]:
    """List jobs, newest first."""
    if status_filter is not None:
        try:
            JobStatus(status_filter)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Unknown status '{status_filter}'.",
            ) from exc
    return await repo.list_jobs(status=status_filter, limit=limit, offset=offset)


@router.get("/{job_id}", response_model=ScrapingJobRead)
async def get_scraping_job(job_id: uuid.UUID, repo: Repository) -> ScrapingJob:
    """Return a job's status, counters and timestamps.

    Raises:
        HTTPException 404: If the job does not exist.
    """
    return await _get_job_or_404(job_id, repo)


@router.get("/{job_id}/logs", response_model=list[ScrapingLogRead])
async def list_scraping_job_logs(
    job_id: uuid.UUID,
    repo: Repository,
    level: Optional[str] = None,
    event_type: Optional[str] = None,
    source_id: Optional[uuid.UUID] = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 200,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[ScrapingLog]:
    """Return a job's log entries in timestamp order.

    Raises:
        HTTPException 404: If the job does not exist.
    """
    await _get_job_or_404(job_id, repo)
    return await repo.list_logs(
        job_id,
        level=level,
        event_type=event_type,
        source_id=source_id,
        limit=limit,
        offset=offset,
    )


@router.get("/{job_id}/diagnostics", response_model=JobDiagnosticsRead)
async def get_scraping_job_diagnostics(
    job_id: uuid.UUID, repo: Repository
) -> dict[str, Any]:
    """Summaries over the job's logs: timeline, HTTP errors, quality, timing.

    Raises:
        HTTPException 404: If the job does not exist.
    """
    try:
        return await job_diagnostics(repo, job_id)
    except JobNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Scraping job '{job_id}' not found.",
        ) from exc


# ---------------------------------------------------------------------------
# Cancel
# ---------------------------------------------------------------------------


@router.post(
    "/{job_id}/cancel",
    response_model=ScrapingJobRead,
    status_code=status.HTTP_202_ACCEPTED,
)
async def cancel_scraping_job(job_id: uuid.UUID, repo: Repository) -> ScrapingJob:
    """Request cancellation of a job.

    The running worker observes the flag at its next checkpoint (before the
    next source or article) and finishes the job as ``cancelled``.

    Raises:
        HTTPException 404: If the job does not exist.
        HTTPException 409: If the job is already in a terminal state.
    """
    try:
        job = await repo.request_cancel(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Scraping job '{job_id}' not found.",
        ) from exc
    except InvalidJobTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot cancel a job with status '{exc.current}'.",
        ) from exc

    logger.info("scraping_job_cancel_requested", job_id=str(job_id), status=job.status)
    return job


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


@sources_router.get("/", response_model=list[SourceRead])
async def list_sources(
    repo: Repository,
    enabled_only: bool = False,
) -> list[Source]:
    """List configured sources with their persisted health metrics."""
    return await repo.list_sources(enabled_only=enabled_only)


@sources_router.get("/{source_id}/health", response_model=SourceHealthRead)
async def get_source_health(source_id: uuid.UUID, repo: Repository) -> SourceHealthRead:
    """Recompute a source's health from its recent fetch attempts.

    Raises:
        HTTPException 404: If the source does not exist.
    """
    source = await repo.get_source(source_id)
    if source is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Source '{source_id}' not found.",
        )
    tracker = SourceHealthTracker.from_settings(get_settings())
    history = await repo.fetch_attempt_history(source.id, tracker.window_size)
    snapshot = tracker.replay(source.id, history)
    return SourceHealthRead(
        source_id=source.id,
        name=source.name,
        is_healthy=snapshot.is_healthy,
        success_rate=snapshot.success_rate,
        avg_response_time_ms=snapshot.avg_response_time_ms,
        consecutive_failures=snapshot.consecutive_failures,
        window_attempts=snapshot.window_attempts,
        last_scraped_at=source.last_scraped_at,
    )
