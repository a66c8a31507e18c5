"""Celery task for running scraping jobs.

``run_scraping_job_task``
    Executes one ``new`` scraping job to a terminal state through the
    :class:`~veritas_scraper.scraper.orchestrator.JobOrchestrator`.

Task naming convention::

    veritas_scraper.scraper.tasks.<action>

Retry policy:
    Scraping is stateful (each article mutates the DB), so ``max_retries=0``.
    Article and source errors are handled inside the orchestrator.

Event loops:
    Each task run calls ``asyncio.run()`` and builds its own engine, which
    is disposed before the loop closes, so no pooled connection outlives the
    loop it was created on.

Cancellation:
    Cooperative.  The API sets ``cancel_requested`` on the job row; the
    orchestrator's default token polls it at every checkpoint.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

import httpx

from veritas_scraper.config.settings import get_settings
from veritas_scraper.core.database import build_engine, build_session_factory
from veritas_scraper.core.exceptions import InvalidJobTransitionError, JobNotFoundError
from veritas_scraper.scraper.job_state import JobStatus
from veritas_scraper.scraper.orchestrator import JobOrchestrator
from veritas_scraper.scraper.repository import ScrapingRepository
from veritas_scraper.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async helpers
# ---------------------------------------------------------------------------


async def _run_scraping_job(
    job_id: str,
    task_id: str | None,
    *,
    database_url: str | None = None,
) -> dict[str, Any]:
    """Run one job against a freshly built engine.

    Args:
        job_id: UUID string of the job.
        task_id: Celery task ID recorded on the job row.
        database_url: DSN override; defaults to settings.

    Returns:
        Dict with ``job_id``, final ``status`` and counters.
    """
    settings = get_settings()
    engine = build_engine(database_url or settings.database_url)
    try:
        repo = ScrapingRepository(build_session_factory(engine))
        job_uuid = uuid.UUID(job_id)
        if task_id:
            await repo.set_celery_task_id(job_uuid, task_id)
        async with httpx.AsyncClient() as client:
            job = await JobOrchestrator(repo, client, settings=settings).run_job(job_uuid)
        return {
            "job_id": job_id,
            "status": job.status,
            "total_articles_scraped": job.total_articles_scraped,
            "total_errors": job.total_errors,
        }
    finally:
        await engine.dispose()


async def _mark_job_failed(
    job_id: str,
    error_message: str,
    *,
    database_url: str | None = None,
) -> None:
    """Move a job to ``failed`` unless it already reached a terminal state."""
    engine = build_engine(database_url or get_settings().database_url)
    try:
        repo = ScrapingRepository(build_session_factory(engine))
        await repo.transition_job(
            uuid.UUID(job_id), JobStatus.FAILED, error_message=error_message
        )
    except (InvalidJobTransitionError, JobNotFoundError) as exc:
        logger.info("scraper: job %s not marked failed: %s", job_id, exc)
    finally:
        await engine.dispose()


# ---------------------------------------------------------------------------
# Celery tasks
# ---------------------------------------------------------------------------


@celery_app.task(
    name="veritas_scraper.scraper.tasks.run_scraping_job_task",
    bind=True,
    acks_late=True,
    max_retries=0,
    soft_time_limit=7_200,   # 2 hours
    time_limit=10_800,       # 3 hours
)
def run_scraping_job_task(self: Any, job_id: str) -> dict[str, Any]:
    """Execute a scraping job.

    Runs the async orchestrator via ``asyncio.run()``.  No auto-retry; a job
    is never left ``in-progress``: any unexpected error moves it to
    ``failed`` before the exception is re-raised.

    Args:
        job_id: UUID string of the ScrapingJob to execute.

    Returns:
        Dict with ``job_id``, final ``status`` and counters.
    """
    logger.info("scraper: run_scraping_job_task started for job=%s", job_id)
    try:
        result = asyncio.run(_run_scraping_job(job_id, self.request.id))
    except Exception as exc:
        logger.error("scraper: run_scraping_job_task failed for job=%s: %s", job_id, exc)
        asyncio.run(_mark_job_failed(job_id, f"{type(exc).__name__}: {exc}"))
        raise

    logger.info(
        "scraper: job %s finished with status %s", job_id, result["status"]
    )
    return result
