"""Scraping job execution.

One job visits N sources and up to M articles per source:

- Sources run concurrently under an ``asyncio.Semaphore`` sized by
  ``scraper_worker_pool_size``; sources that were unhealthy when the job
  started are scheduled last.  Every source starts the job with an empty
  failure streak; the replayed history only feeds the success-rate floor.
- Within a source, article fetches are strictly sequential and separated by
  the source's ``delay_between_requests_ms``.
- Cancellation is cooperative: the token is checked before each source and
  before each article, never in the middle of a fetch.
- After every failed fetch the source's health is re-checked; once it is
  unhealthy the remaining candidates are skipped without a request.
- Every write to the job goes through the job's
  :class:`~veritas_scraper.scraper.accumulator.JobAccumulator`.

Article and source failures are recovered locally and surface only as log
entries and counters.  Anything else escaping :meth:`JobOrchestrator.run_job`
leaves the job ``failed`` before propagating.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog
from sqlalchemy.exc import DBAPIError

from veritas_scraper.api import metrics
from veritas_scraper.config.settings import Settings, get_settings
from veritas_scraper.core.exceptions import (
    ArticleFetchFailedError,
    ArticleFetchTimeoutError,
    ExtractionEmptyError,
    FeedUnavailableError,
    InvalidJobTransitionError,
    ScraperConfigurationError,
)
from veritas_scraper.core.models import ScrapingJob, Source
from veritas_scraper.core.models.base import utcnow
from veritas_scraper.scraper.accumulator import HealthMessage, JobAccumulator
from veritas_scraper.scraper.config import NoiseFilterConfig
from veritas_scraper.scraper.content_extractor import extract
from veritas_scraper.scraper.dedup import DedupIndex, content_hash
from veritas_scraper.scraper.feed_ingestor import CandidateArticle, FeedIngestor
from veritas_scraper.scraper.health import HealthSnapshot, SourceHealthTracker
from veritas_scraper.scraper.http_fetcher import FetchResult, fetch_url
from veritas_scraper.scraper.job_state import JobStatus, final_status
from veritas_scraper.scraper.log_sink import JobLogSink
from veritas_scraper.scraper.quality import (
    SCRAPED_STATUSES,
    ProcessingStatus,
    processing_status,
)
from veritas_scraper.scraper.repository import (
    DUPLICATE_SKIPPED_EVENT,
    FETCH_ATTEMPT_EVENT,
    ScrapingRepository,
)

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancellationToken:
    """Cooperative cancellation flag.

    ``cancel()`` may be called from anywhere.  When built with *poll*, each
    :meth:`is_cancelled` check also asks the poll function (typically the
    job row's ``cancel_requested`` flag) and latches a positive answer.
    """

    def __init__(self, poll: Callable[[], Awaitable[bool]] | None = None) -> None:
        self._cancelled = False
        self._poll = poll

    def cancel(self) -> None:
        self._cancelled = True

    async def is_cancelled(self) -> bool:
        if not self._cancelled and self._poll is not None and await self._poll():
            self._cancelled = True
        return self._cancelled


# ---------------------------------------------------------------------------
# Per-job context
# ---------------------------------------------------------------------------


@dataclass
class _JobContext:
    job: ScrapingJob
    sink: JobLogSink
    accumulator: JobAccumulator
    dedup: DedupIndex
    token: CancellationToken
    robots_cache: dict[str, Any] = field(default_factory=dict)
    attempts: dict[uuid.UUID, int] = field(default_factory=dict)
    cancel_observed: bool = False

    async def checkpoint(self) -> bool:
        """Return ``True`` when the job must stop; latches the observation.

        Raises:
            ScraperConfigurationError: The job store became unreachable.
        """
        if self.accumulator.fatal is not None:
            raise self.accumulator.fatal
        if self.cancel_observed:
            return True
        if await self.token.is_cancelled():
            self.cancel_observed = True
            self.sink.warning(
                "Cancellation observed; stopping at checkpoint",
                event_type="lifecycle",
                event_name="cancellation_observed",
            )
        return self.cancel_observed


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class JobOrchestrator:
    """Runs scraping jobs.

    Args:
        repository: Data access; the orchestrator never issues SQL itself.
        client: Shared HTTP client for feeds, robots.txt and articles.
        settings: Application settings; defaults to :func:`get_settings`.
        health_tracker: Tracker to use; built from settings when omitted.
        sleep: Awaitable sleep used for politeness delays and feed backoff.
    """

    def __init__(
        self,
        repository: ScrapingRepository,
        client: httpx.AsyncClient,
        *,
        settings: Settings | None = None,
        health_tracker: SourceHealthTracker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self.repo = repository
        self.client = client
        self.health = health_tracker or SourceHealthTracker.from_settings(self.settings)
        self.noise = NoiseFilterConfig.from_settings(self.settings)
        self._sleep = sleep
        self.ingestor = FeedIngestor(
            client,
            timeout_seconds=self.settings.scraper_feed_timeout_seconds,
            max_attempts=self.settings.scraper_feed_max_attempts,
            backoff_seconds=self.settings.scraper_feed_backoff_seconds,
            default_user_agent=self.settings.scraper_default_user_agent,
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    async def run_job(
        self,
        job_id: uuid.UUID,
        cancel_token: CancellationToken | None = None,
    ) -> ScrapingJob:
        """Execute a ``new`` job to a terminal state.

        Args:
            job_id: The job to run.
            cancel_token: Cancellation token; defaults to one that polls the
                job's ``cancel_requested`` flag.

        Returns:
            The job row in its terminal state.

        Raises:
            JobNotFoundError: The job does not exist.
            InvalidJobTransitionError: The job is not ``new``.
            ScraperConfigurationError: The job store became unreachable
                mid-run; the job is left ``failed``.
        """
        token = cancel_token or CancellationToken(
            poll=lambda: self.repo.is_cancel_requested(job_id)
        )
        with structlog.contextvars.bound_contextvars(job_id=str(job_id)):
            job = await self.repo.transition_job(job_id, JobStatus.IN_PROGRESS)
            logger.info("scraping_job_started", sources=len(job.sources_requested))

            accumulator = JobAccumulator(self.repo, job_id)
            accumulator.start()
            sink = JobLogSink(job_id, accumulator)
            try:
                return await self._execute(job, sink, accumulator, token)
            except Exception as exc:
                await accumulator.close(raise_fatal=False)
                await self._fail_job(job_id, exc)
                raise

    async def _execute(
        self,
        job: ScrapingJob,
        sink: JobLogSink,
        accumulator: JobAccumulator,
        token: CancellationToken,
    ) -> ScrapingJob:
        source_ids = [uuid.UUID(s) for s in job.sources_requested]
        sources = await self.repo.get_sources(source_ids)
        sink.info(
            "Job started",
            event_type="lifecycle",
            event_name="job_started",
            transition={"from": JobStatus.NEW.value, "to": JobStatus.IN_PROGRESS.value},
            sources=[s.name for s in sources],
            articles_per_source=job.articles_per_source,
        )

        found = {s.id for s in sources}
        for missing in (i for i in source_ids if i not in found):
            sink.error(
                f"Requested source {missing} no longer exists",
                event_type="source",
                event_name="source_not_found",
                error={"type": "source_not_found", "message": str(missing)},
            )

        urls, hashes = await self.repo.known_urls_and_hashes(found)
        ctx = _JobContext(
            job=job,
            sink=sink,
            accumulator=accumulator,
            dedup=DedupIndex(urls, hashes),
            token=token,
        )

        ordered = await self._schedule(ctx, sources)
        semaphore = asyncio.Semaphore(self.settings.scraper_worker_pool_size)
        tasks = [
            asyncio.create_task(self._run_source_slot(ctx, s, semaphore)) for s in ordered
        ]
        try:
            await asyncio.gather(*tasks)
        except Exception:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return await self._finish(ctx)

    async def _finish(self, ctx: _JobContext) -> ScrapingJob:
        await ctx.accumulator.flush()
        current = await self.repo.get_job(ctx.job.id)
        status = final_status(
            cancelled=ctx.cancel_observed,
            scraped=current.total_articles_scraped,
            errors=current.total_errors,
        )
        ctx.sink.info(
            f"Job finished with status {status.value}",
            event_type="lifecycle",
            event_name="job_completed",
            transition={"from": JobStatus.IN_PROGRESS.value, "to": status.value},
            counters={
                "scraped": current.total_articles_scraped,
                "errors": current.total_errors,
            },
        )
        counters = await ctx.accumulator.close()
        error_message = None
        if counters.write_failures:
            error_message = f"{counters.write_failures} job write(s) failed"
        job = await self.repo.transition_job(ctx.job.id, status, error_message=error_message)
        metrics.scraping_jobs_total.labels(status=status.value).inc()
        logger.info(
            "scraping_job_finished",
            status=status.value,
            scraped=job.total_articles_scraped,
            errors=job.total_errors,
        )
        return job

    async def _fail_job(self, job_id: uuid.UUID, exc: Exception) -> None:
        logger.error("scraping_job_crashed", error=str(exc), exc_info=True)
        try:
            await self.repo.transition_job(
                job_id, JobStatus.FAILED, error_message=f"{type(exc).__name__}: {exc}"
            )
            metrics.scraping_jobs_total.labels(status=JobStatus.FAILED.value).inc()
        except InvalidJobTransitionError:
            pass
        except DBAPIError as db_exc:
            logger.error("scraping_job_failure_not_recorded", error=str(db_exc))

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _schedule(self, ctx: _JobContext, sources: list[Source]) -> list[Source]:
        """Seed health from history; put sources unhealthy at start last.

        The replayed window keeps feeding the success-rate floor, but the
        failure streak always starts at zero: fast-fail counts only
        consecutive failures within this job.
        """
        healthy: list[Source] = []
        deferred: list[Source] = []
        for source in sources:
            history = await self.repo.fetch_attempt_history(
                source.id, self.health.window_size
            )
            snapshot = self.health.replay(source.id, history)
            self.health.reset_streak(source.id)
            if snapshot.is_healthy:
                healthy.append(source)
                continue
            deferred.append(source)
            ctx.sink.warning(
                f"Source {source.name} is unhealthy; scheduled last",
                source_id=source.id,
                event_type="source",
                event_name="source_deprioritized",
                health=_health_payload(snapshot),
            )
        return healthy + deferred

    async def _run_source_slot(
        self,
        ctx: _JobContext,
        source: Source,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            if await ctx.checkpoint():
                return
            with structlog.contextvars.bound_contextvars(source_id=str(source.id)):
                try:
                    await self._run_source(ctx, source)
                except (ScraperConfigurationError, DBAPIError):
                    raise
                except Exception as exc:  # noqa: BLE001
                    logger.error("source_worker_crashed", error=str(exc), exc_info=True)
                    ctx.sink.error(
                        f"Unexpected error while processing {source.name}: {exc}",
                        source_id=source.id,
                        event_type="source",
                        event_name="source_crashed",
                        error={"type": type(exc).__name__, "message": str(exc)},
                    )

    # ------------------------------------------------------------------
    # Per-source loop
    # ------------------------------------------------------------------

    async def _run_source(self, ctx: _JobContext, source: Source) -> None:
        sink = ctx.sink
        sink.info(
            f"Processing source {source.name}",
            source_id=source.id,
            event_type="source",
            event_name="source_started",
            url=source.rss_url,
        )
        try:
            candidates = await self.ingestor.fetch_candidates(
                source, ctx.job.articles_per_source, ctx.dedup, sink
            )
        except FeedUnavailableError as exc:
            sink.exception(exc, source_id=source.id, event_type="source")
            return

        sink.info(
            f"Found {len(candidates)} new candidate(s) for {source.name}",
            source_id=source.id,
            event_type="source",
            event_name="rss_parsed",
            candidates=len(candidates),
        )

        delay = max(source.delay_between_requests_ms or 0, 0) / 1000
        for index, candidate in enumerate(candidates):
            if index and delay:
                await self._sleep(delay)
            if await ctx.checkpoint():
                return
            succeeded = await self._process_article(ctx, source, candidate)
            if not succeeded and not self.health.is_healthy(source.id):
                remaining = candidates[index + 1 :]
                if remaining:
                    sink.warning(
                        f"Source {source.name} unhealthy after "
                        f"{self.health.consecutive_failures(source.id)} consecutive "
                        f"failure(s); skipping {len(remaining)} candidate(s)",
                        source_id=source.id,
                        event_type="source",
                        event_name="source_fast_fail",
                        skipped_urls=[c.url for c in remaining],
                    )
                return

        sink.info(
            f"Finished source {source.name}",
            source_id=source.id,
            event_type="source",
            event_name="source_completed",
        )

    async def _process_article(
        self,
        ctx: _JobContext,
        source: Source,
        candidate: CandidateArticle,
    ) -> bool:
        """Fetch, extract and store one article.

        Returns ``False`` only when the fetch itself failed, which is what
        feeds the source's health.
        """
        sink = ctx.sink
        if not await ctx.dedup.claim_url(candidate.url):
            sink.info(
                f"Skipping already processed URL {candidate.url}",
                source_id=source.id,
                event_type="article",
                event_name=DUPLICATE_SKIPPED_EVENT,
                url=candidate.url,
                reason="url",
            )
            return True

        timeout = max(source.timeout_ms or 0, 1) / 1000
        result = await fetch_url(
            candidate.url,
            client=self.client,
            timeout=timeout,
            user_agent=source.user_agent or self.settings.scraper_default_user_agent,
            respect_robots=bool(source.respect_robots_txt),
            robots_cache=ctx.robots_cache,
        )

        if result.robots_disallowed:
            sink.warning(
                f"robots.txt disallows {candidate.url}",
                source_id=source.id,
                event_type="http",
                event_name="robots_disallowed",
                url=candidate.url,
            )
            return True
        if result.skipped:
            sink.warning(
                f"Skipping non-HTML resource {candidate.url}",
                source_id=source.id,
                event_type="http",
                event_name="content_skipped",
                url=candidate.url,
                reason=result.error,
            )
            return True

        if not result.ok:
            self._record_fetch_failure(ctx, source, candidate, result, timeout)
            return False

        self._record_fetch_success(ctx, source, candidate, result)
        await self._extract_and_store(ctx, source, candidate, result)
        return True

    def _record_fetch_failure(
        self,
        ctx: _JobContext,
        source: Source,
        candidate: CandidateArticle,
        result: FetchResult,
        timeout: float,
    ) -> None:
        if result.timed_out:
            exc: ArticleFetchFailedError = ArticleFetchTimeoutError(
                candidate.url, timeout, result.elapsed_ms
            )
            outcome = "timeout"
        else:
            exc = ArticleFetchFailedError(
                candidate.url, result.error or "unknown error", result.status_code, result.elapsed_ms
            )
            outcome = "error"
        metrics.article_fetch_duration_seconds.labels(outcome=outcome).observe(
            result.elapsed_ms / 1000
        )
        ctx.attempts[source.id] = ctx.attempts.get(source.id, 0) + 1
        snapshot = self.health.record_attempt(source.id, False, result.elapsed_ms)
        ctx.sink.exception(
            exc,
            source_id=source.id,
            event_type="http",
            event_name=FETCH_ATTEMPT_EVENT,
            success=False,
        )
        self._persist_health(ctx, source, snapshot)

    def _record_fetch_success(
        self,
        ctx: _JobContext,
        source: Source,
        candidate: CandidateArticle,
        result: FetchResult,
    ) -> None:
        metrics.article_fetch_duration_seconds.labels(outcome="success").observe(
            result.elapsed_ms / 1000
        )
        ctx.attempts[source.id] = ctx.attempts.get(source.id, 0) + 1
        snapshot = self.health.record_attempt(source.id, True, result.elapsed_ms)
        ctx.sink.info(
            f"Fetched {candidate.url} ({result.status_code}) in {result.elapsed_ms:.0f}ms",
            source_id=source.id,
            event_type="http",
            event_name=FETCH_ATTEMPT_EVENT,
            success=True,
            http={
                "url": candidate.url,
                "final_url": result.final_url,
                "status": result.status_code,
                "response_ms": result.elapsed_ms,
            },
        )
        self._persist_health(ctx, source, snapshot)

    def _persist_health(
        self, ctx: _JobContext, source: Source, snapshot: HealthSnapshot
    ) -> None:
        ctx.accumulator.post(
            HealthMessage(
                source_id=source.id,
                values={
                    "success_rate": snapshot.success_rate,
                    "avg_response_time_ms": snapshot.avg_response_time_ms,
                    "consecutive_failures": snapshot.consecutive_failures,
                    "is_healthy": snapshot.is_healthy,
                    "total_attempts": (source.total_attempts or 0)
                    + ctx.attempts.get(source.id, 0),
                    "last_scraped_at": utcnow(),
                },
            )
        )
        metrics.source_health_status.labels(source=source.name).set(
            1 if snapshot.is_healthy else 0
        )

    async def _extract_and_store(
        self,
        ctx: _JobContext,
        source: Source,
        candidate: CandidateArticle,
        result: FetchResult,
    ) -> None:
        sink = ctx.sink
        extraction = extract(
            result.html or "",
            candidate.url,
            title_hint=candidate.title_hint,
            date_hint=candidate.date_hint,
            noise_config=self.noise,
        )
        body = extraction.body
        status = processing_status(
            body, extraction.quality_score, self.settings.scraper_quality_threshold
        )
        sink.info(
            f"Extracted {len(extraction.paragraphs)} paragraph(s) from {candidate.url}",
            source_id=source.id,
            event_type="extraction",
            event_name="extraction_traces",
            url=candidate.url,
            extraction={
                "quality_score": extraction.quality_score,
                "processing_status": status.value,
                "body_strategy": extraction.body_strategy,
                "paragraphs": len(extraction.paragraphs),
                "content_length": len(body),
                "dropped_paragraphs": extraction.dropped_paragraphs,
                "language": extraction.language,
            },
            traces=extraction.trace_payload(),
        )

        content = {
            "source_id": source.id,
            "source_url": candidate.url,
            "title": extraction.title,
            "author": extraction.author,
            "publication_date": extraction.publication_date,
            "content": body,
            "language": extraction.language,
            "processing_status": status.value,
            "quality_score": extraction.quality_score,
            "content_hash": None,
            "extraction_strategy": extraction.body_strategy,
        }

        if status is ProcessingStatus.FAILED:
            exc = ExtractionEmptyError(candidate.url, extraction.quality_score)
            sink.article(
                content,
                level="error",
                message=str(exc),
                source_id=source.id,
                event_name=exc.error_type,
                counts_as_scraped=False,
                counts_as_error=True,
                **exc.to_log_payload(),
            )
            metrics.scraped_articles_total.labels(processing_status=status.value).inc()
            return

        digest = content_hash(extraction.title, body)
        if not await ctx.dedup.claim_hash(digest):
            sink.info(
                f"Skipping duplicate content from {candidate.url}",
                source_id=source.id,
                event_type="article",
                event_name=DUPLICATE_SKIPPED_EVENT,
                url=candidate.url,
                reason="content_hash",
                content_hash=digest,
            )
            return

        content["content_hash"] = digest
        sink.article(
            content,
            level="info",
            message=f"Stored article '{extraction.title or candidate.url}'",
            source_id=source.id,
            event_name="article_stored",
            counts_as_scraped=status in SCRAPED_STATUSES,
            url=candidate.url,
            quality_score=extraction.quality_score,
            processing_status=status.value,
            content_hash=digest,
        )
        metrics.scraped_articles_total.labels(processing_status=status.value).inc()


def _health_payload(snapshot: HealthSnapshot) -> dict[str, Any]:
    return {
        "success_rate": snapshot.success_rate,
        "avg_response_time_ms": snapshot.avg_response_time_ms,
        "consecutive_failures": snapshot.consecutive_failures,
        "is_healthy": snapshot.is_healthy,
        "window_attempts": snapshot.window_attempts,
    }
