"""Data access for sources, scraping jobs, scraped content and job logs.

:class:`ScrapingRepository` is the only place in the scraper that issues
SQL.  It either owns an ``async_sessionmaker`` (orchestrator, Celery task)
and opens one short-lived session per call, or is bound to a request-scoped
session (FastAPI routes).  Every write method commits exactly once, so an
article insert and its counter increment land in the same transaction.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from veritas_scraper.core.exceptions import JobNotFoundError, UnknownSourceError
from veritas_scraper.core.models import ScrapedContent, ScrapingJob, ScrapingLog, Source
from veritas_scraper.core.models.base import utcnow
from veritas_scraper.scraper.job_state import JobStatus, ensure_transition

#: ``event_name`` of the log entry written for every article fetch attempt.
FETCH_ATTEMPT_EVENT = "article_fetch"

#: ``event_name`` of the log entry written when a candidate is skipped as a
#: content duplicate.
DUPLICATE_SKIPPED_EVENT = "duplicate_skipped"


class ScrapingRepository:
    """Async data access for the scraper.

    Args:
        session_factory: Factory used to open one session per call.
        session: Request-scoped session to reuse instead of a factory.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        *,
        session: AsyncSession | None = None,
    ) -> None:
        if (session_factory is None) == (session is None):
            raise ValueError("Provide exactly one of session_factory or session")
        self._factory = session_factory
        self._bound = session

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        if self._bound is not None:
            yield self._bound
            return
        async with self._factory() as session:
            yield session

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def create_source(self, **fields: Any) -> Source:
        """Insert a source row (admin action; also used by tests)."""
        async with self._session() as session:
            source = Source(**fields)
            session.add(source)
            await session.commit()
            await session.refresh(source)
            return source

    async def list_sources(self, *, enabled_only: bool = False) -> list[Source]:
        stmt = sa.select(Source).order_by(Source.name)
        if enabled_only:
            stmt = stmt.where(Source.is_enabled.is_(True))
        async with self._session() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def get_source(self, source_id: uuid.UUID) -> Source | None:
        async with self._session() as session:
            return await session.get(Source, source_id)

    async def get_sources(self, source_ids: Iterable[uuid.UUID]) -> list[Source]:
        """Return sources for *source_ids*, preserving the requested order."""
        ids = list(source_ids)
        if not ids:
            return []
        async with self._session() as session:
            rows = (
                await session.execute(sa.select(Source).where(Source.id.in_(ids)))
            ).scalars().all()
        by_id = {row.id: row for row in rows}
        return [by_id[i] for i in ids if i in by_id]

    async def resolve_sources(self, identifiers: Sequence[str]) -> list[Source]:
        """Resolve source names or UUID strings to enabled sources.

        Raises:
            UnknownSourceError: If any identifier matches no enabled source.
        """
        sources = await self.list_sources(enabled_only=True)
        by_name = {s.name.lower(): s for s in sources}
        by_id = {str(s.id): s for s in sources}

        resolved: list[Source] = []
        unknown: list[str] = []
        for ident in identifiers:
            key = ident.strip()
            source = by_id.get(key.lower()) or by_name.get(key.lower())
            if source is None:
                unknown.append(ident)
            elif source not in resolved:
                resolved.append(source)
        if unknown:
            raise UnknownSourceError(unknown)
        return resolved

    async def update_source_health(
        self,
        source_id: uuid.UUID,
        *,
        success_rate: float,
        avg_response_time_ms: float | None,
        consecutive_failures: int,
        is_healthy: bool,
        total_attempts: int,
        last_scraped_at: datetime | None,
    ) -> None:
        values: dict[str, Any] = {
            "success_rate": success_rate,
            "avg_response_time_ms": avg_response_time_ms,
            "consecutive_failures": consecutive_failures,
            "is_healthy": is_healthy,
            "total_attempts": total_attempts,
        }
        if last_scraped_at is not None:
            values["last_scraped_at"] = last_scraped_at
        async with self._session() as session:
            await session.execute(
                sa.update(Source).where(Source.id == source_id).values(**values)
            )
            await session.commit()

    async def fetch_attempt_history(
        self, source_id: uuid.UUID, limit: int
    ) -> list[tuple[bool, float | None]]:
        """Return the last *limit* fetch attempts of a source, oldest first."""
        stmt = (
            sa.select(ScrapingLog.additional_data)
            .where(
                ScrapingLog.source_id == source_id,
                ScrapingLog.event_name == FETCH_ATTEMPT_EVENT,
            )
            .order_by(ScrapingLog.timestamp.desc())
            .limit(limit)
        )
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        history: list[tuple[bool, float | None]] = []
        for data in reversed(rows):
            data = data or {}
            http = data.get("http") or {}
            history.append((bool(data.get("success")), http.get("response_ms")))
        return history

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def create_job(
        self, source_ids: Sequence[uuid.UUID], articles_per_source: int
    ) -> ScrapingJob:
        async with self._session() as session:
            job = ScrapingJob(
                sources_requested=[str(s) for s in source_ids],
                articles_per_source=articles_per_source,
                status=JobStatus.NEW.value,
            )
            session.add(job)
            await session.commit()
            await session.refresh(job)
            return job

    async def get_job(self, job_id: uuid.UUID) -> ScrapingJob:
        """Return a job.

        Raises:
            JobNotFoundError: If no job has this ID.
        """
        async with self._session() as session:
            job = await session.get(ScrapingJob, job_id, populate_existing=True)
        if job is None:
            raise JobNotFoundError(str(job_id))
        return job

    async def list_jobs(
        self,
        *,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ScrapingJob]:
        stmt = sa.select(ScrapingJob).order_by(ScrapingJob.triggered_at.desc())
        if status:
            stmt = stmt.where(ScrapingJob.status == status)
        stmt = stmt.limit(limit).offset(offset)
        async with self._session() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def set_celery_task_id(self, job_id: uuid.UUID, task_id: str) -> None:
        async with self._session() as session:
            await session.execute(
                sa.update(ScrapingJob)
                .where(ScrapingJob.id == job_id)
                .values(celery_task_id=task_id)
            )
            await session.commit()

    async def transition_job(
        self,
        job_id: uuid.UUID,
        target: JobStatus,
        *,
        error_message: str | None = None,
    ) -> ScrapingJob:
        """Move a job to *target*, enforcing the lifecycle state machine.

        Sets ``started_at`` on entering ``in-progress`` and ``completed_at``
        on entering a terminal state.

        Raises:
            JobNotFoundError: If no job has this ID.
            InvalidJobTransitionError: If the transition is not allowed.
        """
        async with self._session() as session:
            job = (
                await session.execute(
                    sa.select(ScrapingJob)
                    .where(ScrapingJob.id == job_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
            ).scalar_one_or_none()
            if job is None:
                raise JobNotFoundError(str(job_id))
            status = ensure_transition(job.status, target)
            job.status = status.value
            if status is JobStatus.IN_PROGRESS:
                job.started_at = utcnow()
            if status.is_terminal:
                job.completed_at = utcnow()
            if error_message is not None:
                job.error_message = error_message
            await session.commit()
            await session.refresh(job)
            return job

    async def request_cancel(self, job_id: uuid.UUID) -> ScrapingJob:
        """Set the cooperative cancellation flag.

        Raises:
            JobNotFoundError: If no job has this ID.
            InvalidJobTransitionError: If the job is already terminal.
        """
        async with self._session() as session:
            job = await session.get(ScrapingJob, job_id, populate_existing=True)
            if job is None:
                raise JobNotFoundError(str(job_id))
            current = JobStatus(job.status)
            if current.is_terminal:
                ensure_transition(current, JobStatus.CANCELLED)
            job.cancel_requested = True
            await session.commit()
            await session.refresh(job)
            return job

    async def is_cancel_requested(self, job_id: uuid.UUID) -> bool:
        async with self._session() as session:
            flag = (
                await session.execute(
                    sa.select(ScrapingJob.cancel_requested).where(ScrapingJob.id == job_id)
                )
            ).scalar_one_or_none()
        return bool(flag)

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    async def known_urls_and_hashes(
        self, source_ids: Iterable[uuid.UUID] | None = None
    ) -> tuple[list[str], list[str]]:
        """Return already-processed article URLs and content hashes.

        Covers stored articles plus candidates an earlier job skipped as
        content duplicates, which are recorded only in the job log.
        """
        stmt = sa.select(ScrapedContent.source_url, ScrapedContent.content_hash)
        skipped = sa.select(ScrapingLog.additional_data).where(
            ScrapingLog.event_name == DUPLICATE_SKIPPED_EVENT
        )
        ids = list(source_ids) if source_ids is not None else None
        if ids is not None:
            stmt = stmt.where(ScrapedContent.source_id.in_(ids))
            skipped = skipped.where(ScrapingLog.source_id.in_(ids))
        async with self._session() as session:
            rows = (await session.execute(stmt)).all()
            skipped_rows = (await session.execute(skipped)).scalars().all()
        urls = [row.source_url for row in rows]
        hashes = [row.content_hash for row in rows if row.content_hash]
        for data in skipped_rows:
            data = data or {}
            if data.get("url"):
                urls.append(data["url"])
            if data.get("content_hash"):
                hashes.append(data["content_hash"])
        return urls, hashes

    async def store_article(
        self,
        job_id: uuid.UUID,
        content: dict[str, Any],
        log: dict[str, Any],
        *,
        counts_as_scraped: bool,
        counts_as_error: bool = False,
    ) -> uuid.UUID:
        """Insert a scraped item and its log entry, bumping job counters.

        All three writes share one transaction.
        """
        async with self._session() as session:
            item = ScrapedContent(job_id=job_id, **content)
            session.add(item)
            session.add(ScrapingLog(job_id=job_id, counts_as_error=counts_as_error, **log))
            increments: dict[str, Any] = {}
            if counts_as_scraped:
                increments["total_articles_scraped"] = ScrapingJob.total_articles_scraped + 1
            if counts_as_error:
                increments["total_errors"] = ScrapingJob.total_errors + 1
            if increments:
                await session.execute(
                    sa.update(ScrapingJob).where(ScrapingJob.id == job_id).values(**increments)
                )
            await session.commit()
            return item.id

    async def list_content(self, job_id: uuid.UUID) -> list[ScrapedContent]:
        stmt = (
            sa.select(ScrapedContent)
            .where(ScrapedContent.job_id == job_id)
            .order_by(ScrapedContent.created_at)
        )
        async with self._session() as session:
            return list((await session.execute(stmt)).scalars().all())

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    async def append_log(self, job_id: uuid.UUID, **fields: Any) -> None:
        """Append a log entry; an error entry also bumps ``total_errors``."""
        counts_as_error = bool(fields.pop("counts_as_error", False))
        async with self._session() as session:
            session.add(ScrapingLog(job_id=job_id, counts_as_error=counts_as_error, **fields))
            if counts_as_error:
                await session.execute(
                    sa.update(ScrapingJob)
                    .where(ScrapingJob.id == job_id)
                    .values(total_errors=ScrapingJob.total_errors + 1)
                )
            await session.commit()

    async def list_logs(
        self,
        job_id: uuid.UUID,
        *,
        level: str | None = None,
        event_type: str | None = None,
        source_id: uuid.UUID | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ScrapingLog]:
        """Return a job's log entries in timestamp order, optionally filtered."""
        stmt = (
            sa.select(ScrapingLog)
            .where(ScrapingLog.job_id == job_id)
            .order_by(ScrapingLog.timestamp, ScrapingLog.id)
        )
        if level:
            stmt = stmt.where(ScrapingLog.log_level == level)
        if event_type:
            stmt = stmt.where(ScrapingLog.event_type == event_type)
        if source_id is not None:
            stmt = stmt.where(ScrapingLog.source_id == source_id)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session() as session:
            return list((await session.execute(stmt)).scalars().all())
