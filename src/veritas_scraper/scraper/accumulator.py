"""Single-writer persistence queue for one scraping job.

Source workers never touch the job row directly.  They post messages to a
:class:`JobAccumulator`, whose consumer task applies them one at a time
through the repository, so counter increments cannot race and log entries
are persisted in the order they were posted.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.exc import DBAPIError

from veritas_scraper.core.exceptions import ScraperConfigurationError
from veritas_scraper.scraper.repository import ScrapingRepository

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass
class LogMessage:
    """Append a log entry.  ``counts_as_error`` entries bump ``total_errors``."""

    fields: dict[str, Any]
    counts_as_error: bool = False


@dataclass
class ArticleMessage:
    """Store a scraped item together with its log entry."""

    content: dict[str, Any]
    log: dict[str, Any]
    counts_as_scraped: bool
    counts_as_error: bool = False


@dataclass
class HealthMessage:
    """Persist a source's derived health metrics."""

    source_id: uuid.UUID
    values: dict[str, Any]


@dataclass
class _Stop:
    pass


@dataclass
class JobCounters:
    """Counters as applied by the accumulator (mirrors the job row)."""

    scraped: int = 0
    errors: int = 0
    write_failures: int = 0
    by_status: dict[str, int] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Accumulator
# ---------------------------------------------------------------------------


class JobAccumulator:
    """Owns every write to one job's rows while the job runs.

    Usage::

        accumulator = JobAccumulator(repo, job_id)
        accumulator.start()
        accumulator.post(LogMessage({...}))
        counters = await accumulator.close()
    """

    def __init__(self, repository: ScrapingRepository, job_id: uuid.UUID) -> None:
        self._repo = repository
        self._job_id = job_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self.counters = JobCounters()
        self.fatal: ScraperConfigurationError | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._consume(), name=f"job-accumulator-{self._job_id}")

    def post(self, message: LogMessage | ArticleMessage | HealthMessage) -> None:
        """Queue a message; never blocks."""
        self._queue.put_nowait(message)

    async def flush(self) -> None:
        """Wait until every message posted so far has been applied.

        Raises:
            ScraperConfigurationError: The job store became unreachable.
        """
        await self._queue.join()
        if self.fatal is not None:
            raise self.fatal

    async def close(self, *, raise_fatal: bool = True) -> JobCounters:
        """Apply the remaining messages, stop the consumer, return counters.

        Args:
            raise_fatal: Re-raise a job store failure seen by the consumer.
                Pass ``False`` when the job is already being failed.

        Raises:
            ScraperConfigurationError: The job store became unreachable.
        """
        if self._task is not None:
            self._queue.put_nowait(_Stop())
            await self._task
            self._task = None
        if raise_fatal and self.fatal is not None:
            raise self.fatal
        return self.counters

    async def _consume(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                if isinstance(message, _Stop):
                    return
                if self.fatal is None:
                    await self._apply(message)
            except DBAPIError as exc:
                # Database unreachable or rejecting writes: later messages are dropped.
                self.fatal = ScraperConfigurationError(f"Job store unavailable: {exc}")
                logger.error(
                    "job_accumulator_store_unavailable",
                    job_id=str(self._job_id),
                    message_type=type(message).__name__,
                    error=str(exc),
                )
            except Exception as exc:  # noqa: BLE001
                self.counters.write_failures += 1
                logger.error(
                    "job_accumulator_write_failed",
                    job_id=str(self._job_id),
                    message_type=type(message).__name__,
                    error=str(exc),
                )
            finally:
                self._queue.task_done()

    async def _apply(self, message: LogMessage | ArticleMessage | HealthMessage) -> None:
        if isinstance(message, LogMessage):
            await self._repo.append_log(
                self._job_id, counts_as_error=message.counts_as_error, **message.fields
            )
            if message.counts_as_error:
                self.counters.errors += 1
        elif isinstance(message, ArticleMessage):
            await self._repo.store_article(
                self._job_id,
                message.content,
                message.log,
                counts_as_scraped=message.counts_as_scraped,
                counts_as_error=message.counts_as_error,
            )
            status = message.content.get("processing_status", "unknown")
            self.counters.by_status[status] = self.counters.by_status.get(status, 0) + 1
            if message.counts_as_scraped:
                self.counters.scraped += 1
            if message.counts_as_error:
                self.counters.errors += 1
        elif isinstance(message, HealthMessage):
            await self._repo.update_source_health(message.source_id, **message.values)
