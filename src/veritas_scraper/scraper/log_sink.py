"""Job-scoped structured log sink.

Every job event is emitted twice: to structlog (bound with ``job_id`` and,
where known, ``source_id``) for process logs, and to the job's
``scraping_logs`` stream through the accumulator for the log query surface.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog

from veritas_scraper.core.exceptions import VeritasScraperError
from veritas_scraper.core.models.base import utcnow
from veritas_scraper.scraper.accumulator import ArticleMessage, JobAccumulator, LogMessage

logger = structlog.get_logger(__name__)


def _jsonable(value: Any) -> Any:
    """Coerce a payload value into something the JSON column accepts."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


class JobLogSink:
    """Leveled log entries attached to one job and optionally a source."""

    def __init__(self, job_id: uuid.UUID, accumulator: JobAccumulator) -> None:
        self.job_id = job_id
        self._accumulator = accumulator
        self._log = logger.bind(job_id=str(job_id))

    def _entry(
        self,
        level: str,
        message: str,
        source_id: uuid.UUID | None,
        event_type: str,
        event_name: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        getattr(self._log, level)(
            event_name,
            source_id=str(source_id) if source_id else None,
            detail=message,
            event_type=event_type,
        )
        return {
            "source_id": source_id,
            "log_level": level,
            "message": message,
            "event_type": event_type,
            "event_name": event_name,
            "additional_data": _jsonable(payload),
            "timestamp": utcnow(),
        }

    def _emit(
        self,
        level: str,
        message: str,
        *,
        source_id: uuid.UUID | None,
        event_type: str,
        event_name: str,
        counts_as_error: bool,
        payload: dict[str, Any],
    ) -> None:
        entry = self._entry(level, message, source_id, event_type, event_name, payload)
        self._accumulator.post(LogMessage(entry, counts_as_error=counts_as_error))

    def info(
        self,
        message: str,
        source_id: uuid.UUID | None = None,
        event_type: str = "lifecycle",
        event_name: str = "info",
        **payload: Any,
    ) -> None:
        self._emit(
            "info",
            message,
            source_id=source_id,
            event_type=event_type,
            event_name=event_name,
            counts_as_error=False,
            payload=payload,
        )

    def warning(
        self,
        message: str,
        source_id: uuid.UUID | None = None,
        event_type: str = "lifecycle",
        event_name: str = "warning",
        **payload: Any,
    ) -> None:
        self._emit(
            "warning",
            message,
            source_id=source_id,
            event_type=event_type,
            event_name=event_name,
            counts_as_error=False,
            payload=payload,
        )

    def error(
        self,
        message: str,
        source_id: uuid.UUID | None = None,
        event_type: str = "error",
        event_name: str = "error",
        counts_as_error: bool = True,
        **payload: Any,
    ) -> None:
        """Log an error; by default it counts towards ``total_errors``."""
        self._emit(
            "error",
            message,
            source_id=source_id,
            event_type=event_type,
            event_name=event_name,
            counts_as_error=counts_as_error,
            payload=payload,
        )

    def exception(
        self,
        exc: VeritasScraperError,
        source_id: uuid.UUID | None = None,
        event_type: str = "error",
        event_name: str | None = None,
        **payload: Any,
    ) -> None:
        """Log a scraper error with its diagnostic payload."""
        self.error(
            str(exc),
            source_id=source_id,
            event_type=event_type,
            event_name=event_name or exc.error_type,
            **{**exc.to_log_payload(), **payload},
        )

    def article(
        self,
        content: dict[str, Any],
        *,
        level: str,
        message: str,
        source_id: uuid.UUID,
        event_name: str,
        counts_as_scraped: bool,
        counts_as_error: bool = False,
        **payload: Any,
    ) -> None:
        """Store a scraped item together with the log entry describing it."""
        entry = self._entry(level, message, source_id, "article", event_name, payload)
        self._accumulator.post(
            ArticleMessage(
                content=content,
                log=entry,
                counts_as_scraped=counts_as_scraped,
                counts_as_error=counts_as_error,
            )
        )
