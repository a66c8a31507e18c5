"""Application-wide exception hierarchy for the Veritas scraper.

All custom exceptions subclass ``VeritasScraperError``, enabling
consistent error handling and structured logging across the application.

Hierarchy::

    VeritasScraperError
    ├── FeedUnavailableError            (source-level, non-fatal)
    ├── ArticleFetchFailedError         (article-level)
    │   └── ArticleFetchTimeoutError
    ├── ExtractionEmptyError            (article-level; item still stored)
    ├── InvalidJobTransitionError
    ├── JobNotFoundError
    ├── UnknownSourceError
    └── ScraperConfigurationError       (the only job-aborting error)

Scraper errors expose ``to_log_payload()``, the machine-readable dict
attached to the ``scraping_logs`` entry that records them.
"""

from __future__ import annotations

from typing import Any


class VeritasScraperError(Exception):
    """Base class for all Veritas scraper exceptions."""

    error_type: str = "scraper_error"

    def to_log_payload(self) -> dict[str, Any]:
        """Return the diagnostic payload stored with the log entry."""
        return {"error": {"type": self.error_type, "message": str(self)}}


# ---------------------------------------------------------------------------
# Fetch / extraction errors
# ---------------------------------------------------------------------------


class FeedUnavailableError(VeritasScraperError):
    """Raised when a source's RSS/Atom feed cannot be fetched or parsed.

    Reported to the orchestrator as a source-level error: the source is
    skipped for this job run, the job carries on.

    Args:
        source_name: Name of the source whose feed failed.
        feed_url: The feed URL that was requested.
        reason: Human-readable description of the last failure.
        attempts: Number of attempts made before giving up.
    """

    error_type = "feed_unavailable"

    def __init__(
        self,
        source_name: str,
        feed_url: str | None,
        reason: str,
        attempts: int = 1,
    ) -> None:
        super().__init__(
            f"Feed for source '{source_name}' unavailable after {attempts} "
            f"attempt(s): {reason}"
        )
        self.source_name = source_name
        self.feed_url = feed_url
        self.reason = reason
        self.attempts = attempts

    def to_log_payload(self) -> dict[str, Any]:
        return {
            "error": {
                "type": self.error_type,
                "message": self.reason,
                "attempts": self.attempts,
            },
            "url": self.feed_url,
        }


class ArticleFetchFailedError(VeritasScraperError):
    """Raised when an article URL returns a non-2xx response or a network error.

    Args:
        url: Article URL.
        reason: Human-readable description of the failure.
        status_code: HTTP status, or ``None`` for network-level failures.
        elapsed_ms: Wall-clock duration of the attempt in milliseconds.
    """

    error_type = "article_fetch_failed"

    def __init__(
        self,
        url: str,
        reason: str,
        status_code: int | None = None,
        elapsed_ms: float | None = None,
    ) -> None:
        super().__init__(f"Fetch failed for {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status_code = status_code
        self.elapsed_ms = elapsed_ms

    def to_log_payload(self) -> dict[str, Any]:
        return {
            "error": {
                "type": self.error_type,
                "message": self.reason,
                "code": self.status_code,
            },
            "http": {
                "url": self.url,
                "status": self.status_code,
                "response_ms": self.elapsed_ms,
            },
        }


class ArticleFetchTimeoutError(ArticleFetchFailedError):
    """Raised when an article request exceeds its per-request timeout.

    Args:
        url: Article URL.
        timeout_seconds: The timeout that was exceeded.
        elapsed_ms: Wall-clock duration of the attempt in milliseconds.
    """

    error_type = "article_fetch_timeout"

    def __init__(
        self,
        url: str,
        timeout_seconds: float,
        elapsed_ms: float | None = None,
    ) -> None:
        super().__init__(
            url,
            reason=f"timed out after {timeout_seconds:g}s",
            status_code=None,
            elapsed_ms=elapsed_ms,
        )
        self.timeout_seconds = timeout_seconds

    def to_log_payload(self) -> dict[str, Any]:
        payload = super().to_log_payload()
        payload["error"]["timeout_seconds"] = self.timeout_seconds
        payload["http"]["timed_out"] = True
        return payload


class ExtractionEmptyError(VeritasScraperError):
    """Raised when body extraction produced nothing usable.

    The item is still stored with ``failed`` processing status so operators
    can see what was attempted.

    Args:
        url: Article URL.
        quality_score: Score of the (empty) extraction result.
    """

    error_type = "extraction_empty"

    def __init__(self, url: str, quality_score: int = 0) -> None:
        super().__init__(f"No article body could be extracted from {url}")
        self.url = url
        self.quality_score = quality_score

    def to_log_payload(self) -> dict[str, Any]:
        return {
            "error": {"type": self.error_type, "message": str(self)},
            "url": self.url,
            "extraction": {"quality_score": self.quality_score},
        }


# ---------------------------------------------------------------------------
# Job lifecycle errors
# ---------------------------------------------------------------------------


class InvalidJobTransitionError(VeritasScraperError):
    """Raised when a job status change violates the lifecycle state machine.

    Args:
        current: The job's current status.
        target: The requested status.
    """

    error_type = "invalid_job_transition"

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Illegal job transition: {current} -> {target}")
        self.current = current
        self.target = target


class JobNotFoundError(VeritasScraperError):
    """Raised when a scraping job ID does not exist."""

    error_type = "job_not_found"

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Scraping job '{job_id}' not found")
        self.job_id = job_id


class UnknownSourceError(VeritasScraperError):
    """Raised when a trigger request names sources that are not configured.

    Args:
        identifiers: The unresolved source names or IDs.
    """

    error_type = "unknown_source"

    def __init__(self, identifiers: list[str]) -> None:
        super().__init__(f"Unknown source(s): {', '.join(identifiers)}")
        self.identifiers = identifiers


class ScraperConfigurationError(VeritasScraperError):
    """Raised for configuration problems that make a job run impossible.

    Examples: unroutable database, missing source policy.  This is the only
    error class allowed to abort a job run outright; the job is still moved
    to ``failed`` before the error propagates.
    """

    error_type = "configuration_error"
