"""RSS/Atom candidate discovery for one source.

Uses ``httpx`` for fetching and ``feedparser`` for parsing.  A feed is
attempted up to ``max_attempts`` times with exponential backoff
(``backoff_seconds * 2**attempt``); each failed attempt that will be retried
is reported as an ``rss_fetch_retry`` warning on the job log.  Exhausting
the attempts raises :class:`~veritas_scraper.core.exceptions.FeedUnavailableError`.

Candidates whose normalised URL is already in the job's
:class:`~veritas_scraper.scraper.dedup.DedupIndex` are skipped before the
``articles_per_source`` cap is applied, so repeated runs against an
unchanged feed yield no new candidates.
"""

from __future__ import annotations

import asyncio
import calendar
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import feedparser
import httpx

from veritas_scraper.core.exceptions import FeedUnavailableError
from veritas_scraper.scraper.dedup import DedupIndex, normalize_url

if TYPE_CHECKING:
    from veritas_scraper.core.models import Source
    from veritas_scraper.scraper.log_sink import JobLogSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateArticle:
    """An article URL discovered via a feed, not yet fetched.

    Attributes:
        url: Article link as published in the feed.
        title_hint: Feed entry title, used when the page yields none.
        date_hint: Feed entry publication date, used when the page yields none.
    """

    url: str
    title_hint: str | None = None
    date_hint: datetime | None = None


def _entry_datetime(entry: Any) -> datetime | None:
    """Extract a timezone-aware publication datetime from a feedparser entry."""
    pub_struct = getattr(entry, "published_parsed", None) or getattr(
        entry, "updated_parsed", None
    )
    if pub_struct is None:
        return None
    try:
        ts = calendar.timegm(pub_struct)
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _entry_title(entry: Any) -> str | None:
    title = getattr(entry, "title", None)
    if not title:
        return None
    return " ".join(str(title).split()) or None


class FeedIngestor:
    """Fetches a source's feed and turns it into candidate articles.

    Args:
        client: Shared HTTP client.
        timeout_seconds: Per-attempt request timeout.
        max_attempts: Attempts before the feed is reported unavailable.
        backoff_seconds: Base of the exponential backoff between attempts.
        default_user_agent: User-Agent used when a source sets none.
        sleep: Awaitable sleep function; injectable for tests.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        timeout_seconds: float,
        max_attempts: int,
        backoff_seconds: float,
        default_user_agent: str,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._timeout = timeout_seconds
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff_seconds
        self._default_user_agent = default_user_agent
        self._sleep = sleep

    async def fetch_candidates(
        self,
        source: Source,
        limit: int,
        dedup: DedupIndex,
        log_sink: JobLogSink | None = None,
    ) -> list[CandidateArticle]:
        """Return up to *limit* unprocessed candidate articles for *source*.

        Args:
            source: The source whose feed to read.
            limit: The job's articles-per-source target.
            dedup: Job-wide index of already-processed URLs.
            log_sink: Job log for retry warnings; optional.

        Returns:
            Candidates in feed order.

        Raises:
            FeedUnavailableError: The feed could not be fetched or parsed
                after all attempts.
        """
        if not source.rss_url:
            raise FeedUnavailableError(source.name, None, "source has no feed URL", 0)

        feed = await self._fetch_feed(source, log_sink)

        candidates: list[CandidateArticle] = []
        seen: set[str] = set()
        for entry in feed.entries:
            if len(candidates) >= limit:
                break
            link = getattr(entry, "link", None)
            if not link:
                continue
            key = normalize_url(link)
            if key in seen or await dedup.is_known_url(link):
                continue
            seen.add(key)
            candidates.append(
                CandidateArticle(
                    url=link,
                    title_hint=_entry_title(entry),
                    date_hint=_entry_datetime(entry),
                )
            )

        logger.info(
            "feed_ingestor: %d candidate(s) from %d entries for '%s'",
            len(candidates),
            len(feed.entries),
            source.name,
        )
        return candidates

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fetch_feed(
        self, source: Source, log_sink: JobLogSink | None
    ) -> Any:
        reason = "unknown error"
        for attempt in range(self._max_attempts):
            try:
                return await self._fetch_once(source)
            except _FeedAttemptError as exc:
                reason = str(exc)

            if attempt + 1 >= self._max_attempts:
                break

            delay = self._backoff * (2**attempt)
            logger.warning(
                "feed_ingestor: attempt %d/%d failed for '%s': %s (retrying in %.1fs)",
                attempt + 1,
                self._max_attempts,
                source.name,
                reason,
                delay,
            )
            if log_sink is not None:
                log_sink.warning(
                    f"RSS fetch attempt {attempt + 1}/{self._max_attempts} failed "
                    f"for {source.name}: {reason}",
                    source_id=source.id,
                    event_type="source",
                    event_name="rss_fetch_retry",
                    url=source.rss_url,
                    attempt=attempt + 1,
                    max_attempts=self._max_attempts,
                    retry_delay_ms=int(delay * 1000),
                    error={"type": "feed_fetch", "message": reason},
                )
            await self._sleep(delay)

        raise FeedUnavailableError(
            source.name, source.rss_url, reason, attempts=self._max_attempts
        )

    async def _fetch_once(self, source: Source) -> Any:
        try:
            response = await self._client.get(
                source.rss_url,
                timeout=self._timeout,
                follow_redirects=True,
                headers={"User-Agent": source.user_agent or self._default_user_agent},
            )
        except httpx.TimeoutException as exc:
            raise _FeedAttemptError(f"timed out after {self._timeout:g}s") from exc
        except httpx.RequestError as exc:
            raise _FeedAttemptError(f"request error: {exc}") from exc

        if response.status_code >= 400:
            raise _FeedAttemptError(f"HTTP {response.status_code}")

        # feedparser is CPU-bound but fast enough to run inline
        feed = feedparser.parse(response.text)
        if feed.bozo and not feed.entries:
            raise _FeedAttemptError(
                f"unparseable feed: {getattr(feed, 'bozo_exception', 'unknown')}"
            )
        return feed


class _FeedAttemptError(Exception):
    """One failed feed attempt; retried or folded into FeedUnavailableError."""
