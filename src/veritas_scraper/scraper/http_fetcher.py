"""Async HTTP fetcher with robots.txt support.

Uses ``httpx`` for all HTTP requests, including robots.txt.  The fetcher
never raises for network problems: every outcome is reported through a
:class:`FetchResult` so the orchestrator can translate it into the job's
error taxonomy.
"""

from __future__ import annotations

import asyncio
import logging
import time
import urllib.parse
import urllib.robotparser
from dataclasses import dataclass

import httpx

from veritas_scraper.scraper.config import (
    BINARY_CONTENT_TYPES,
    ROBOTS_TIMEOUT_SECONDS,
    ROBOTS_USER_AGENT,
    ROBOTS_USER_AGENT_FALLBACK,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------


@dataclass
class FetchResult:
    """Result of a single HTTP fetch attempt.

    Attributes:
        html: Raw HTML string, or ``None`` if the fetch failed or was skipped.
        status_code: HTTP status code, or ``None`` on network error.
        final_url: URL after following redirects.
        error: Human-readable error description, or ``None`` on success.
        elapsed_ms: Wall-clock duration of the request in milliseconds.
        timed_out: ``True`` when the request exceeded its timeout.
        robots_disallowed: ``True`` when robots.txt forbids the URL; no
            request was sent.
        skipped: ``True`` for non-error skips (binary content types).
    """

    html: str | None
    status_code: int | None
    final_url: str | None
    error: str | None
    elapsed_ms: float = 0.0
    timed_out: bool = False
    robots_disallowed: bool = False
    skipped: bool = False

    @property
    def ok(self) -> bool:
        """``True`` when HTML was retrieved."""
        return self.html is not None and self.error is None


# ---------------------------------------------------------------------------
# robots.txt helpers
# ---------------------------------------------------------------------------


def _origin(url: str) -> str:
    parsed = urllib.parse.urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


async def _load_robots(
    origin: str,
    client: httpx.AsyncClient,
    user_agent: str,
) -> urllib.robotparser.RobotFileParser | None:
    """Fetch and parse ``{origin}/robots.txt``.

    Returns ``None`` when robots.txt is missing or unreachable, meaning
    every URL on the origin is allowed (fail-open).
    """
    try:
        response = await client.get(
            f"{origin}/robots.txt",
            timeout=ROBOTS_TIMEOUT_SECONDS,
            follow_redirects=True,
            headers={"User-Agent": user_agent},
        )
    except httpx.HTTPError as exc:
        logger.debug("scraper: robots.txt fetch failed for %s: %s, allowing", origin, exc)
        return None

    if response.status_code >= 400:
        return None

    parser = urllib.robotparser.RobotFileParser()
    parser.parse(response.text.splitlines())
    return parser


async def is_allowed_by_robots(
    url: str,
    *,
    client: httpx.AsyncClient,
    robots_cache: dict[str, urllib.robotparser.RobotFileParser | None],
    user_agent: str,
) -> bool:
    """Return ``True`` if the URL is allowed by the site's robots.txt.

    Parsed robots.txt files are cached in ``robots_cache`` keyed by origin
    (scheme + host).  On any network error the URL is considered allowed.

    Args:
        url: Target URL.
        client: Shared :class:`httpx.AsyncClient` instance.
        robots_cache: Mutable dict used as an origin-level TTL-less cache.
        user_agent: User-Agent header for the robots.txt request.

    Returns:
        ``True`` if allowed (or if the check fails), ``False`` if disallowed.
    """
    origin = _origin(url)
    if origin not in robots_cache:
        robots_cache[origin] = await _load_robots(origin, client, user_agent)

    parser = robots_cache[origin]
    if parser is None:
        return True
    return parser.can_fetch(ROBOTS_USER_AGENT, url) and parser.can_fetch(
        ROBOTS_USER_AGENT_FALLBACK, url
    )


# ---------------------------------------------------------------------------
# Binary content-type check
# ---------------------------------------------------------------------------


def _is_binary_content_type(content_type: str) -> bool:
    """Return ``True`` if the Content-Type indicates a non-text binary resource."""
    ct = content_type.lower().split(";")[0].strip()
    return any(ct.startswith(prefix) for prefix in BINARY_CONTENT_TYPES)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


# ---------------------------------------------------------------------------
# Public fetch function
# ---------------------------------------------------------------------------


async def fetch_url(
    url: str,
    *,
    client: httpx.AsyncClient,
    timeout: float,
    user_agent: str,
    respect_robots: bool,
    robots_cache: dict[str, urllib.robotparser.RobotFileParser | None],
) -> FetchResult:
    """Fetch a single article URL using httpx with robots.txt checking.

    Performs the following checks in order:

    1. **robots.txt** — if ``respect_robots`` is ``True``, fetches and caches
       the robots.txt for the URL's origin.  Returns a disallowed result
       without sending the request.
    2. **HTTP GET** — sends a ``GET`` request with the source's user-agent,
       bounded as a whole by *timeout*.  Follows redirects (up to httpx
       defaults).
    3. **HTTP status** — any status outside 2xx is a failure.
    4. **Binary content-type** — returns a skip result for PDFs, images, etc.

    Args:
        url: Target URL to fetch.
        client: Shared :class:`httpx.AsyncClient` instance.
        timeout: Request timeout in seconds.
        user_agent: User-Agent header value.
        respect_robots: Whether to honour robots.txt disallow rules.
        robots_cache: Mutable dict used as an origin-level robots.txt cache.

    Returns:
        A :class:`FetchResult` instance.
    """
    # 1. robots.txt check
    if respect_robots and not await is_allowed_by_robots(
        url, client=client, robots_cache=robots_cache, user_agent=user_agent
    ):
        logger.info("scraper: robots.txt disallows %s", url)
        return FetchResult(
            html=None,
            status_code=None,
            final_url=url,
            error="robots.txt disallowed",
            robots_disallowed=True,
        )

    # 2. HTTP GET
    started = time.perf_counter()
    try:
        # httpx timeouts are per phase; wait_for bounds the whole request.
        response = await asyncio.wait_for(
            client.get(
                url,
                timeout=timeout,
                follow_redirects=True,
                headers={"User-Agent": user_agent},
            ),
            timeout=timeout,
        )
    except (httpx.TimeoutException, asyncio.TimeoutError):
        logger.warning("scraper: timeout fetching %s", url)
        return FetchResult(
            html=None,
            status_code=None,
            final_url=url,
            error="timeout",
            elapsed_ms=_elapsed_ms(started),
            timed_out=True,
        )
    except httpx.TooManyRedirects:
        logger.warning("scraper: too many redirects for %s", url)
        return FetchResult(
            html=None,
            status_code=None,
            final_url=url,
            error="too many redirects",
            elapsed_ms=_elapsed_ms(started),
        )
    except httpx.RequestError as exc:
        logger.warning("scraper: request error for %s: %s", url, exc)
        return FetchResult(
            html=None,
            status_code=None,
            final_url=url,
            error=f"request error: {exc}",
            elapsed_ms=_elapsed_ms(started),
        )

    elapsed_ms = _elapsed_ms(started)
    final_url = str(response.url)

    # 3. Non-2xx status
    if not 200 <= response.status_code < 300:
        logger.info("scraper: HTTP %d for %s", response.status_code, url)
        return FetchResult(
            html=None,
            status_code=response.status_code,
            final_url=final_url,
            error=f"HTTP {response.status_code}",
            elapsed_ms=elapsed_ms,
        )

    # 4. Binary content-type check
    content_type = response.headers.get("content-type", "")
    if _is_binary_content_type(content_type):
        logger.info("scraper: skipping binary content-type '%s' for %s", content_type, url)
        return FetchResult(
            html=None,
            status_code=response.status_code,
            final_url=final_url,
            error=f"binary content-type: {content_type}",
            elapsed_ms=elapsed_ms,
            skipped=True,
        )

    try:
        html = response.text
    except Exception as exc:  # noqa: BLE001
        logger.warning("scraper: decode error for %s: %s", url, exc)
        return FetchResult(
            html=None,
            status_code=response.status_code,
            final_url=final_url,
            error=f"decode error: {exc}",
            elapsed_ms=elapsed_ms,
        )

    return FetchResult(
        html=html,
        status_code=response.status_code,
        final_url=final_url,
        error=None,
        elapsed_ms=elapsed_ms,
    )
