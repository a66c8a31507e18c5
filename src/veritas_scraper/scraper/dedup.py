"""URL normalisation, content hashing and the job-wide dedup index."""

from __future__ import annotations

import asyncio
import hashlib
import re
import urllib.parse
from collections.abc import Iterable

from veritas_scraper.scraper.config import CONTENT_HASH_SAMPLE_CHARS, TRACKING_PARAMS

_WHITESPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# URL normalization
# ---------------------------------------------------------------------------


def normalize_url(url: str) -> str:
    """Normalize a URL for deduplication purposes.

    Performs the following transformations in order:

    1. Lowercase the scheme and hostname.
    2. Strip trailing slash from the path (root ``/`` is preserved).
    3. Remove known tracking query parameters (UTM, fbclid, gclid, etc.).
    4. Drop the fragment.

    Args:
        url: Raw URL string.

    Returns:
        Normalized URL string suitable for deduplication.
    """
    try:
        parsed = urllib.parse.urlparse(url.strip())
        netloc = parsed.netloc.lower()
        path = parsed.path.rstrip("/") or "/"
        qs_pairs = urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
        filtered_qs = [(k, v) for k, v in qs_pairs if k.lower() not in TRACKING_PARAMS]
        new_query = urllib.parse.urlencode(filtered_qs)
        return urllib.parse.urlunparse(
            (parsed.scheme.lower(), netloc, path, parsed.params, new_query, "")
        )
    except ValueError:
        return url


# ---------------------------------------------------------------------------
# Content hashing
# ---------------------------------------------------------------------------


def _normalize_text(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text.strip().lower())


def content_hash(title: str | None, body: str | None) -> str:
    """Return the SHA-256 dedup hash of an article.

    The hash covers the normalised title and the first
    ``CONTENT_HASH_SAMPLE_CHARS`` characters of the normalised body, so
    the same story re-published under a different URL is still caught.
    """
    sample = _normalize_text(body or "")[:CONTENT_HASH_SAMPLE_CHARS]
    combined = f"{_normalize_text(title or '')}:{sample}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Shared index
# ---------------------------------------------------------------------------


class DedupIndex:
    """Set of already-processed article URLs and content hashes.

    Shared read/write by every source worker of a job; all access goes
    through an :class:`asyncio.Lock`.  Seeded from storage at job start so
    that repeated runs against an unchanged feed yield nothing new.
    """

    def __init__(
        self,
        urls: Iterable[str] = (),
        hashes: Iterable[str] = (),
    ) -> None:
        self._urls: set[str] = {normalize_url(u) for u in urls}
        self._hashes: set[str] = set(hashes)
        self._lock = asyncio.Lock()

    async def is_known_url(self, url: str) -> bool:
        async with self._lock:
            return normalize_url(url) in self._urls

    async def claim_url(self, url: str) -> bool:
        """Mark *url* as processed; return ``False`` if it already was."""
        key = normalize_url(url)
        async with self._lock:
            if key in self._urls:
                return False
            self._urls.add(key)
            return True

    async def claim_hash(self, digest: str) -> bool:
        """Mark *digest* as stored; return ``False`` if it already was."""
        async with self._lock:
            if digest in self._hashes:
                return False
            self._hashes.add(digest)
            return True

    def __len__(self) -> int:
        return len(self._urls)
