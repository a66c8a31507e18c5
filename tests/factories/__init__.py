"""Factory Boy factories for test data generation.

Available factories
-------------------
SourceFactory       — news source dict (feed + scraping policy)
FeedEntryFactory    — RSS item dict rendered by ``rss_feed()``
"""

from __future__ import annotations

from tests.factories.sources import FeedEntryFactory, SourceFactory, article_html, rss_feed

__all__ = [
    "FeedEntryFactory",
    "SourceFactory",
    "article_html",
    "rss_feed",
]
