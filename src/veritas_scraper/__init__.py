"""Veritas news scraper.

Fetches configured RSS sources, extracts structured article fields from
noisy HTML, and orchestrates scraping jobs with per-source health tracking
and persisted diagnostic traces.
"""

__version__ = "0.1.0"
