"""Configuration package for the Veritas scraper.

Re-exports the settings entry points so callers can write::

    from veritas_scraper.config import get_settings
"""

from __future__ import annotations

from veritas_scraper.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
