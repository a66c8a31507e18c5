"""SQLAlchemy ORM models for the Veritas scraper.

All models are imported here so that:
1. Alembic autogenerate can discover them via Base.metadata.
2. Application code can do `from veritas_scraper.core.models import Source`
   without knowing which sub-module a model lives in.
"""

from __future__ import annotations

from veritas_scraper.core.models.base import Base
from veritas_scraper.core.models.content import ScrapedContent
from veritas_scraper.core.models.logs import ScrapingLog
from veritas_scraper.core.models.scraping import ScrapingJob
from veritas_scraper.core.models.sources import Source

__all__ = [
    "Base",
    "ScrapedContent",
    "ScrapingJob",
    "ScrapingLog",
    "Source",
]
