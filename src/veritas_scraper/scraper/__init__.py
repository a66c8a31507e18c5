"""News feed scraping pipeline.

Fetches candidate articles from each configured source's RSS/Atom feed,
extracts structured fields from the article HTML, and persists the results
while tracking job lifecycle, per-source health, and diagnostic traces.

Sub-modules:
- ``config``             — constants and the noise-filter configuration
- ``http_fetcher``       — async httpx-based page fetcher with robots.txt support
- ``feed_ingestor``      — feedparser-based candidate discovery with retry/backoff
- ``dedup``              — URL normalisation, content hashing, job-wide dedup index
- ``extraction_rules``   — declarative selector tables for the selector tier
- ``paragraphs``         — paragraph collection, noise filter, reconstruction
- ``content_extractor``  — three-tier field extraction with traces
- ``language``           — langdetect-based language detection
- ``quality``            — 0-100 quality score and processing status
- ``health``             — rolling per-source health tracker
- ``job_state``          — job lifecycle state machine
- ``accumulator``        — single-writer job persistence queue
- ``log_sink``           — job-scoped structured log sink
- ``repository``         — SQLAlchemy data access
- ``orchestrator``       — job execution under bounded concurrency
- ``log_queries``        — diagnostics computed over a job's log entries
- ``tasks``              — Celery task (``run_scraping_job_task``)
- ``router``             — FastAPI routers (``/scraping-jobs/``, ``/sources/``)
"""
