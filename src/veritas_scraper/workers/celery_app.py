"""Celery application factory for the Veritas scraper.

Configures the broker, result backend, serialization and task routing.  All
configuration values are sourced from ``Settings`` so that no secrets or
environment-specific values are hard-coded here.

Usage (starting a worker)::

    celery -A veritas_scraper.workers.celery_app worker -Q scraping --loglevel=info

Usage (within application code)::

    from veritas_scraper.scraper.tasks import run_scraping_job_task

    run_scraping_job_task.apply_async(kwargs={"job_id": job_id}, queue="scraping")
"""

from __future__ import annotations

from celery import Celery
from celery.signals import after_setup_logger
from dotenv import load_dotenv

# Load .env into os.environ before settings are read.
load_dotenv()

from veritas_scraper.config.settings import get_settings  # noqa: E402

settings = get_settings()

#: The global Celery application instance.
celery_app = Celery(
    "veritas_scraper",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["veritas_scraper.scraper.tasks"],
)

# ---------------------------------------------------------------------------
# Core configuration
# ---------------------------------------------------------------------------

celery_app.conf.update(
    # Serialization — JSON keeps task arguments inspectable.
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Acknowledge only after the task has completed to avoid losing a job
    # on worker crash.
    task_acks_late=True,
    # Scraping jobs are long-running; do not let them pile up on one worker.
    worker_prefetch_multiplier=1,
    result_expires=86_400,
    task_routes={
        "veritas_scraper.scraper.tasks.run_scraping_job_task": {
            "queue": "scraping",
            "soft_time_limit": 7_200,   # 2 hours
            "time_limit": 10_800,       # 3 hours
        },
    },
)


@after_setup_logger.connect
def _configure_worker_logging(**kwargs: object) -> None:  # noqa: ARG001
    """Route worker logs through the structlog pipeline."""
    from veritas_scraper.core.logging_config import configure_logging  # noqa: PLC0415

    configure_logging(settings.log_level)
