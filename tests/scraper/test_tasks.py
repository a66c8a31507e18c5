"""Tests for the Celery task wrapper around the orchestrator."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

from tests.factories.sources import FeedEntryFactory, article_html, rss_feed
from veritas_scraper.scraper import tasks


@pytest.mark.asyncio
class TestRunScrapingJob:
    async def test_runs_job_and_records_task_id(
        self, repository, make_source, database_url
    ) -> None:
        source = await make_source()
        entry = FeedEntryFactory.build()
        job = await repository.create_job([source.id], 1)

        with respx.mock() as mock:
            mock.get(source.rss_url).mock(return_value=httpx.Response(200, text=rss_feed([entry])))
            mock.get(entry["link"]).mock(
                return_value=httpx.Response(
                    200,
                    text=article_html(entry["title"]),
                    headers={"content-type": "text/html"},
                )
            )
            result = await tasks._run_scraping_job(
                str(job.id), "task-abc", database_url=database_url
            )

        assert result == {
            "job_id": str(job.id),
            "status": "successful",
            "total_articles_scraped": 1,
            "total_errors": 0,
        }
        row = await repository.get_job(job.id)
        assert row.celery_task_id == "task-abc"
        assert row.status == "successful"

    async def test_mark_job_failed(self, repository, make_source, database_url) -> None:
        source = await make_source()
        job = await repository.create_job([source.id], 1)

        await tasks._mark_job_failed(str(job.id), "RuntimeError: boom", database_url=database_url)

        row = await repository.get_job(job.id)
        assert row.status == "failed"
        assert row.error_message == "RuntimeError: boom"

    async def test_mark_job_failed_ignores_terminal_jobs(
        self, repository, make_source, database_url
    ) -> None:
        source = await make_source()
        job = await repository.create_job([source.id], 1)
        await tasks._mark_job_failed(str(job.id), "first", database_url=database_url)
        await tasks._mark_job_failed(str(job.id), "second", database_url=database_url)
        await tasks._mark_job_failed(str(uuid.uuid4()), "missing", database_url=database_url)

        assert (await repository.get_job(job.id)).error_message == "first"


class TestRunScrapingJobTask:
    def test_task_is_registered_without_retries(self) -> None:
        task = tasks.run_scraping_job_task
        assert task.name == "veritas_scraper.scraper.tasks.run_scraping_job_task"
        assert task.max_retries == 0
        assert task.acks_late is True

    def test_returns_orchestrator_result(self) -> None:
        summary = {"job_id": "j", "status": "successful", "total_articles_scraped": 2, "total_errors": 0}
        with patch.object(tasks, "_run_scraping_job", AsyncMock(return_value=summary)) as run:
            assert tasks.run_scraping_job_task("j") == summary
        run.assert_awaited_once()

    def test_unexpected_error_marks_job_failed_and_reraises(self) -> None:
        with (
            patch.object(tasks, "_run_scraping_job", AsyncMock(side_effect=RuntimeError("db gone"))),
            patch.object(tasks, "_mark_job_failed", AsyncMock()) as mark_failed,
        ):
            with pytest.raises(RuntimeError, match="db gone"):
                tasks.run_scraping_job_task("j")

        mark_failed.assert_awaited_once_with("j", "RuntimeError: db gone")
