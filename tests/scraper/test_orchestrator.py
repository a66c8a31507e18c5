"""End-to-end job runs against mocked feeds and article pages.

Every test drives :class:`JobOrchestrator` with a real repository on the
per-test SQLite database and respx-mocked HTTP, then checks the job row,
stored content and persisted log entries.
"""

from __future__ import annotations

import httpx
import pytest
import respx
from sqlalchemy.exc import OperationalError

from tests.factories.sources import FeedEntryFactory, article_html, rss_feed
from veritas_scraper.core.exceptions import ScraperConfigurationError
from veritas_scraper.scraper.orchestrator import CancellationToken, JobOrchestrator
from veritas_scraper.scraper.repository import FETCH_ATTEMPT_EVENT, ScrapingRepository

HTML_HEADERS = {"content-type": "text/html; charset=utf-8"}


async def _no_sleep(_seconds: float) -> None:
    return None


def _html(body: str) -> httpx.Response:
    return httpx.Response(200, text=body, headers=HTML_HEADERS)


def _mock_feed(mock: respx.MockRouter, source, entries) -> respx.Route:
    return mock.get(source.rss_url).mock(return_value=httpx.Response(200, text=rss_feed(entries)))


async def _run(repository, settings, sources, per_source, *, token=None):
    job = await repository.create_job([s.id for s in sources], per_source)
    async with httpx.AsyncClient() as http:
        orchestrator = JobOrchestrator(repository, http, settings=settings, sleep=_no_sleep)
        return await orchestrator.run_job(job.id, cancel_token=token)


async def _event_names(repository, job_id) -> list[str]:
    return [e.event_name for e in await repository.list_logs(job_id)]


async def _seed_failed_attempts(repository, source, count: int) -> None:
    """Record *count* failed fetches for *source* in an earlier job."""
    previous = await repository.create_job([source.id], 1)
    for _ in range(count):
        await repository.append_log(
            previous.id,
            source_id=source.id,
            log_level="error",
            message="fetch failed",
            event_type="http",
            event_name=FETCH_ATTEMPT_EVENT,
            counts_as_error=True,
            additional_data={"success": False, "http": {"response_ms": 5000.0}},
        )


class _UnreachableLogStore(ScrapingRepository):
    """Repository whose log writes fail as if the database went away."""

    async def append_log(self, *args, **kwargs):
        raise OperationalError("INSERT INTO scraping_logs", {}, Exception("connection refused"))


@pytest.mark.asyncio
class TestSuccessfulRuns:
    async def test_caps_articles_per_source(self, repository, test_settings, make_source) -> None:
        source = await make_source(name="Example News")
        entries = [FeedEntryFactory.build() for _ in range(5)]
        with respx.mock() as mock:
            _mock_feed(mock, source, entries)
            for entry in entries[:3]:
                mock.get(entry["link"]).mock(return_value=_html(article_html(entry["title"])))
            job = await _run(repository, test_settings, [source], 3)

        assert job.status == "successful"
        assert job.total_articles_scraped == 3
        assert job.total_errors == 0
        assert job.started_at is not None
        assert job.completed_at is not None

        contents = await repository.list_content(job.id)
        assert sorted(c.source_url for c in contents) == sorted(e["link"] for e in entries[:3])
        assert {c.processing_status for c in contents} == {"completed"}
        assert all(c.content_hash for c in contents)
        assert all(c.language == "en" for c in contents)

        names = await _event_names(repository, job.id)
        assert names[0] == "job_started"
        assert names[-1] == "job_completed"
        assert names.count("article_stored") == 3
        assert names.count(FETCH_ATTEMPT_EVENT) == 3
        assert names.count("extraction_traces") == 3

    async def test_source_health_is_persisted(self, repository, test_settings, make_source) -> None:
        source = await make_source()
        entries = [FeedEntryFactory.build() for _ in range(2)]
        with respx.mock() as mock:
            _mock_feed(mock, source, entries)
            for entry in entries:
                mock.get(entry["link"]).mock(return_value=_html(article_html(entry["title"])))
            await _run(repository, test_settings, [source], 2)

        row = await repository.get_source(source.id)
        assert row.is_healthy is True
        assert row.success_rate == 1.0
        assert row.total_attempts == 2
        assert row.last_scraped_at is not None

    async def test_low_quality_article_still_counts(self, repository, test_settings, make_source) -> None:
        source = await make_source()
        entry = FeedEntryFactory.build()
        with respx.mock() as mock:
            _mock_feed(mock, source, [entry])
            mock.get(entry["link"]).mock(
                return_value=_html(article_html(entry["title"], paragraphs=1, author=None))
            )
            job = await _run(repository, test_settings, [source], 1)

        assert job.status == "successful"
        (content,) = await repository.list_content(job.id)
        assert content.processing_status == "completed-low-quality"
        assert content.quality_score < test_settings.scraper_quality_threshold


@pytest.mark.asyncio
class TestFailureHandling:
    async def test_timeout_makes_job_partial(self, repository, test_settings, make_source) -> None:
        source = await make_source()
        entries = [FeedEntryFactory.build() for _ in range(3)]
        with respx.mock() as mock:
            _mock_feed(mock, source, entries)
            mock.get(entries[0]["link"]).mock(return_value=_html(article_html(entries[0]["title"])))
            mock.get(entries[1]["link"]).mock(side_effect=httpx.ReadTimeout("slow"))
            mock.get(entries[2]["link"]).mock(return_value=_html(article_html(entries[2]["title"])))
            job = await _run(repository, test_settings, [source], 3)

        assert job.status == "partial"
        assert job.total_articles_scraped == 2
        assert job.total_errors == 1

        failed = [
            e
            for e in await repository.list_logs(job.id, level="error")
            if e.event_name == FETCH_ATTEMPT_EVENT
        ]
        assert len(failed) == 1
        assert failed[0].additional_data["error"]["type"] == "article_fetch_timeout"
        assert failed[0].additional_data["http"]["url"] == entries[1]["link"]

    async def test_unavailable_feed_fails_job(self, repository, test_settings, make_source) -> None:
        source = await make_source()
        with respx.mock() as mock:
            route = mock.get(source.rss_url).mock(return_value=httpx.Response(500))
            job = await _run(repository, test_settings, [source], 3)

        assert route.call_count == test_settings.scraper_feed_max_attempts
        assert job.status == "failed"
        assert job.total_articles_scraped == 0
        assert job.total_errors == 1

        names = await _event_names(repository, job.id)
        assert "feed_unavailable" in names
        assert "rss_fetch_retry" in names

    async def test_one_bad_feed_does_not_stop_others(
        self, repository, test_settings, make_source
    ) -> None:
        broken = await make_source()
        working = await make_source()
        entry = FeedEntryFactory.build()
        with respx.mock() as mock:
            mock.get(broken.rss_url).mock(return_value=httpx.Response(503))
            _mock_feed(mock, working, [entry])
            mock.get(entry["link"]).mock(return_value=_html(article_html(entry["title"])))
            job = await _run(repository, test_settings, [broken, working], 1)

        assert job.status == "partial"
        assert job.total_articles_scraped == 1
        assert job.total_errors == 1

    async def test_unreachable_log_store_fails_job(
        self, repository, session_factory, test_settings, make_source
    ) -> None:
        source = await make_source()
        job = await repository.create_job([source.id], 2)
        entries = [FeedEntryFactory.build() for _ in range(2)]

        with respx.mock(assert_all_called=False) as mock:
            _mock_feed(mock, source, entries)
            for entry in entries:
                mock.get(entry["link"]).mock(return_value=_html(article_html(entry["title"])))
            async with httpx.AsyncClient() as http:
                orchestrator = JobOrchestrator(
                    _UnreachableLogStore(session_factory),
                    http,
                    settings=test_settings,
                    sleep=_no_sleep,
                )
                with pytest.raises(ScraperConfigurationError):
                    await orchestrator.run_job(job.id)

        row = await repository.get_job(job.id)
        assert row.status == "failed"
        assert row.completed_at is not None
        assert row.error_message.startswith("ScraperConfigurationError")

    async def test_consecutive_failures_skip_rest_of_source(
        self, repository, test_settings, make_source
    ) -> None:
        source = await make_source()
        entries = [FeedEntryFactory.build() for _ in range(5)]
        with respx.mock() as mock:
            _mock_feed(mock, source, entries)
            # Only the first three are mocked; a request for the others
            # would surface as a crashed source.
            for entry in entries[:3]:
                mock.get(entry["link"]).mock(return_value=httpx.Response(500))
            job = await _run(repository, test_settings, [source], 5)

        assert job.status == "failed"
        assert job.total_errors == 3

        logs = await repository.list_logs(job.id)
        (fast_fail,) = [e for e in logs if e.event_name == "source_fast_fail"]
        assert fast_fail.additional_data["skipped_urls"] == [e["link"] for e in entries[3:]]
        assert "source_crashed" not in [e.event_name for e in logs]

        row = await repository.get_source(source.id)
        assert row.is_healthy is False
        assert row.consecutive_failures == 3

    async def test_empty_extraction_is_stored_as_failed(
        self, repository, test_settings, make_source
    ) -> None:
        source = await make_source()
        good, empty = FeedEntryFactory.build(), FeedEntryFactory.build()
        with respx.mock() as mock:
            _mock_feed(mock, source, [good, empty])
            mock.get(good["link"]).mock(return_value=_html(article_html(good["title"])))
            mock.get(empty["link"]).mock(return_value=_html("<html><body></body></html>"))
            job = await _run(repository, test_settings, [source], 2)

        assert job.status == "partial"
        assert job.total_articles_scraped == 1
        assert job.total_errors == 1

        statuses = {c.source_url: c.processing_status for c in await repository.list_content(job.id)}
        assert statuses == {good["link"]: "completed", empty["link"]: "failed"}
        assert "extraction_empty" in await _event_names(repository, job.id)

    async def test_robots_disallowed_is_a_warning(
        self, repository, test_settings, make_source
    ) -> None:
        source = await make_source(respect_robots_txt=True)
        entry = FeedEntryFactory.build()
        with respx.mock(assert_all_called=False) as mock:
            _mock_feed(mock, source, [entry])
            mock.get("https://news.example.com/robots.txt").mock(
                return_value=httpx.Response(200, text="User-agent: *\nDisallow: /articles/\n")
            )
            article = mock.get(entry["link"]).mock(return_value=_html(article_html(entry["title"])))
            job = await _run(repository, test_settings, [source], 1)

        assert not article.called
        assert job.total_errors == 0
        (warning,) = [
            e for e in await repository.list_logs(job.id) if e.event_name == "robots_disallowed"
        ]
        assert warning.log_level == "warning"


@pytest.mark.asyncio
class TestDeduplication:
    async def test_rerun_on_unchanged_feed_stores_nothing_new(
        self, repository, test_settings, make_source
    ) -> None:
        source = await make_source()
        entries = [FeedEntryFactory.build() for _ in range(2)]
        with respx.mock() as mock:
            _mock_feed(mock, source, entries)
            for entry in entries:
                mock.get(entry["link"]).mock(return_value=_html(article_html(entry["title"])))
            first = await _run(repository, test_settings, [source], 5)
            second = await _run(repository, test_settings, [source], 5)

        assert first.total_articles_scraped == 2
        assert second.total_articles_scraped == 0
        assert await repository.list_content(second.id) == []
        assert second.status == "failed"

    async def test_identical_content_is_skipped(self, repository, test_settings, make_source) -> None:
        source = await make_source()
        entries = [FeedEntryFactory.build() for _ in range(2)]
        page = article_html("Syndicated wire story")
        with respx.mock() as mock:
            _mock_feed(mock, source, entries)
            for entry in entries:
                mock.get(entry["link"]).mock(return_value=_html(page))
            job = await _run(repository, test_settings, [source], 2)

        assert job.status == "successful"
        assert job.total_articles_scraped == 1
        assert len(await repository.list_content(job.id)) == 1

        (skipped,) = [
            e for e in await repository.list_logs(job.id) if e.event_name == "duplicate_skipped"
        ]
        assert skipped.additional_data["reason"] == "content_hash"

    async def test_rerun_does_not_refetch_content_duplicates(
        self, repository, test_settings, make_source
    ) -> None:
        source = await make_source()
        entries = [FeedEntryFactory.build() for _ in range(2)]
        page = article_html("Syndicated wire story")
        with respx.mock() as mock:
            _mock_feed(mock, source, entries)
            routes = [mock.get(e["link"]).mock(return_value=_html(page)) for e in entries]
            first = await _run(repository, test_settings, [source], 2)
            second = await _run(repository, test_settings, [source], 2)

        assert first.total_articles_scraped == 1
        assert [route.call_count for route in routes] == [1, 1]
        assert second.total_articles_scraped == 0

        (parsed,) = [
            e for e in await repository.list_logs(second.id) if e.event_name == "rss_parsed"
        ]
        assert parsed.additional_data["candidates"] == 0


@pytest.mark.asyncio
class TestScheduling:
    async def test_cancellation_stops_remaining_sources(
        self, repository, test_settings, make_source
    ) -> None:
        settings = test_settings.model_copy(update={"scraper_worker_pool_size": 1})
        sources = [await make_source() for _ in range(3)]
        entry = FeedEntryFactory.build()
        token = CancellationToken()

        def _serve_then_cancel(request: httpx.Request) -> httpx.Response:
            token.cancel()
            return _html(article_html(entry["title"]))

        with respx.mock(assert_all_called=False) as mock:
            _mock_feed(mock, sources[0], [entry])
            mock.get(entry["link"]).mock(side_effect=_serve_then_cancel)
            later_feeds = [_mock_feed(mock, s, [FeedEntryFactory.build()]) for s in sources[1:]]
            job = await _run(repository, settings, sources, 3, token=token)

        assert job.status == "cancelled"
        assert job.total_articles_scraped == 1
        assert job.completed_at is not None
        assert not any(route.called for route in later_feeds)
        assert "cancellation_observed" in await _event_names(repository, job.id)

    async def test_cancel_flag_on_job_row_is_observed(
        self, repository, test_settings, make_source
    ) -> None:
        source = await make_source()
        job = await repository.create_job([source.id], 1)
        await repository.request_cancel(job.id)

        with respx.mock(assert_all_called=False) as mock:
            feed = _mock_feed(mock, source, [FeedEntryFactory.build()])
            async with httpx.AsyncClient() as http:
                orchestrator = JobOrchestrator(
                    repository, http, settings=test_settings, sleep=_no_sleep
                )
                result = await orchestrator.run_job(job.id)

        assert result.status == "cancelled"
        assert not feed.called

    async def test_unhealthy_source_runs_last(
        self, repository, test_settings, make_source
    ) -> None:
        settings = test_settings.model_copy(update={"scraper_worker_pool_size": 1})
        flaky = await make_source(name="Flaky Times")
        steady = await make_source(name="Steady Post")

        await _seed_failed_attempts(repository, flaky, 3)

        with respx.mock() as mock:
            _mock_feed(mock, flaky, [])
            _mock_feed(mock, steady, [])
            job = await _run(repository, settings, [flaky, steady], 1)

        logs = await repository.list_logs(job.id)
        started = [e.source_id for e in logs if e.event_name == "source_started"]
        assert started == [steady.id, flaky.id]
        (deprioritized,) = [e for e in logs if e.event_name == "source_deprioritized"]
        assert deprioritized.source_id == flaky.id
        assert deprioritized.additional_data["health"]["consecutive_failures"] == 3

    async def test_failure_streak_does_not_carry_over_between_jobs(
        self, repository, test_settings, make_source
    ) -> None:
        source = await make_source()
        await _seed_failed_attempts(repository, source, 2)
        entries = [FeedEntryFactory.build() for _ in range(3)]
        with respx.mock() as mock:
            _mock_feed(mock, source, entries)
            routes = [
                mock.get(e["link"]).mock(side_effect=httpx.ReadTimeout("slow")) for e in entries
            ]
            job = await _run(repository, test_settings, [source], 3)

        assert all(route.called for route in routes)
        assert job.total_errors == 3

        names = await _event_names(repository, job.id)
        assert names.count(FETCH_ATTEMPT_EVENT) == 3
        assert "source_fast_fail" not in names
        assert "source_deprioritized" not in names

    async def test_job_can_only_run_once(self, repository, test_settings, make_source) -> None:
        from veritas_scraper.core.exceptions import InvalidJobTransitionError  # noqa: PLC0415

        source = await make_source()
        with respx.mock() as mock:
            _mock_feed(mock, source, [])
            job = await _run(repository, test_settings, [source], 1)
            async with httpx.AsyncClient() as http:
                orchestrator = JobOrchestrator(
                    repository, http, settings=test_settings, sleep=_no_sleep
                )
                with pytest.raises(InvalidJobTransitionError):
                    await orchestrator.run_job(job.id)
