"""HTTP tests for the scraping-job and source routes."""

from __future__ import annotations

import uuid
from unittest.mock import patch

import pytest

from veritas_scraper.scraper.job_state import JobStatus

APPLY_ASYNC = "veritas_scraper.scraper.tasks.run_scraping_job_task.apply_async"


@pytest.mark.asyncio
class TestCreateJob:
    async def test_creates_and_enqueues(self, client, repository, make_source) -> None:
        source = await make_source(name="Example News")
        with patch(APPLY_ASYNC) as apply_async:
            resp = await client.post(
                "/scraping-jobs/",
                json={"source_identifiers": ["Example News"], "articles_per_source": 4},
            )

        assert resp.status_code == 202
        body = resp.json()
        assert body["status"] == "new"

        job_id = uuid.UUID(body["job_id"])
        apply_async.assert_called_once_with(kwargs={"job_id": str(job_id)}, queue="scraping")

        job = await repository.get_job(job_id)
        assert job.sources_requested == [str(source.id)]
        assert job.articles_per_source == 4

    async def test_default_articles_per_source(self, client, repository, make_source) -> None:
        await make_source(name="Example News")
        with patch(APPLY_ASYNC):
            resp = await client.post(
                "/scraping-jobs/", json={"source_identifiers": ["Example News"]}
            )

        job = await repository.get_job(uuid.UUID(resp.json()["job_id"]))
        assert job.articles_per_source == 3

    async def test_unknown_source_is_rejected(self, client, make_source) -> None:
        await make_source(name="Example News")
        with patch(APPLY_ASYNC) as apply_async:
            resp = await client.post(
                "/scraping-jobs/",
                json={"source_identifiers": ["Example News", "Nowhere Herald"]},
            )

        assert resp.status_code == 422
        assert "Nowhere Herald" in resp.json()["detail"]
        apply_async.assert_not_called()

    async def test_cap_above_maximum_is_rejected(self, client, make_source) -> None:
        await make_source(name="Example News")
        with patch(APPLY_ASYNC):
            resp = await client.post(
                "/scraping-jobs/",
                json={"source_identifiers": ["Example News"], "articles_per_source": 10_000},
            )
        assert resp.status_code == 422

    async def test_empty_source_list_is_rejected(self, client) -> None:
        resp = await client.post("/scraping-jobs/", json={"source_identifiers": []})
        assert resp.status_code == 422


@pytest.mark.asyncio
class TestReadJobs:
    async def test_get_job(self, client, repository, make_source) -> None:
        source = await make_source()
        job = await repository.create_job([source.id], 2)

        resp = await client.get(f"/scraping-jobs/{job.id}")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "new"
        assert body["total_articles_scraped"] == 0
        assert body["started_at"] is None

    async def test_get_missing_job(self, client) -> None:
        resp = await client.get(f"/scraping-jobs/{uuid.uuid4()}")
        assert resp.status_code == 404

    async def test_list_jobs_with_status_filter(self, client, repository, make_source) -> None:
        source = await make_source()
        await repository.create_job([source.id], 1)
        failed = await repository.create_job([source.id], 1)
        await repository.transition_job(failed.id, JobStatus.FAILED)

        resp = await client.get("/scraping-jobs/", params={"status_filter": "failed"})

        assert resp.status_code == 200
        assert [j["id"] for j in resp.json()] == [str(failed.id)]

    async def test_list_jobs_rejects_unknown_status(self, client) -> None:
        resp = await client.get("/scraping-jobs/", params={"status_filter": "done"})
        assert resp.status_code == 422

    async def test_logs_and_filters(self, client, repository, make_source) -> None:
        source = await make_source()
        job = await repository.create_job([source.id], 1)
        for level, name in (("info", "source_started"), ("error", "feed_unavailable")):
            await repository.append_log(
                job.id,
                source_id=source.id,
                log_level=level,
                message=name,
                event_type="source",
                event_name=name,
                counts_as_error=level == "error",
                additional_data={},
            )

        all_logs = await client.get(f"/scraping-jobs/{job.id}/logs")
        errors = await client.get(f"/scraping-jobs/{job.id}/logs", params={"level": "error"})

        assert [e["event_name"] for e in all_logs.json()] == ["source_started", "feed_unavailable"]
        assert [e["event_name"] for e in errors.json()] == ["feed_unavailable"]
        assert errors.json()[0]["counts_as_error"] is True

    async def test_logs_for_missing_job(self, client) -> None:
        resp = await client.get(f"/scraping-jobs/{uuid.uuid4()}/logs")
        assert resp.status_code == 404

    async def test_diagnostics(self, client, repository, make_source) -> None:
        source = await make_source()
        job = await repository.create_job([source.id], 1)

        resp = await client.get(f"/scraping-jobs/{job.id}/diagnostics")

        assert resp.status_code == 200
        body = resp.json()
        assert body["job_id"] == str(job.id)
        assert body["timeline"]["status"] == "new"
        assert body["http_errors"] == []

    async def test_diagnostics_for_missing_job(self, client) -> None:
        resp = await client.get(f"/scraping-jobs/{uuid.uuid4()}/diagnostics")
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestCancelJob:
    async def test_cancel_sets_flag(self, client, repository, make_source) -> None:
        source = await make_source()
        job = await repository.create_job([source.id], 1)
        await repository.transition_job(job.id, JobStatus.IN_PROGRESS)

        resp = await client.post(f"/scraping-jobs/{job.id}/cancel")

        assert resp.status_code == 202
        assert resp.json()["cancel_requested"] is True
        assert await repository.is_cancel_requested(job.id) is True

    async def test_cancel_finished_job_conflicts(self, client, repository, make_source) -> None:
        source = await make_source()
        job = await repository.create_job([source.id], 1)
        await repository.transition_job(job.id, JobStatus.IN_PROGRESS)
        await repository.transition_job(job.id, JobStatus.SUCCESSFUL)

        resp = await client.post(f"/scraping-jobs/{job.id}/cancel")

        assert resp.status_code == 409
        assert "successful" in resp.json()["detail"]

    async def test_cancel_missing_job(self, client) -> None:
        resp = await client.post(f"/scraping-jobs/{uuid.uuid4()}/cancel")
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestSources:
    async def test_list_sources(self, client, make_source) -> None:
        await make_source(name="Beta Bulletin")
        await make_source(name="Alpha Advocate", is_enabled=False)

        everything = await client.get("/sources/")
        enabled = await client.get("/sources/", params={"enabled_only": "true"})

        assert [s["name"] for s in everything.json()] == ["Alpha Advocate", "Beta Bulletin"]
        assert [s["name"] for s in enabled.json()] == ["Beta Bulletin"]

    async def test_health_recomputed_from_history(
        self, client, repository, make_source
    ) -> None:
        source = await make_source()
        job = await repository.create_job([source.id], 1)
        for success in (True, False, False, False):
            await repository.append_log(
                job.id,
                source_id=source.id,
                log_level="info" if success else "error",
                message="fetch",
                event_type="http",
                event_name="article_fetch",
                additional_data={"success": success, "http": {"response_ms": 200.0}},
            )

        resp = await client.get(f"/sources/{source.id}/health")

        assert resp.status_code == 200
        body = resp.json()
        assert body["is_healthy"] is False
        assert body["consecutive_failures"] == 3
        assert body["success_rate"] == 0.25
        assert body["window_attempts"] == 4
        assert body["avg_response_time_ms"] == 200.0

    async def test_health_for_missing_source(self, client) -> None:
        resp = await client.get(f"/sources/{uuid.uuid4()}/health")
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestSystemEndpoints:
    async def test_health(self, client) -> None:
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
        assert "X-Request-ID" in resp.headers

    async def test_request_id_is_echoed(self, client) -> None:
        resp = await client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert resp.headers["X-Request-ID"] == "abc-123"

    async def test_metrics(self, client) -> None:
        await client.get("/health")
        resp = await client.get("/metrics")
        assert resp.status_code == 200
        assert "http_requests_total" in resp.text
