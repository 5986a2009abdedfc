"""Tests for the scraper API routes."""

import uuid
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from newsingest.api.main import app
from newsingest.api.routes import jobs as jobs_routes
from newsingest.api.routes import sources as sources_routes
from newsingest.core.crawler.candidates import select_candidates
from newsingest.core.crawler.feed import FeedItem
from newsingest.core.crawler.fetcher import PageFetcher
from newsingest.core.crawler.worker import SourceCrawlWorker
from newsingest.database.models.scraping_job import JobStatus


@pytest.fixture
def celery_task():
    """Replace the Celery task so no broker is needed."""
    task = Mock()
    task.delay.return_value = Mock(id="celery-task-1")
    with patch.object(jobs_routes, "run_scrape_job_task", task):
        yield task


@pytest.fixture
async def client(job_repo, source_repo, article_repo, log_repo, celery_task):
    app.dependency_overrides[jobs_routes.get_job_repository] = lambda: job_repo
    app.dependency_overrides[jobs_routes.get_source_repository] = lambda: source_repo
    app.dependency_overrides[jobs_routes.get_article_repository] = lambda: article_repo
    app.dependency_overrides[jobs_routes.get_log_repository] = lambda: log_repo
    app.dependency_overrides[sources_routes.get_source_repository] = lambda: source_repo

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()


class TestTriggerJob:
    async def test_trigger_creates_and_dispatches_job(self, client, make_source, job_repo, celery_task):
        # Arrange
        await make_source("Alpha", "alpha.example")
        await make_source("Beta", "beta.example")

        # Act
        response = await client.post(
            "/api/v1/scraper/trigger",
            json={"sources": ["Alpha", "Beta"], "articles_per_source": 10},
            headers={"X-Correlation-ID": "corr-1"}
        )

        # Assert
        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "new"
        assert body["correlation_id"] == "corr-1"
        assert response.headers["X-Correlation-ID"] == "corr-1"

        job = await job_repo.get_job(uuid.UUID(body["job_id"]))
        assert job.status == JobStatus.NEW
        assert job.sources_requested == ["Alpha", "Beta"]
        assert job.celery_task_id == "celery-task-1"
        celery_task.delay.assert_called_once_with(job_id=body["job_id"])

    @pytest.mark.parametrize("payload", [
        {"sources": [], "articles_per_source": 10},
        {"sources": ["Alpha", "Alpha"], "articles_per_source": 10},
        {"sources": ["  "], "articles_per_source": 10},
        {"sources": ["Alpha"], "articles_per_source": 0},
        {"sources": ["Alpha"]},
    ])
    async def test_invalid_payload(self, client, make_source, job_repo, payload):
        await make_source("Alpha", "alpha.example")

        response = await client.post("/api/v1/scraper/trigger", json=payload)

        assert response.status_code == 422
        assert response.json()["error"] == "Validation Error"
        assert await job_repo.get_recent_jobs() == []

    async def test_unknown_source_creates_no_job(self, client, make_source, job_repo, celery_task):
        await make_source("Alpha", "alpha.example")

        response = await client.post(
            "/api/v1/scraper/trigger", json={"sources": ["Alpha", "Nowhere"], "articles_per_source": 5}
        )

        assert response.status_code == 404
        assert "Nowhere" in response.json()["detail"]
        assert await job_repo.get_recent_jobs() == []
        celery_task.delay.assert_not_called()

    async def test_dispatch_failure_fails_the_job(self, client, make_source, job_repo, celery_task):
        await make_source("Alpha", "alpha.example")
        celery_task.delay.side_effect = ConnectionError("broker down")

        response = await client.post(
            "/api/v1/scraper/trigger", json={"sources": ["Alpha"], "articles_per_source": 5}
        )

        assert response.status_code == 503
        [job] = await job_repo.get_recent_jobs()
        assert job.status == JobStatus.FAILED


class TestJobQueries:
    async def test_job_status_counts_from_storage(self, client, make_source, job_repo, event_logger):
        # Arrange
        alpha = await make_source("Alpha", "alpha.example")
        job = await job_repo.create_job(["Alpha", "Gone"], articles_per_source=5)
        await event_logger.source_event(job.id, alpha.id, "source_failed", "failed", level="error")

        # Act
        response = await client.get(f"/api/v1/scraper/jobs/{job.id}")

        # Assert
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "new"
        assert body["per_source_counts"] == {"Alpha": 0, "Gone": 0}
        assert body["error_counts"] == {"Alpha": 1, "Gone": 0}

    async def test_job_status_counts_warning_level_candidate_failures(
        self, client, make_source, job_repo, event_logger, test_settings, fake_web
    ):
        """Test failed pages show up in error_counts although they are logged as warnings."""
        # Arrange
        alpha = await make_source("Alpha", "alpha.example")
        urls = fake_web.add_site("alpha.example", 4) + [
            "https://alpha.example/news/gone-1",
            "https://alpha.example/news/gone-2",
        ]
        job = await job_repo.create_job(["Alpha"], articles_per_source=6)
        candidates, _ = select_candidates(
            [FeedItem(url=url) for url in urls], set(), job.id, alpha.id, alpha.name,
            articles_per_source=len(urls), margin=1.0, scan_multiplier=1.0
        )
        worker = SourceCrawlWorker(
            test_settings,
            event_logger,
            fetcher_factory=lambda source: PageFetcher(test_settings, source, transport=fake_web.transport)
        )
        result = await worker.run(job.id, alpha, candidates)

        # Act
        response = await client.get(f"/api/v1/scraper/jobs/{job.id}")

        # Assert
        assert result.errors == 2
        assert response.json()["error_counts"] == {"Alpha": 2}

    async def test_unknown_job_is_404(self, client):
        response = await client.get(f"/api/v1/scraper/jobs/{uuid.uuid4()}")

        assert response.status_code == 404

    async def test_list_jobs(self, client, job_repo):
        await job_repo.create_job(["Alpha"], articles_per_source=5)

        response = await client.get("/api/v1/scraper/jobs", params={"status": "new"})

        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["jobs"][0]["status"] == "new"

    async def test_logs_can_be_tailed(self, client, job_repo, event_logger):
        # Arrange
        job = await job_repo.create_job(["Alpha"], articles_per_source=5)
        first = await event_logger.job_event(job.id, "job_started", "started")
        await event_logger.job_event(job.id, "job_completed", "completed")

        # Act
        response = await client.get(f"/api/v1/scraper/jobs/{job.id}/logs", params={"after_id": first})

        # Assert
        body = response.json()
        assert [entry["message"] for entry in body["entries"]] == ["completed"]
        assert body["next_after_id"] == body["entries"][-1]["id"]
        assert body["entries"][0]["payload"]["event_name"] == "job_completed"

    async def test_reconciliation_of_empty_job(self, client, job_repo):
        job = await job_repo.create_job(["Alpha"], articles_per_source=5)

        response = await client.get(f"/api/v1/scraper/jobs/{job.id}/reconciliation")

        assert response.status_code == 200
        assert response.json()["passed"] is True
        assert response.json()["sources"] == []

    async def test_metrics(self, client, job_repo):
        job = await job_repo.create_job(["Alpha"], articles_per_source=5)

        response = await client.get(f"/api/v1/scraper/jobs/{job.id}/metrics")

        assert response.status_code == 200
        assert response.json()["lifecycle_audit"]["clean"] is True


class TestSources:
    async def test_lists_active_sources(self, client, make_source):
        await make_source("Alpha", "alpha.example")
        await make_source("Dormant", "dormant.example", is_active=False)

        response = await client.get("/api/v1/sources")

        assert response.status_code == 200
        assert [source["name"] for source in response.json()["sources"]] == ["Alpha"]


async def test_health_reports_database_state(client):
    connection = Mock()
    connection.health_check = AsyncMock(return_value=False)

    with patch("newsingest.api.main.get_database_connection", return_value=connection):
        response = await client.get("/health")

    assert response.status_code == 503


async def test_root(client):
    response = await client.get("/")

    assert response.json()["health"] == "/health"
