"""Tests for the Celery job task and app configuration."""

import uuid
from unittest.mock import AsyncMock, patch

import pytest

from newsingest.core.scheduler.celery_app import celery_app
from newsingest.core.scheduler.tasks import run_scrape_job_task
from newsingest.shared.exceptions import CeleryTaskFailedError, JobNotFoundError


class TestRunScrapeJobTask:
    def test_returns_job_summary(self):
        # Arrange
        job_id = str(uuid.uuid4())
        summary = {"job_id": job_id, "status": "successful"}

        # Act
        with patch("newsingest.core.scheduler.tasks._run_job", new=AsyncMock(return_value=summary)) as run_job:
            result = run_scrape_job_task.apply(args=[job_id])

        # Assert
        assert result.get() == summary
        assert run_job.call_args.args[0] == uuid.UUID(job_id)
        assert run_job.call_args.args[1].startswith(f"job_{job_id}_")

    def test_failure_is_wrapped(self):
        job_id = str(uuid.uuid4())

        with patch(
            "newsingest.core.scheduler.tasks._run_job",
            new=AsyncMock(side_effect=JobNotFoundError(job_id))
        ):
            with pytest.raises(CeleryTaskFailedError):
                run_scrape_job_task.apply(args=[job_id], throw=True)

    def test_invalid_job_id(self):
        with pytest.raises(CeleryTaskFailedError):
            run_scrape_job_task.apply(args=["not-a-uuid"], throw=True)


class TestCeleryConfiguration:
    def test_task_is_never_retried(self):
        assert run_scrape_job_task.max_retries == 0
        assert celery_app.conf.task_acks_late is False

    def test_task_routed_to_scrape_queue(self):
        routes = celery_app.conf.task_routes

        assert routes["newsingest.core.scheduler.tasks.run_scrape_job_task"] == {"queue": "scrape_queue"}
