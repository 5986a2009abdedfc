"""Tests for job lifecycle transitions."""

import uuid

import pytest

from newsingest.database.models.scraping_job import JobStatus
from newsingest.shared.exceptions import InvalidJobStateError, JobNotFoundError


class TestScrapingJobRepository:
    async def test_create_job(self, job_repo):
        job = await job_repo.create_job(["Alpha", "Beta"], articles_per_source=5, correlation_id="c-1")

        assert job.status == JobStatus.NEW
        assert job.sources_requested == ["Alpha", "Beta"]
        assert job.articles_per_source == 5
        assert job.correlation_id == "c-1"
        assert job.total_articles_scraped == 0

    async def test_full_lifecycle(self, job_repo):
        # Arrange
        job = await job_repo.create_job(["Alpha"], articles_per_source=5)

        # Act
        started = await job_repo.mark_in_progress(job.id)
        finished = await job_repo.finalize_job(
            job.id,
            JobStatus.PARTIAL,
            total_articles_scraped=4,
            total_errors=2,
            source_summary={"Alpha": {"saved_count": 4}},
            reconciliation_passed=True
        )

        # Assert
        assert started.status == JobStatus.IN_PROGRESS
        assert started.started_at is not None
        assert finished.status == JobStatus.PARTIAL
        assert finished.completed_at is not None
        assert finished.total_articles_scraped == 4
        assert finished.source_summary == {"Alpha": {"saved_count": 4}}
        assert finished.reconciliation_passed is True
        assert finished.is_finished is True

    async def test_terminal_job_cannot_be_finalized_again(self, job_repo):
        job = await job_repo.create_job(["Alpha"], articles_per_source=5)
        await job_repo.mark_in_progress(job.id)
        await job_repo.finalize_job(job.id, JobStatus.SUCCESSFUL, 5, 0, {}, True)

        with pytest.raises(InvalidJobStateError):
            await job_repo.finalize_job(job.id, JobStatus.FAILED, 0, 1, {}, None)

        assert (await job_repo.get_job(job.id)).status == JobStatus.SUCCESSFUL

    async def test_non_terminal_status_is_rejected(self, job_repo):
        job = await job_repo.create_job(["Alpha"], articles_per_source=5)

        with pytest.raises(InvalidJobStateError):
            await job_repo.finalize_job(job.id, JobStatus.IN_PROGRESS, 0, 0, {}, None)

    async def test_job_cannot_start_twice(self, job_repo):
        job = await job_repo.create_job(["Alpha"], articles_per_source=5)
        await job_repo.mark_in_progress(job.id)

        with pytest.raises(InvalidJobStateError):
            await job_repo.mark_in_progress(job.id)

    async def test_mark_failed_does_not_touch_terminal_job(self, job_repo):
        job = await job_repo.create_job(["Alpha"], articles_per_source=5)
        await job_repo.mark_in_progress(job.id)
        await job_repo.finalize_job(job.id, JobStatus.SUCCESSFUL, 5, 0, {}, True)

        result = await job_repo.mark_failed(job.id, "late failure")

        assert result.status == JobStatus.SUCCESSFUL
        assert result.error_message is None

    async def test_mark_failed_open_job(self, job_repo):
        job = await job_repo.create_job(["Alpha"], articles_per_source=5)

        result = await job_repo.mark_failed(job.id, "dispatch failed")

        assert result.status == JobStatus.FAILED
        assert result.error_message == "dispatch failed"

    async def test_unknown_job(self, job_repo):
        with pytest.raises(JobNotFoundError):
            await job_repo.get_job(uuid.uuid4())
        with pytest.raises(JobNotFoundError):
            await job_repo.mark_in_progress(uuid.uuid4())

    async def test_recent_jobs_filtered_by_status(self, job_repo):
        first = await job_repo.create_job(["Alpha"], articles_per_source=5)
        await job_repo.create_job(["Beta"], articles_per_source=5)
        await job_repo.mark_failed(first.id, "boom")

        failed = await job_repo.get_recent_jobs(status=JobStatus.FAILED)

        assert [job.id for job in failed] == [first.id]
