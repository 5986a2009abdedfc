"""Repository for scraping jobs and their lifecycle transitions.

A job moves ``new -> in-progress -> {successful, partial, failed}``. Once a job
is terminal it is immutable: every transition below is a conditional UPDATE
that only matches non-terminal rows, so a late writer can never overwrite a
finished job.

Example:
    ```python
    job_repo = ScrapingJobRepository()
    job = await job_repo.create_job(["BBC News", "Reuters"], articles_per_source=10)
    await job_repo.mark_in_progress(job.id)
    await job_repo.finalize_job(job.id, JobStatus.PARTIAL, total_articles_scraped=10, ...)
    ```
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from uuid import UUID
from sqlalchemy import select, update, desc

from newsingest.database.models.scraping_job import ScrapingJob, JobStatus, TERMINAL_STATUSES
from newsingest.database.repositories.base import BaseRepository
from newsingest.shared.exceptions import InvalidJobStateError, JobNotFoundError

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (JobStatus.NEW, JobStatus.IN_PROGRESS)


class ScrapingJobRepository(BaseRepository[ScrapingJob]):
    """Repository for managing scraping job operations."""

    model_class = ScrapingJob

    async def create_job(
        self,
        sources: List[str],
        articles_per_source: int,
        correlation_id: Optional[str] = None
    ) -> ScrapingJob:
        """Create a job in status ``new``."""
        job = await self.create({
            "sources_requested": list(sources),
            "articles_per_source": articles_per_source,
            "status": JobStatus.NEW,
            "correlation_id": correlation_id,
        })
        logger.info(
            "Scraping job created",
            extra={
                "correlation_id": correlation_id,
                "job_id": str(job.id),
                "sources": list(sources),
                "articles_per_source": articles_per_source
            }
        )
        return job

    async def get_job(self, job_id: UUID) -> ScrapingJob:
        job = await self.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(str(job_id))
        return job

    async def set_celery_task_id(self, job_id: UUID, celery_task_id: str) -> None:
        async with self.session() as session:
            async with session.begin():
                await session.execute(
                    update(ScrapingJob)
                    .where(ScrapingJob.id == job_id)
                    .values(celery_task_id=celery_task_id, updated_at=datetime.now(timezone.utc))
                )

    async def mark_in_progress(self, job_id: UUID) -> ScrapingJob:
        """Move a ``new`` job to ``in-progress``.

        Raises:
            InvalidJobStateError: If the job is not in ``new``
        """
        now = datetime.now(timezone.utc)
        await self._transition(
            job_id,
            allowed_from=(JobStatus.NEW,),
            requested=JobStatus.IN_PROGRESS,
            values={"status": JobStatus.IN_PROGRESS, "started_at": now, "updated_at": now}
        )
        return await self.get_job(job_id)

    async def finalize_job(
        self,
        job_id: UUID,
        status: JobStatus,
        total_articles_scraped: int,
        total_errors: int,
        source_summary: Dict[str, Any],
        reconciliation_passed: Optional[bool],
        error_message: Optional[str] = None
    ) -> ScrapingJob:
        """Write the terminal status and aggregates in a single update.

        Raises:
            InvalidJobStateError: If the job is already terminal or ``status`` is not terminal
        """
        if status not in TERMINAL_STATUSES:
            raise InvalidJobStateError(str(job_id), "in-progress", JobStatus(status).value)

        now = datetime.now(timezone.utc)
        await self._transition(
            job_id,
            allowed_from=_OPEN_STATUSES,
            requested=status,
            values={
                "status": status,
                "completed_at": now,
                "updated_at": now,
                "total_articles_scraped": total_articles_scraped,
                "total_errors": total_errors,
                "source_summary": source_summary,
                "reconciliation_passed": reconciliation_passed,
                "error_message": error_message,
            }
        )
        return await self.get_job(job_id)

    async def mark_failed(self, job_id: UUID, error_message: str) -> Optional[ScrapingJob]:
        """Mark an open job as ``failed``; a no-op for a job that is already terminal."""
        now = datetime.now(timezone.utc)
        async with self.session() as session:
            async with session.begin():
                result = await session.execute(
                    update(ScrapingJob)
                    .where(ScrapingJob.id == job_id, ScrapingJob.status.in_(_OPEN_STATUSES))
                    .values(
                        status=JobStatus.FAILED,
                        completed_at=now,
                        updated_at=now,
                        error_message=error_message[:2000]
                    )
                )
                changed = result.rowcount > 0

        if not changed:
            logger.warning("Job already terminal, not marking failed", extra={"job_id": str(job_id)})
        return await self.get_by_id(job_id)

    async def get_recent_jobs(self, limit: int = 50, status: Optional[JobStatus] = None) -> List[ScrapingJob]:
        async with self.session() as session:
            query = select(ScrapingJob).order_by(desc(ScrapingJob.created_at)).limit(limit)
            if status is not None:
                query = query.where(ScrapingJob.status == status)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def _transition(
        self,
        job_id: UUID,
        allowed_from: tuple,
        requested: JobStatus,
        values: Dict[str, Any]
    ) -> None:
        async with self.session() as session:
            async with session.begin():
                result = await session.execute(
                    update(ScrapingJob)
                    .where(ScrapingJob.id == job_id, ScrapingJob.status.in_(allowed_from))
                    .values(**values)
                )
                if result.rowcount > 0:
                    return

                current = await session.scalar(select(ScrapingJob.status).where(ScrapingJob.id == job_id))

        if current is None:
            raise JobNotFoundError(str(job_id))
        raise InvalidJobStateError(str(job_id), JobStatus(current).value, JobStatus(requested).value)
