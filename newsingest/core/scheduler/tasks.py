"""Celery tasks for background job execution.

Example:
    ```python
    from newsingest.core.scheduler.tasks import run_scrape_job_task

    # The job must already exist in status "new"
    result = run_scrape_job_task.delay(job_id="job-uuid-string")
    ```
"""

from typing import Any, Dict
from uuid import UUID

from celery.utils.log import get_task_logger

from newsingest.core.crawler.engine import JobOrchestrator
from newsingest.core.scheduler.celery_app import celery_app
from newsingest.database.connection import DatabaseConnection
from newsingest.shared.async_utils import safe_async_run
from newsingest.shared.config import get_settings
from newsingest.shared.exceptions import BaseAppException, CeleryTaskFailedError

logger = get_task_logger(__name__)


@celery_app.task(bind=True, max_retries=0)
def run_scrape_job_task(self, job_id: str) -> Dict[str, Any]:
    """Run one scraping job to completion.

    Never retried automatically: re-running a job means triggering a new one.

    Args:
        job_id: UUID string of a job in status ``new``

    Returns:
        Summary of the finished job

    Raises:
        CeleryTaskFailedError: If the job could not be run
    """
    correlation_id = f"job_{job_id}_{self.request.id}"
    settings = get_settings()

    logger.info("Starting scrape job task", extra={
        "correlation_id": correlation_id,
        "job_id": job_id,
        "task_id": self.request.id
    })

    try:
        return safe_async_run(
            _run_job(UUID(job_id), correlation_id, settings),
            timeout=settings.JOB_EXECUTION_TIMEOUT
        )
    except Exception as e:
        message = e.message if isinstance(e, BaseAppException) else str(e)
        logger.error(f"Scrape job task failed: {message}", extra={
            "correlation_id": correlation_id,
            "job_id": job_id,
            "task_id": self.request.id,
            "error_type": type(e).__name__
        })
        raise CeleryTaskFailedError("run_scrape_job_task", message) from e


async def _run_job(job_id: UUID, correlation_id: str, settings) -> Dict[str, Any]:
    # Each task runs on its own event loop, so it needs its own engine and pool
    db = DatabaseConnection(settings)
    db.setup()
    try:
        orchestrator = JobOrchestrator.build(settings, db, correlation_id=correlation_id)
        result = await orchestrator.run_existing_job(job_id)
        return {
            "job_id": str(result.job_id),
            "status": result.status.value,
            "per_source_counts": result.per_source_counts,
            "reconciliation_passed": result.report.passed,
            "duration_seconds": round(result.duration_seconds, 3),
            "correlation_id": correlation_id
        }
    finally:
        await db.close()
