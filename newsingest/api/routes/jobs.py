"""Scraper API routes: trigger jobs and inspect their outcome.

Example:
    ```bash
    # Trigger a job
    POST /api/v1/scraper/trigger
    {"sources": ["example-news", "daily-wire"], "articles_per_source": 10}

    # Poll its status
    GET /api/v1/scraper/jobs/{job_id}

    # Tail its event log
    GET /api/v1/scraper/jobs/{job_id}/logs?after_id=120
    ```
"""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from newsingest.api.schemas.job import (
    JobListResponse,
    JobLogsResponse,
    JobMetricsResponse,
    JobStatusResponse,
    JobSummaryResponse,
    LifecycleAuditResponse,
    LogEntryResponse,
    ReconciliationResponse,
    TriggerJobRequest,
    TriggerJobResponse,
)
from newsingest.core.scheduler.tasks import run_scrape_job_task
from newsingest.core.tracking.event_logger import ScrapingEventLogger
from newsingest.core.tracking.log_queries import LogQueryService
from newsingest.core.verification.reconciler import Reconciler
from newsingest.database.models.scraping_job import JobStatus, ScrapingJob
from newsingest.database.repositories import (
    ScrapedArticleRepository,
    ScrapingJobRepository,
    ScrapingLogRepository,
    SourceRepository,
)
from newsingest.shared.config import get_settings
from newsingest.shared.exceptions import JobNotFoundError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/scraper", tags=["scraper"])


def get_job_repository() -> ScrapingJobRepository:
    return ScrapingJobRepository()


def get_source_repository() -> SourceRepository:
    return SourceRepository()


def get_article_repository() -> ScrapedArticleRepository:
    return ScrapedArticleRepository()


def get_log_repository() -> ScrapingLogRepository:
    return ScrapingLogRepository()


def get_log_queries(log_repo: ScrapingLogRepository = Depends(get_log_repository)) -> LogQueryService:
    return LogQueryService(log_repo)


def get_reconciler(
    article_repo: ScrapedArticleRepository = Depends(get_article_repository),
    log_repo: ScrapingLogRepository = Depends(get_log_repository)
) -> Reconciler:
    return Reconciler(get_settings(), ScrapingEventLogger(log_repo), article_repo, log_repo)


async def _load_job(job_repo: ScrapingJobRepository, job_id: UUID) -> ScrapingJob:
    try:
        return await job_repo.get_job(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")


@router.post("/trigger", response_model=TriggerJobResponse, status_code=202)
async def trigger_job(
    job_request: TriggerJobRequest,
    request: Request,
    job_repo: ScrapingJobRepository = Depends(get_job_repository),
    source_repo: SourceRepository = Depends(get_source_repository)
) -> TriggerJobResponse:
    """Create a job in ``new`` and hand it to a worker.

    Unknown source names are rejected with 404 before any job is created.
    """
    correlation_id = getattr(request.state, "correlation_id", None)

    known = await source_repo.get_by_names(job_request.sources)
    unknown = [name for name in job_request.sources if name not in known]
    if unknown:
        logger.warning(
            "Trigger rejected for unknown sources",
            correlation_id=correlation_id,
            unknown_sources=unknown
        )
        raise HTTPException(status_code=404, detail=f"Unknown sources: {', '.join(unknown)}")

    job = await job_repo.create_job(
        job_request.sources,
        job_request.articles_per_source,
        correlation_id=correlation_id
    )

    try:
        task_result = run_scrape_job_task.delay(job_id=str(job.id))
    except Exception as e:
        logger.error(
            "Failed to dispatch scrape job",
            correlation_id=correlation_id,
            job_id=str(job.id),
            error=str(e)
        )
        await job_repo.mark_failed(job.id, f"Dispatch failed: {e}")
        raise HTTPException(status_code=503, detail="Job queue unavailable")

    await job_repo.set_celery_task_id(job.id, task_result.id)
    logger.info(
        "Scrape job triggered",
        correlation_id=correlation_id,
        job_id=str(job.id),
        sources=job_request.sources,
        articles_per_source=job_request.articles_per_source,
        celery_task_id=task_result.id
    )
    return TriggerJobResponse(job_id=job.id, status=JobStatus.NEW.value, correlation_id=correlation_id)


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    status: Optional[JobStatus] = Query(None, description="Filter by job status"),
    limit: int = Query(50, ge=1, le=200),
    job_repo: ScrapingJobRepository = Depends(get_job_repository)
) -> JobListResponse:
    jobs = await job_repo.get_recent_jobs(limit=limit, status=status)
    return JobListResponse(
        jobs=[JobSummaryResponse.model_validate(job) for job in jobs],
        total=len(jobs)
    )


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(
    job_id: UUID,
    job_repo: ScrapingJobRepository = Depends(get_job_repository),
    source_repo: SourceRepository = Depends(get_source_repository),
    article_repo: ScrapedArticleRepository = Depends(get_article_repository),
    log_repo: ScrapingLogRepository = Depends(get_log_repository)
) -> JobStatusResponse:
    """Job status with per-source counts read from storage."""
    job = await _load_job(job_repo, job_id)
    sources = await source_repo.get_by_names(job.sources_requested)
    stored = await article_repo.counts_by_source_for_job(job.id)
    failures = await log_repo.failure_counts_by_source(job.id)

    per_source_counts = {}
    error_counts = {}
    for name in job.sources_requested:
        source = sources.get(name)
        per_source_counts[name] = stored.get(source.id, 0) if source else 0
        error_counts[name] = failures.get(source.id, 0) if source else 0

    return JobStatusResponse(
        job_id=job.id,
        status=job.status.value,
        sources_requested=job.sources_requested,
        articles_per_source=job.articles_per_source,
        per_source_counts=per_source_counts,
        error_counts=error_counts,
        started_at=job.started_at,
        completed_at=job.completed_at,
        reconciliation_passed=job.reconciliation_passed,
        error_message=job.error_message,
        source_summary=job.source_summary or {}
    )


@router.get("/jobs/{job_id}/logs", response_model=JobLogsResponse)
async def get_job_logs(
    job_id: UUID,
    after_id: Optional[int] = Query(None, ge=0, description="Only events with a larger ID"),
    level: Optional[str] = Query(None, pattern="^(info|warning|error)$"),
    event_type: Optional[str] = Query(None, max_length=50),
    limit: int = Query(500, ge=1, le=5000),
    job_repo: ScrapingJobRepository = Depends(get_job_repository),
    log_queries: LogQueryService = Depends(get_log_queries)
) -> JobLogsResponse:
    """The job's events in append order."""
    job = await _load_job(job_repo, job_id)
    entries = await log_queries.timeline(
        job.id, after_id=after_id, level=level, event_type=event_type, limit=limit
    )
    return JobLogsResponse(
        job_id=job.id,
        entries=[LogEntryResponse(**entry) for entry in entries],
        next_after_id=entries[-1]["id"] if entries else after_id
    )


@router.get("/jobs/{job_id}/reconciliation", response_model=ReconciliationResponse)
async def get_job_reconciliation(
    job_id: UUID,
    job_repo: ScrapingJobRepository = Depends(get_job_repository),
    reconciler: Reconciler = Depends(get_reconciler)
) -> ReconciliationResponse:
    """A reconciliation report recomputed from storage on every call."""
    job = await _load_job(job_repo, job_id)
    report = await reconciler.build_report(job.id)
    return ReconciliationResponse(**report.to_dict())


@router.get("/jobs/{job_id}/metrics", response_model=JobMetricsResponse)
async def get_job_metrics(
    job_id: UUID,
    job_repo: ScrapingJobRepository = Depends(get_job_repository),
    log_queries: LogQueryService = Depends(get_log_queries)
) -> JobMetricsResponse:
    job = await _load_job(job_repo, job_id)
    audit = await log_queries.lifecycle_audit(job.id)
    return JobMetricsResponse(
        job_id=job.id,
        source_performance=await log_queries.source_performance(job.id),
        error_summary=await log_queries.error_summary(job.id),
        http_errors=len(await log_queries.http_errors(job.id)),
        lifecycle_audit=LifecycleAuditResponse(
            tracking_ids=audit.tracking_ids,
            clean=audit.clean,
            violations=[violation.to_dict() for violation in audit.violations]
        )
    )
