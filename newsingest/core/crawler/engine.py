"""Job orchestration.

``JobOrchestrator.run_job`` drives one scraping job through its phases:

    initialization -> extraction -> persistence -> verification -> completion

Extraction fans out one task per source and waits for every task to settle.
A source task that raises is recorded as that source's failure and never
affects another source. Persistence, verification and finalisation only run
after the fan-in, so a job never becomes terminal while work is outstanding.

Example:
    ```python
    db = DatabaseConnection(settings)
    db.setup()
    orchestrator = JobOrchestrator.build(settings, db)
    result = await orchestrator.run_job(["example-news", "daily-wire"], articles_per_source=10)
    print(result.status, result.report.passed)
    ```
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

import httpx

from newsingest.core.crawler.candidates import select_candidates
from newsingest.core.crawler.extractor import ArticleExtractor
from newsingest.core.crawler.feed import FeedReader
from newsingest.core.crawler.fetcher import PageFetcher
from newsingest.core.crawler.worker import SourceCrawlWorker, SourceResult
from newsingest.core.persistence.persister import ArticlePersister, SourcePersistenceResult
from newsingest.core.tracking.event_logger import EventType, Phase, ScrapingEventLogger
from newsingest.core.verification.reconciler import ReconciliationReport, Reconciler
from newsingest.database.connection import DatabaseConnection
from newsingest.database.models.scraping_job import JobStatus, ScrapingJob
from newsingest.database.models.scraping_log import LogLevel
from newsingest.database.models.source import Source
from newsingest.database.repositories import (
    ScrapedArticleRepository,
    ScrapingJobRepository,
    ScrapingLogRepository,
    SourceRepository,
)
from newsingest.shared.config import Settings
from newsingest.shared.exceptions import (
    BaseAppException,
    JobExecutionError,
    SourceFatalError,
    SourceNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass
class SourceOutcome:
    """How one source's extraction task settled."""

    source_name: str
    source_id: Optional[UUID] = None
    result: Optional[SourceResult] = None
    error: Optional[BaseException] = None
    feed_items: int = 0
    candidates: int = 0
    already_stored: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.result is not None


@dataclass
class JobResult:
    job_id: UUID
    status: JobStatus
    outcomes: Dict[str, SourceOutcome]
    persistence: Dict[UUID, SourcePersistenceResult]
    report: ReconciliationReport
    duration_seconds: float
    source_summary: Dict[str, Any] = field(default_factory=dict)

    @property
    def per_source_counts(self) -> Dict[str, int]:
        counts = {}
        for name, outcome in self.outcomes.items():
            record = self.report.record_for(outcome.source_id) if outcome.source_id else None
            counts[name] = record.actual_count if record else 0
        return counts


def failed_sources(
    outcomes: Dict[str, SourceOutcome],
    persistence: Dict[UUID, SourcePersistenceResult]
) -> List[str]:
    """Sources whose task failed fatally or whose persistence transaction failed."""
    failed = []
    for name, outcome in outcomes.items():
        persisted = persistence.get(outcome.source_id) if outcome.source_id else None
        if not outcome.succeeded or (persisted is not None and persisted.transaction_failed):
            failed.append(name)
    return failed


def derive_job_status(
    outcomes: Dict[str, SourceOutcome],
    persistence: Dict[UUID, SourcePersistenceResult]
) -> JobStatus:
    """successful when no source failed, failed when all did, partial otherwise.

    A source that fell short of its target without a fatal error still counts
    as succeeded.
    """
    failed = failed_sources(outcomes, persistence)
    if not outcomes or len(failed) == len(outcomes):
        return JobStatus.FAILED
    if failed:
        return JobStatus.PARTIAL
    return JobStatus.SUCCESSFUL


class JobOrchestrator:
    """Runs scraping jobs across sources with per-source fault isolation.

    Args:
        settings: Application settings instance
        event_logger: Structured event log for the job
        source_repo: Read-only access to the source registry
        job_repo: Job lifecycle updates
        article_repo: Stored article lookups (dedup before crawling)
        persister: Transactional article writer
        reconciler: Post-persistence verification
        feed_reader: Feed adapter producing candidate URLs
        worker: Per-source crawl worker
    """

    def __init__(
        self,
        settings: Settings,
        event_logger: ScrapingEventLogger,
        source_repo: SourceRepository,
        job_repo: ScrapingJobRepository,
        article_repo: ScrapedArticleRepository,
        persister: ArticlePersister,
        reconciler: Reconciler,
        feed_reader: FeedReader,
        worker: SourceCrawlWorker
    ):
        self.settings = settings
        self.event_logger = event_logger
        self.source_repo = source_repo
        self.job_repo = job_repo
        self.article_repo = article_repo
        self.persister = persister
        self.reconciler = reconciler
        self.feed_reader = feed_reader
        self.worker = worker

    @classmethod
    def build(
        cls,
        settings: Settings,
        db: DatabaseConnection,
        correlation_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "JobOrchestrator":
        """Wire an orchestrator and its collaborators against one database connection."""
        log_repo = ScrapingLogRepository(db)
        article_repo = ScrapedArticleRepository(db)
        event_logger = ScrapingEventLogger(log_repo, correlation_id=correlation_id)
        return cls(
            settings=settings,
            event_logger=event_logger,
            source_repo=SourceRepository(db),
            job_repo=ScrapingJobRepository(db),
            article_repo=article_repo,
            persister=ArticlePersister(settings, event_logger, article_repo, db),
            reconciler=Reconciler(settings, event_logger, article_repo, log_repo),
            feed_reader=FeedReader(settings, transport=transport),
            worker=SourceCrawlWorker(
                settings,
                event_logger,
                fetcher_factory=lambda source: PageFetcher(settings, source, transport=transport),
                extractor_factory=lambda: ArticleExtractor(settings)
            )
        )

    @property
    def correlation_id(self) -> Optional[str]:
        return self.event_logger.correlation_id

    def validate_request(self, source_names: Sequence[str], articles_per_source: int) -> List[str]:
        """Check a job request and return the cleaned source names.

        Raises:
            ValidationError: If the source list is empty, too long or repeats a
                name, or the count is outside 1..MAX_ARTICLES_PER_SOURCE
        """
        names = [name.strip() for name in source_names if name and name.strip()]
        if not names:
            raise ValidationError("At least one source is required", {"sources": list(source_names)})
        if len(set(names)) != len(names):
            raise ValidationError("Source list contains duplicates", {"sources": names})
        if len(names) > self.settings.MAX_SOURCES_PER_JOB:
            raise ValidationError(
                f"At most {self.settings.MAX_SOURCES_PER_JOB} sources per job",
                {"source_count": len(names)}
            )
        if not 1 <= articles_per_source <= self.settings.MAX_ARTICLES_PER_SOURCE:
            raise ValidationError(
                f"articles_per_source must be between 1 and {self.settings.MAX_ARTICLES_PER_SOURCE}",
                {"articles_per_source": articles_per_source}
            )
        return names

    async def run_job(
        self,
        source_names: Sequence[str],
        articles_per_source: int,
        job_id: Optional[UUID] = None
    ) -> JobResult:
        """Run a job end to end.

        When ``job_id`` is given the job must already exist in ``new`` (created
        by the trigger endpoint); otherwise a new job is created.

        Raises:
            ValidationError: On an invalid request, before any job is created
            JobExecutionError: If an unexpected error aborts the job
        """
        names = self.validate_request(source_names, articles_per_source)
        if job_id is None:
            job = await self.job_repo.create_job(names, articles_per_source, correlation_id=self.correlation_id)
        else:
            job = await self.job_repo.get_job(job_id)

        job = await self.job_repo.mark_in_progress(job.id)
        try:
            return await self._execute(job, names)
        except Exception as e:
            logger.error(
                "Scraping job failed",
                extra={
                    "correlation_id": self.correlation_id,
                    "job_id": str(job.id),
                    "error": str(e),
                    "error_type": type(e).__name__
                },
                exc_info=True
            )
            await self.job_repo.mark_failed(job.id, str(e))
            await self.event_logger.job_event(
                job.id, "job_failed", f"Job failed: {e}", level=LogLevel.ERROR,
                error=str(e), error_type=type(e).__name__
            )
            raise JobExecutionError(str(job.id), str(e)) from e

    async def run_existing_job(self, job_id: UUID) -> JobResult:
        """Run a job created earlier, using its stored request."""
        job = await self.job_repo.get_job(job_id)
        return await self.run_job(job.sources_requested, job.articles_per_source, job_id=job.id)

    async def _execute(self, job: ScrapingJob, names: List[str]) -> JobResult:
        started = time.monotonic()
        await self.event_logger.job_event(
            job.id, "job_started", f"Job started for {len(names)} sources",
            sources=names, articles_per_source=job.articles_per_source
        )

        await self.event_logger.phase(job.id, Phase.INITIALIZATION, source_count=len(names))
        sources = await self.source_repo.get_by_names(names)

        await self.event_logger.phase(job.id, Phase.EXTRACTION)
        settled = await asyncio.gather(
            *(self._run_source(job, name, sources.get(name)) for name in names),
            return_exceptions=True
        )
        outcomes: Dict[str, SourceOutcome] = {}
        for name, outcome in zip(names, settled):
            if isinstance(outcome, BaseException):
                source = sources.get(name)
                outcome = await self._source_failed(job, name, source.id if source else None, outcome)
            outcomes[name] = outcome

        await self.event_logger.phase(job.id, Phase.PERSISTENCE)
        succeeded = [outcome.result for outcome in outcomes.values() if outcome.succeeded]
        persistence = await self.persister.persist(job, succeeded)

        await self.event_logger.phase(job.id, Phase.VERIFICATION)
        report = await self.reconciler.verify(job, succeeded, persistence)

        await self.event_logger.phase(job.id, Phase.COMPLETION)
        status = derive_job_status(outcomes, persistence)
        summary = self._source_summary(outcomes, persistence, report)
        total_errors = sum(entry["errors"] for entry in summary.values())
        job = await self.job_repo.finalize_job(
            job.id,
            status=status,
            total_articles_scraped=report.total_actual,
            total_errors=total_errors,
            source_summary=summary,
            reconciliation_passed=report.passed
        )

        duration = time.monotonic() - started
        target = len(names) * job.articles_per_source
        await self.event_logger.log(
            "Final job metrics",
            job_id=job.id,
            event_type=EventType.JOB_METRICS,
            event_name="final_metrics",
            status=status,
            sources=summary,
            total_saved=report.total_actual,
            total_errors=total_errors,
            target=target,
            actual_success_rate=round(report.total_actual / target, 4) if target else 0.0,
            duration_seconds=round(duration, 3)
        )
        await self.event_logger.job_event(
            job.id,
            "job_completed",
            f"Job completed with status {status.value}",
            level=LogLevel.INFO if status == JobStatus.SUCCESSFUL else LogLevel.WARNING,
            status=status,
            reconciliation_passed=report.passed
        )
        logger.info(
            "Scraping job completed",
            extra={
                "correlation_id": self.correlation_id,
                "job_id": str(job.id),
                "status": status.value,
                "total_saved": report.total_actual,
                "reconciliation_passed": report.passed,
                "duration_seconds": round(duration, 3)
            }
        )
        return JobResult(
            job_id=job.id,
            status=status,
            outcomes=outcomes,
            persistence=persistence,
            report=report,
            duration_seconds=duration,
            source_summary=summary
        )

    async def _run_source(self, job: ScrapingJob, name: str, source: Optional[Source]) -> SourceOutcome:
        """Build candidates for one source and crawl them; raises on source-fatal errors."""
        if source is None:
            raise SourceNotFoundError(name)

        await self.event_logger.source_event(job.id, source.id, "source_started", f"Source {name} started")
        items = await self.feed_reader.fetch_items(source, correlation_id=self.correlation_id)

        margin = self.settings.candidate_multiplier_for(source.candidate_multiplier)
        scan_limit = int(job.articles_per_source * max(self.settings.CANDIDATE_SCAN_MULTIPLIER, margin)) + 1
        existing = await self.article_repo.existing_urls(item.url for item in items[:scan_limit])
        candidates, already_stored = select_candidates(
            items,
            existing,
            job_id=job.id,
            source_id=source.id,
            source_name=source.name,
            articles_per_source=job.articles_per_source,
            margin=margin,
            scan_multiplier=self.settings.CANDIDATE_SCAN_MULTIPLIER,
            correlation_id=self.correlation_id
        )
        await self.event_logger.source_event(
            job.id, source.id, "candidates_built", f"Built {len(candidates)} candidates for {name}",
            feed_items=len(items), candidates=len(candidates), already_stored=already_stored, margin=margin
        )

        result = await self.worker.run(job.id, source, candidates)
        await self.event_logger.source_event(
            job.id, source.id, "source_completed",
            f"Source {name} extracted {len(result.extracted)} of {len(candidates)} candidates",
            level=LogLevel.WARNING if result.timed_out else LogLevel.INFO,
            extracted=len(result.extracted),
            errors=result.errors,
            timed_out=result.timed_out,
            queue_name=result.queue_name,
            duration_ms=result.duration_ms
        )
        return SourceOutcome(
            source_name=name,
            source_id=source.id,
            result=result,
            feed_items=len(items),
            candidates=len(candidates),
            already_stored=already_stored
        )

    async def _source_failed(
        self,
        job: ScrapingJob,
        name: str,
        source_id: Optional[UUID],
        error: BaseException
    ) -> SourceOutcome:
        fatal = isinstance(error, SourceFatalError)
        message = error.message if isinstance(error, BaseAppException) else str(error)
        if not fatal:
            logger.error(
                "Unexpected error in source task",
                extra={
                    "correlation_id": self.correlation_id,
                    "job_id": str(job.id),
                    "source_name": name,
                    "error": message,
                    "error_type": type(error).__name__
                },
                exc_info=error
            )
        await self.event_logger.source_event(
            job.id, source_id, "source_failed", f"Source {name} failed: {message}",
            level=LogLevel.ERROR,
            source_name=name,
            error=message,
            error_type=type(error).__name__,
            source_fatal=fatal
        )
        return SourceOutcome(source_name=name, source_id=source_id, error=error)

    @staticmethod
    def _source_summary(
        outcomes: Dict[str, SourceOutcome],
        persistence: Dict[UUID, SourcePersistenceResult],
        report: ReconciliationReport
    ) -> Dict[str, Any]:
        failed = set(failed_sources(outcomes, persistence))
        summary = {}
        for name, outcome in outcomes.items():
            persisted = persistence.get(outcome.source_id) if outcome.source_id else None
            record = report.record_for(outcome.source_id) if outcome.source_id else None
            errors = (outcome.result.errors if outcome.result else 0) + (persisted.failed_count if persisted else 0)
            if outcome.error is not None:
                errors += 1
            summary[name] = {
                "source_id": str(outcome.source_id) if outcome.source_id else None,
                "status": "failed" if name in failed else "succeeded",
                "candidates": outcome.candidates,
                "already_stored": outcome.already_stored,
                "extracted": len(outcome.result.extracted) if outcome.result else 0,
                "saved": record.actual_count if record else 0,
                "claimed": persisted.saved_count if persisted else 0,
                "duplicates_skipped": outcome.already_stored + (persisted.duplicates_skipped if persisted else 0),
                "capped": persisted.capped_count if persisted else 0,
                "errors": errors,
                "timed_out": outcome.result.timed_out if outcome.result else False,
                "error": (
                    str(outcome.error) if outcome.error is not None
                    else persisted.error if persisted and persisted.transaction_failed else None
                ),
            }
        return summary
