"""Post-persistence verification and reconciliation.

Storage is the ground truth. For every source the reconciler counts the rows
actually stored for the job and compares that number with what persistence
claimed and with what the event log says was persisted. A mismatch is an alarm
logged at error level, never an exception, and never changes the job status.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from newsingest.core.crawler.worker import SourceResult
from newsingest.core.persistence.persister import SourcePersistenceResult
from newsingest.core.tracking.event_logger import ArticleEvent, EventType, ScrapingEventLogger
from newsingest.database.models.scraping_job import ScrapingJob
from newsingest.database.models.scraping_log import LogLevel
from newsingest.database.repositories.article_repo import ScrapedArticleRepository
from newsingest.database.repositories.log_repo import ScrapingLogRepository
from newsingest.shared.config import Settings

logger = logging.getLogger(__name__)

CLAIM_MISMATCH = "claim_mismatch"
PHANTOM_SAVES = "phantom_saves"
MISSING_LOGS = "missing_logs"


@dataclass
class ReconciliationRecord:
    source_id: UUID
    source_name: Optional[str]
    extracted_count: int
    claimed_count: int
    actual_count: int
    logged_persisted_count: int
    capped_count: int = 0
    duplicates_skipped: int = 0
    discrepancy_types: List[str] = field(default_factory=list)
    sample_ids: List[str] = field(default_factory=list)

    @property
    def matches(self) -> bool:
        return not self.discrepancy_types

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": str(self.source_id),
            "source_name": self.source_name,
            "extracted_count": self.extracted_count,
            "claimed_count": self.claimed_count,
            "actual_count": self.actual_count,
            "logged_persisted_count": self.logged_persisted_count,
            "capped_count": self.capped_count,
            "duplicates_skipped": self.duplicates_skipped,
            "matches": self.matches,
            "discrepancy_types": list(self.discrepancy_types),
            "sample_ids": list(self.sample_ids),
        }


@dataclass
class ReconciliationReport:
    job_id: UUID
    records: List[ReconciliationRecord] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def passed(self) -> bool:
        return all(record.matches for record in self.records)

    @property
    def discrepancies(self) -> int:
        return sum(1 for record in self.records if not record.matches)

    @property
    def total_actual(self) -> int:
        return sum(record.actual_count for record in self.records)

    def record_for(self, source_id: UUID) -> Optional[ReconciliationRecord]:
        for record in self.records:
            if record.source_id == source_id:
                return record
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": str(self.job_id),
            "passed": self.passed,
            "discrepancies": self.discrepancies,
            "total_actual": self.total_actual,
            "generated_at": self.generated_at.isoformat(),
            "sources": [record.to_dict() for record in self.records],
        }


def classify_discrepancies(claimed: int, actual: int, logged: int) -> List[str]:
    """Name every way the three counts disagree; empty when they agree."""
    found = []
    if claimed != actual:
        found.append(CLAIM_MISMATCH)
    if actual < logged:
        found.append(PHANTOM_SAVES)
    elif actual > logged:
        found.append(MISSING_LOGS)
    return found


class Reconciler:
    """Compares persistence claims and lifecycle logs against storage."""

    def __init__(
        self,
        settings: Settings,
        event_logger: ScrapingEventLogger,
        article_repo: ScrapedArticleRepository,
        log_repo: ScrapingLogRepository
    ):
        self.settings = settings
        self.event_logger = event_logger
        self.article_repo = article_repo
        self.log_repo = log_repo

    async def verify(
        self,
        job: ScrapingJob,
        source_results: Sequence[SourceResult],
        persistence_results: Dict[UUID, SourcePersistenceResult]
    ) -> ReconciliationReport:
        """Reconcile every source of a finished persistence phase and log the outcome."""
        lifecycle = await self.log_repo.lifecycle_counts(job.id)
        names = {result.source_id: result.source_name for result in source_results}
        extracted = {result.source_id: len(result.extracted) for result in source_results}

        # Rows stored for the job under a source that reported nothing are checked too
        stored = await self.article_repo.counts_by_source_for_job(job.id)
        source_ids = list(names) + [source_id for source_id in stored if source_id not in names]

        report = ReconciliationReport(job_id=job.id)
        for source_id in source_ids:
            persisted = persistence_results.get(source_id)
            actual = await self.article_repo.count_for_job_source(job.id, source_id)
            record = await self._record(
                job.id,
                source_id,
                source_name=names.get(source_id),
                extracted_count=extracted.get(source_id, 0),
                claimed_count=persisted.saved_count if persisted else 0,
                actual_count=actual,
                logged_persisted_count=lifecycle.get(source_id, {}).get(ArticleEvent.PERSISTED.value, 0),
                capped_count=persisted.capped_count if persisted else 0,
                duplicates_skipped=persisted.duplicates_skipped if persisted else 0
            )
            report.records.append(record)
            await self._log_record(job.id, record)

        await self.event_logger.log(
            f"Reconciliation {'passed' if report.passed else 'failed'} for {len(report.records)} sources",
            level=LogLevel.INFO if report.passed else LogLevel.ERROR,
            job_id=job.id,
            event_type=EventType.RECONCILIATION,
            event_name="reconciliation_summary",
            passed=report.passed,
            discrepancies=report.discrepancies,
            total_actual=report.total_actual,
            sources=[record.to_dict() for record in report.records]
        )
        return report

    async def build_report(self, job_id: UUID) -> ReconciliationReport:
        """Recompute a report from storage and the event log without writing anything."""
        lifecycle = await self.log_repo.lifecycle_counts(job_id)
        stored = await self.article_repo.counts_by_source_for_job(job_id)
        summaries = await self.log_repo.list_for_job(
            job_id, event_type=EventType.PERSISTENCE_SUMMARY.value, limit=self.settings.MAX_SOURCES_PER_JOB * 2
        )
        claims: Dict[UUID, Dict[str, Any]] = {
            entry.source_id: entry.additional_data or {} for entry in summaries if entry.source_id is not None
        }

        source_ids = list(dict.fromkeys(
            [source_id for source_id in lifecycle if source_id is not None] + list(claims) + list(stored)
        ))
        report = ReconciliationReport(job_id=job_id)
        for source_id in source_ids:
            claim = claims.get(source_id, {})
            events = lifecycle.get(source_id, {})
            report.records.append(await self._record(
                job_id,
                source_id,
                source_name=claim.get("source_name"),
                extracted_count=events.get(ArticleEvent.EXTRACTED.value, 0),
                claimed_count=claim.get("saved_count", 0),
                actual_count=stored.get(source_id, 0),
                logged_persisted_count=events.get(ArticleEvent.PERSISTED.value, 0),
                capped_count=claim.get("capped_count", 0),
                duplicates_skipped=claim.get("duplicates_skipped", 0)
            ))
        return report

    async def _record(self, job_id: UUID, source_id: UUID, **counts: Any) -> ReconciliationRecord:
        record = ReconciliationRecord(source_id=source_id, **counts)
        record.discrepancy_types = classify_discrepancies(
            record.claimed_count, record.actual_count, record.logged_persisted_count
        )
        if record.discrepancy_types:
            sample = await self.article_repo.ids_for_job_source(
                job_id, source_id, limit=self.settings.RECONCILIATION_SAMPLE_SIZE
            )
            record.sample_ids = [str(article_id) for article_id in sample]
        return record

    async def _log_record(self, job_id: UUID, record: ReconciliationRecord) -> None:
        await self.event_logger.log(
            f"Verified storage for {record.source_name or record.source_id}",
            job_id=job_id,
            source_id=record.source_id,
            event_type=EventType.DATABASE_VERIFICATION,
            event_name="source_verified",
            actual_count=record.actual_count,
            claimed_count=record.claimed_count
        )
        if record.matches:
            await self.event_logger.log(
                f"Counts match for {record.source_name or record.source_id}",
                job_id=job_id,
                source_id=record.source_id,
                event_type=EventType.RECONCILIATION,
                event_name="reconciliation_match",
                actual_count=record.actual_count
            )
            return

        logger.error(
            "Reconciliation mismatch",
            extra={
                "job_id": str(job_id),
                "source_id": str(record.source_id),
                "claimed_count": record.claimed_count,
                "actual_count": record.actual_count,
                "logged_persisted_count": record.logged_persisted_count
            }
        )
        await self.event_logger.log(
            f"Reconciliation mismatch for {record.source_name or record.source_id}: "
            f"claimed {record.claimed_count}, stored {record.actual_count}, logged {record.logged_persisted_count}",
            level=LogLevel.ERROR,
            job_id=job_id,
            source_id=record.source_id,
            event_type=EventType.RECONCILIATION,
            event_name="reconciliation_mismatch",
            claimed_count=record.claimed_count,
            actual_count=record.actual_count,
            logged_persisted_count=record.logged_persisted_count,
            discrepancy_types=record.discrepancy_types,
            sample_ids=record.sample_ids
        )
