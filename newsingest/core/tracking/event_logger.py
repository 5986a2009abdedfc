"""Structured, append-only event log for scraping jobs.

Every event is written to the ``scraping_logs`` table and mirrored to the
process log through structlog. A failed write to the table is reported to the
process log and never propagates into the scraping code.

Event types and names
---------------------
``job_lifecycle``       job_started, job_completed, job_failed
``phase_transition``    initialization, extraction, persistence, verification, completion
``source_lifecycle``    source_started, candidates_built, source_completed, source_failed,
                        source_timeout, queue_teardown_failed, fetcher_teardown_failed,
                        attribution_anomaly
``article_lifecycle``   article_extracted, article_extraction_failed,
                        article_persisted, article_skipped, article_persist_failed
``http_error``          fetch_failed
``persistence_summary`` source_persisted, source_persistence_failed
``database_verification`` source_verified
``reconciliation``      reconciliation_match, reconciliation_mismatch, reconciliation_summary
``job_metrics``         final_metrics
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog

from newsingest.database.models.scraping_log import LogLevel
from newsingest.database.repositories.log_repo import ScrapingLogRepository

logger = structlog.get_logger(__name__)


class EventType(str, Enum):
    JOB_LIFECYCLE = "job_lifecycle"
    PHASE_TRANSITION = "phase_transition"
    SOURCE_LIFECYCLE = "source_lifecycle"
    ARTICLE_LIFECYCLE = "article_lifecycle"
    HTTP_ERROR = "http_error"
    PERSISTENCE_SUMMARY = "persistence_summary"
    DATABASE_VERIFICATION = "database_verification"
    RECONCILIATION = "reconciliation"
    JOB_METRICS = "job_metrics"


class Phase(str, Enum):
    INITIALIZATION = "initialization"
    EXTRACTION = "extraction"
    PERSISTENCE = "persistence"
    VERIFICATION = "verification"
    COMPLETION = "completion"


class ArticleEvent(str, Enum):
    EXTRACTED = "article_extracted"
    EXTRACTION_FAILED = "article_extraction_failed"
    PERSISTED = "article_persisted"
    SKIPPED = "article_skipped"
    PERSIST_FAILED = "article_persist_failed"


EXTRACTION_TERMINAL_EVENTS = frozenset({ArticleEvent.EXTRACTED.value, ArticleEvent.EXTRACTION_FAILED.value})
PERSISTENCE_TERMINAL_EVENTS = frozenset({
    ArticleEvent.PERSISTED.value,
    ArticleEvent.SKIPPED.value,
    ArticleEvent.PERSIST_FAILED.value,
})


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value


@dataclass
class LogEntry:
    """An event not yet written, used when events are buffered until commit."""

    message: str
    level: str = LogLevel.INFO
    job_id: Optional[UUID] = None
    source_id: Optional[UUID] = None
    event_type: Optional[str] = None
    event_name: Optional[str] = None
    tracking_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_row(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "level": self.level,
            "job_id": self.job_id,
            "source_id": self.source_id,
            "event_type": self.event_type,
            "event_name": self.event_name,
            "tracking_id": self.tracking_id,
            "additional_data": _jsonable(self.data),
        }


class ScrapingEventLogger:
    """Writes events for one job run (or for ad-hoc use with explicit job IDs)."""

    def __init__(self, log_repo: ScrapingLogRepository, correlation_id: Optional[str] = None):
        self.log_repo = log_repo
        self.correlation_id = correlation_id

    async def log(
        self,
        message: str,
        level: str = LogLevel.INFO,
        job_id: Optional[UUID] = None,
        source_id: Optional[UUID] = None,
        event_type: Optional[str] = None,
        event_name: Optional[str] = None,
        tracking_id: Optional[str] = None,
        **data: Any
    ) -> Optional[int]:
        """Append one event; returns its log ID, or None if the write failed."""
        entry = LogEntry(
            message=message,
            level=level,
            job_id=job_id,
            source_id=source_id,
            event_type=_jsonable(event_type),
            event_name=_jsonable(event_name),
            tracking_id=tracking_id,
            data=data
        )
        self._mirror(entry)
        try:
            row = entry.to_row()
            record = await self.log_repo.append(**row)
            return record.id
        except Exception as e:
            logger.error(
                "Event log write failed",
                correlation_id=self.correlation_id,
                event_type=entry.event_type,
                event_name=entry.event_name,
                job_id=str(job_id) if job_id else None,
                error=str(e),
                error_type=type(e).__name__
            )
            return None

    async def log_many(self, entries: List[LogEntry]) -> int:
        """Append buffered events in order, in one write."""
        if not entries:
            return 0
        for entry in entries:
            self._mirror(entry)
        try:
            return await self.log_repo.append_many([entry.to_row() for entry in entries])
        except Exception as e:
            logger.error(
                "Event log batch write failed",
                correlation_id=self.correlation_id,
                entries=len(entries),
                error=str(e),
                error_type=type(e).__name__
            )
            return 0

    def _mirror(self, entry: LogEntry) -> None:
        log_method = getattr(logger, entry.level if entry.level in LogLevel.ALL else "info")
        log_method(
            entry.message,
            correlation_id=self.correlation_id,
            job_id=str(entry.job_id) if entry.job_id else None,
            source_id=str(entry.source_id) if entry.source_id else None,
            event_type=entry.event_type,
            event_name=entry.event_name,
            tracking_id=entry.tracking_id,
            **_jsonable(entry.data)
        )

    # Convenience wrappers

    async def phase(self, job_id: UUID, phase: Phase, **data: Any) -> Optional[int]:
        return await self.log(
            f"Phase: {phase.value}",
            job_id=job_id,
            event_type=EventType.PHASE_TRANSITION,
            event_name=phase,
            phase=phase,
            **data
        )

    async def job_event(self, job_id: UUID, name: str, message: str, level: str = LogLevel.INFO, **data: Any) -> Optional[int]:
        return await self.log(
            message,
            level=level,
            job_id=job_id,
            event_type=EventType.JOB_LIFECYCLE,
            event_name=name,
            **data
        )

    async def source_event(
        self,
        job_id: UUID,
        source_id: Optional[UUID],
        name: str,
        message: str,
        level: str = LogLevel.INFO,
        **data: Any
    ) -> Optional[int]:
        return await self.log(
            message,
            level=level,
            job_id=job_id,
            source_id=source_id,
            event_type=EventType.SOURCE_LIFECYCLE,
            event_name=name,
            **data
        )

    async def article_event(
        self,
        job_id: UUID,
        source_id: UUID,
        tracking_id: str,
        event: ArticleEvent,
        message: str,
        level: str = LogLevel.INFO,
        **data: Any
    ) -> Optional[int]:
        return await self.log(
            message,
            level=level,
            job_id=job_id,
            source_id=source_id,
            event_type=EventType.ARTICLE_LIFECYCLE,
            event_name=event,
            tracking_id=tracking_id,
            **data
        )

    async def http_error(
        self,
        job_id: UUID,
        source_id: UUID,
        tracking_id: Optional[str],
        url: str,
        status_code: Optional[int],
        error: str
    ) -> Optional[int]:
        return await self.log(
            f"HTTP error fetching {url}",
            level=LogLevel.WARNING,
            job_id=job_id,
            source_id=source_id,
            event_type=EventType.HTTP_ERROR,
            event_name="fetch_failed",
            tracking_id=tracking_id,
            url=url,
            status_code=status_code,
            error=error
        )

    @staticmethod
    def article_entry(
        job_id: UUID,
        source_id: UUID,
        tracking_id: str,
        event: ArticleEvent,
        message: str,
        level: str = LogLevel.INFO,
        **data: Any
    ) -> LogEntry:
        return LogEntry(
            message=message,
            level=level,
            job_id=job_id,
            source_id=source_id,
            event_type=EventType.ARTICLE_LIFECYCLE.value,
            event_name=event.value,
            tracking_id=tracking_id,
            data=data
        )
