"""Read-side queries over the event log, used by the API and for troubleshooting."""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import UUID

from newsingest.core.tracking.event_logger import (
    EXTRACTION_TERMINAL_EVENTS,
    PERSISTENCE_TERMINAL_EVENTS,
    ArticleEvent,
    EventType,
)
from newsingest.database.repositories.log_repo import ScrapingLogRepository


@dataclass
class LifecycleViolation:
    tracking_id: str
    extraction_events: List[str]
    persistence_events: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tracking_id": self.tracking_id,
            "extraction_events": self.extraction_events,
            "persistence_events": self.persistence_events,
        }


@dataclass
class LifecycleAudit:
    tracking_ids: int = 0
    violations: List[LifecycleViolation] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.violations


class LogQueryService:
    def __init__(self, log_repo: ScrapingLogRepository):
        self.log_repo = log_repo

    async def timeline(
        self,
        job_id: UUID,
        after_id: Optional[int] = None,
        level: Optional[str] = None,
        event_type: Optional[str] = None,
        source_id: Optional[UUID] = None,
        limit: int = 500
    ) -> List[Dict[str, Any]]:
        """Events of a job in append order, safe to tail with ``after_id``."""
        entries = await self.log_repo.list_for_job(
            job_id, after_id=after_id, level=level, event_type=event_type, source_id=source_id, limit=limit
        )
        return [
            {
                "id": entry.id,
                "timestamp": entry.timestamp,
                "level": entry.level,
                "message": entry.message,
                "payload": entry.payload,
            }
            for entry in entries
        ]

    async def error_summary(self, job_id: UUID) -> List[Dict[str, Any]]:
        rows = await self.log_repo.error_summary(job_id)
        return [
            {"level": level, "event_type": event_type, "event_name": event_name, "count": count}
            for level, event_type, event_name, count in rows
        ]

    async def source_performance(self, job_id: UUID) -> List[Dict[str, Any]]:
        """Per-source article outcomes, counted from lifecycle events."""
        counts = await self.log_repo.lifecycle_counts(job_id)
        performance = []
        for source_id, events in counts.items():
            extracted = events.get(ArticleEvent.EXTRACTED.value, 0)
            extraction_failed = events.get(ArticleEvent.EXTRACTION_FAILED.value, 0)
            attempted = extracted + extraction_failed
            performance.append({
                "source_id": str(source_id) if source_id else None,
                "extracted": extracted,
                "extraction_failed": extraction_failed,
                "persisted": events.get(ArticleEvent.PERSISTED.value, 0),
                "skipped": events.get(ArticleEvent.SKIPPED.value, 0),
                "persist_failed": events.get(ArticleEvent.PERSIST_FAILED.value, 0),
                "extraction_success_rate": round(extracted / attempted, 4) if attempted else None,
            })
        return performance

    async def http_errors(self, job_id: UUID, limit: int = 200) -> List[Dict[str, Any]]:
        entries = await self.log_repo.list_for_job(job_id, event_type=EventType.HTTP_ERROR.value, limit=limit)
        return [dict(entry.payload, id=entry.id, timestamp=entry.timestamp) for entry in entries]

    async def lifecycle_audit(self, job_id: UUID) -> LifecycleAudit:
        """Flag tracking IDs with more than one terminal event in either phase."""
        extraction: Dict[str, List[str]] = defaultdict(list)
        persistence: Dict[str, List[str]] = defaultdict(list)
        for tracking_id, event_name in await self.log_repo.lifecycle_events_by_tracking_id(job_id):
            if event_name in EXTRACTION_TERMINAL_EVENTS:
                extraction[tracking_id].append(event_name)
            elif event_name in PERSISTENCE_TERMINAL_EVENTS:
                persistence[tracking_id].append(event_name)

        tracking_ids = set(extraction) | set(persistence)
        audit = LifecycleAudit(tracking_ids=len(tracking_ids))
        for tracking_id in sorted(tracking_ids):
            if len(extraction[tracking_id]) > 1 or len(persistence[tracking_id]) > 1:
                audit.violations.append(LifecycleViolation(
                    tracking_id=tracking_id,
                    extraction_events=extraction[tracking_id],
                    persistence_events=persistence[tracking_id]
                ))
        return audit

