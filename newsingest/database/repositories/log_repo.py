"""Append-only access to the structured event log (``scraping_logs``).

There is deliberately no update or delete method.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple
from uuid import UUID
from sqlalchemy import select, func

from newsingest.database.models.scraping_log import ScrapingLog
from newsingest.database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

ARTICLE_LIFECYCLE = "article_lifecycle"
FAILURE_EVENTS = ("article_extraction_failed", "article_persist_failed", "source_failed")


class ScrapingLogRepository(BaseRepository[ScrapingLog]):
    """Repository for the event log."""

    model_class = ScrapingLog

    async def append(
        self,
        message: str,
        level: str,
        job_id: Optional[UUID] = None,
        source_id: Optional[UUID] = None,
        event_type: Optional[str] = None,
        event_name: Optional[str] = None,
        tracking_id: Optional[str] = None,
        additional_data: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None
    ) -> ScrapingLog:
        data = {
            "job_id": job_id,
            "source_id": source_id,
            "level": level,
            "message": message,
            "event_type": event_type,
            "event_name": event_name,
            "tracking_id": tracking_id,
            "additional_data": additional_data or {},
        }
        if timestamp is not None:
            data["timestamp"] = timestamp
        return await self.create(data)

    async def append_many(self, entries: List[Dict[str, Any]]) -> int:
        """Append several events in one transaction, preserving their order."""
        if not entries:
            return 0
        async with self.session() as session:
            async with session.begin():
                for entry in entries:
                    session.add(ScrapingLog(**entry))
                await session.flush()
        return len(entries)

    async def list_for_job(
        self,
        job_id: UUID,
        after_id: Optional[int] = None,
        level: Optional[str] = None,
        event_type: Optional[str] = None,
        source_id: Optional[UUID] = None,
        limit: int = 500
    ) -> List[ScrapingLog]:
        """Events of a job in append order."""
        async with self.session() as session:
            query = select(ScrapingLog).where(ScrapingLog.job_id == job_id)
            if after_id is not None:
                query = query.where(ScrapingLog.id > after_id)
            if level:
                query = query.where(ScrapingLog.level == level)
            if event_type:
                query = query.where(ScrapingLog.event_type == event_type)
            if source_id is not None:
                query = query.where(ScrapingLog.source_id == source_id)
            query = query.order_by(ScrapingLog.id).limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def lifecycle_counts(self, job_id: UUID) -> Dict[UUID, Dict[str, int]]:
        """Article lifecycle event counts per source: ``{source_id: {event_name: n}}``."""
        async with self.session() as session:
            result = await session.execute(
                select(ScrapingLog.source_id, ScrapingLog.event_name, func.count())
                .where(ScrapingLog.job_id == job_id, ScrapingLog.event_type == ARTICLE_LIFECYCLE)
                .group_by(ScrapingLog.source_id, ScrapingLog.event_name)
            )
            counts: Dict[UUID, Dict[str, int]] = {}
            for source_id, event_name, count in result.all():
                counts.setdefault(source_id, {})[event_name] = count
            return counts

    async def failure_counts_by_source(self, job_id: UUID) -> Dict[Optional[UUID], int]:
        """Failed candidates, failed writes and source failures per source, whatever their level."""
        async with self.session() as session:
            result = await session.execute(
                select(ScrapingLog.source_id, func.count())
                .where(ScrapingLog.job_id == job_id, ScrapingLog.event_name.in_(FAILURE_EVENTS))
                .group_by(ScrapingLog.source_id)
            )
            return {source_id: count for source_id, count in result.all()}

    async def error_summary(self, job_id: UUID) -> List[Tuple[str, Optional[str], Optional[str], int]]:
        """``(level, event_type, event_name, count)`` for warning and error events."""
        async with self.session() as session:
            result = await session.execute(
                select(ScrapingLog.level, ScrapingLog.event_type, ScrapingLog.event_name, func.count())
                .where(ScrapingLog.job_id == job_id, ScrapingLog.level.in_(("warning", "error")))
                .group_by(ScrapingLog.level, ScrapingLog.event_type, ScrapingLog.event_name)
                .order_by(func.count().desc())
            )
            return [tuple(row) for row in result.all()]

    async def lifecycle_events_by_tracking_id(self, job_id: UUID) -> List[Tuple[str, str]]:
        """``(tracking_id, event_name)`` pairs for every article lifecycle event of a job."""
        async with self.session() as session:
            result = await session.execute(
                select(ScrapingLog.tracking_id, ScrapingLog.event_name)
                .where(
                    ScrapingLog.job_id == job_id,
                    ScrapingLog.event_type == ARTICLE_LIFECYCLE,
                    ScrapingLog.tracking_id.is_not(None)
                )
                .order_by(ScrapingLog.id)
            )
            return [tuple(row) for row in result.all()]
