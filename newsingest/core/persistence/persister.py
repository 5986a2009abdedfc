"""Transactional persistence of extracted articles.

For each source the extracted list is truncated to the job's
``articles_per_source`` (first N in extraction completion order) before anything
is written. The kept articles are inserted in a single transaction per source
with a SAVEPOINT per article, so one bad row does not abort the batch and a
source whose transaction fails leaves nothing behind.

Lifecycle events for the batch are buffered and written after the transaction
ends, so the event log never claims a row that was rolled back.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from newsingest.core.crawler.worker import ExtractedArticle, SourceResult
from newsingest.core.tracking.event_logger import (
    ArticleEvent,
    EventType,
    LogEntry,
    ScrapingEventLogger,
)
from newsingest.database.connection import DatabaseConnection, get_database_connection
from newsingest.database.models.scraping_job import ScrapingJob
from newsingest.database.models.scraping_log import LogLevel
from newsingest.database.repositories.article_repo import ScrapedArticleRepository
from newsingest.shared.config import Settings
from newsingest.shared.exceptions import PersistenceError

logger = logging.getLogger(__name__)


@dataclass
class SourcePersistenceResult:
    source_id: UUID
    source_name: str
    extracted_count: int = 0
    saved_count: int = 0
    duplicates_skipped: int = 0
    capped_count: int = 0
    failed_count: int = 0
    saved_ids: List[UUID] = field(default_factory=list)
    transaction_failed: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_name": self.source_name,
            "extracted_count": self.extracted_count,
            "saved_count": self.saved_count,
            "duplicates_skipped": self.duplicates_skipped,
            "capped_count": self.capped_count,
            "failed_count": self.failed_count,
            "transaction_failed": self.transaction_failed,
            "error": self.error,
        }


class ArticlePersister:
    """Writes each source's extracted batch and reports exactly what was written."""

    def __init__(
        self,
        settings: Settings,
        event_logger: ScrapingEventLogger,
        article_repo: ScrapedArticleRepository,
        db: Optional[DatabaseConnection] = None
    ):
        self.settings = settings
        self.event_logger = event_logger
        self.article_repo = article_repo
        self._db = db

    @property
    def db(self) -> DatabaseConnection:
        return self._db or get_database_connection()

    async def persist(
        self,
        job: ScrapingJob,
        source_results: Sequence[SourceResult]
    ) -> Dict[UUID, SourcePersistenceResult]:
        """Persist every source's batch, one transaction per source."""
        results: Dict[UUID, SourcePersistenceResult] = {}
        for source_result in source_results:
            results[source_result.source_id] = await self.persist_source(job, source_result)
        return results

    async def persist_source(self, job: ScrapingJob, source_result: SourceResult) -> SourcePersistenceResult:
        limit = job.articles_per_source
        kept = source_result.extracted[:limit]
        capped = source_result.extracted[limit:]

        outcome = SourcePersistenceResult(
            source_id=source_result.source_id,
            source_name=source_result.source_name,
            extracted_count=len(source_result.extracted),
            capped_count=len(capped)
        )
        capped_entries = [
            self._entry(job, article, ArticleEvent.SKIPPED, "Skipped: over the per-source cap", reason="capped", limit=limit)
            for article in capped
        ]
        pending: List[LogEntry] = []
        saved_ids: List[UUID] = []

        try:
            await self._write_batch(job, source_result, kept, outcome, pending, saved_ids)
        except PersistenceError as e:
            error_type = e.details.get("error_type", type(e).__name__)
            logger.error(
                "Source persistence transaction failed",
                extra={
                    "job_id": str(job.id),
                    "source_name": source_result.source_name,
                    "error": e.message,
                    "error_type": error_type
                },
                exc_info=True
            )
            outcome.transaction_failed = True
            outcome.error = e.message
            outcome.duplicates_skipped = 0
            outcome.failed_count = len(kept)
            failed_entries = [
                self._entry(
                    job, article, ArticleEvent.PERSIST_FAILED, "Source transaction rolled back",
                    level=LogLevel.ERROR, error=e.message, error_type=error_type
                )
                for article in kept
            ]
            await self.event_logger.log_many(capped_entries + failed_entries)
            await self.event_logger.log(
                f"Persistence failed for {source_result.source_name}",
                level=LogLevel.ERROR,
                job_id=job.id,
                source_id=source_result.source_id,
                event_type=EventType.PERSISTENCE_SUMMARY,
                event_name="source_persistence_failed",
                **outcome.to_dict()
            )
            return outcome

        outcome.saved_count = len(saved_ids)
        outcome.saved_ids = saved_ids
        await self.event_logger.log_many(capped_entries + pending)
        await self.event_logger.log(
            f"Persisted {outcome.saved_count} articles for {source_result.source_name}",
            job_id=job.id,
            source_id=source_result.source_id,
            event_type=EventType.PERSISTENCE_SUMMARY,
            event_name="source_persisted",
            savedCount=outcome.saved_count,
            duplicatesSkipped=outcome.duplicates_skipped,
            cappedCount=outcome.capped_count,
            **outcome.to_dict()
        )
        return outcome

    async def _write_batch(
        self,
        job: ScrapingJob,
        source_result: SourceResult,
        kept: Sequence[ExtractedArticle],
        outcome: SourcePersistenceResult,
        pending: List[LogEntry],
        saved_ids: List[UUID]
    ) -> None:
        """Insert ``kept`` in one transaction, buffering lifecycle events into ``pending``.

        Raises:
            PersistenceError: If the transaction fails; nothing of the batch is kept
        """
        try:
            async with self.db.get_session() as session:
                async with session.begin():
                    batch_urls: Set[str] = set()
                    batch_hashes: Set[str] = set()

                    for article in kept:
                        fields = article.fields
                        reason = self._batch_duplicate(article, batch_urls, batch_hashes)
                        if reason is None:
                            reason = await self.article_repo.find_duplicate(
                                session, article.source_id, article.url, fields.content_hash
                            )
                        if reason is not None:
                            outcome.duplicates_skipped += 1
                            pending.append(self._entry(
                                job, article, ArticleEvent.SKIPPED, "Skipped: duplicate article",
                                reason="duplicate", duplicate_of=reason
                            ))
                            continue

                        try:
                            async with session.begin_nested():
                                row = await self.article_repo.add_article(session, self._row(job, article))
                        except SQLAlchemyError as e:
                            outcome.failed_count += 1
                            logger.warning(
                                "Article insert failed",
                                extra={
                                    "job_id": str(job.id),
                                    "source_name": source_result.source_name,
                                    "url": article.url,
                                    "error": str(e)
                                }
                            )
                            pending.append(self._entry(
                                job, article, ArticleEvent.PERSIST_FAILED, "Article insert failed",
                                level=LogLevel.ERROR, error=str(e), error_type=type(e).__name__
                            ))
                            continue

                        batch_urls.add(article.url)
                        if fields.content_hash:
                            batch_hashes.add(fields.content_hash)
                        saved_ids.append(row.id)
                        pending.append(self._entry(
                            job, article, ArticleEvent.PERSISTED, "Article persisted", article_id=row.id
                        ))
        except Exception as e:
            raise PersistenceError(
                source_result.source_name,
                str(e),
                details={"source_name": source_result.source_name, "error_type": type(e).__name__}
            ) from e

    @staticmethod
    def _batch_duplicate(article: ExtractedArticle, batch_urls: Set[str], batch_hashes: Set[str]) -> Optional[str]:
        if article.url in batch_urls:
            return "source_url"
        if article.fields.content_hash and article.fields.content_hash in batch_hashes:
            return "content_hash"
        return None

    @staticmethod
    def _row(job: ScrapingJob, article: ExtractedArticle) -> Dict[str, Any]:
        fields = article.fields
        return {
            "source_id": article.source_id,
            "source_url": article.url,
            "title": fields.title[:500],
            "content": fields.content,
            "author": fields.author[:255] if fields.author else None,
            "publication_date": fields.published_at,
            "content_hash": fields.content_hash,
            "language": fields.language,
            "job_id": job.id,
            "tracking_id": article.tracking_id,
            "extraction_strategy": fields.strategy,
            "content_length": fields.content_length,
        }

    @staticmethod
    def _entry(
        job: ScrapingJob,
        article: ExtractedArticle,
        event: ArticleEvent,
        message: str,
        level: str = LogLevel.INFO,
        **data: Any
    ) -> LogEntry:
        return ScrapingEventLogger.article_entry(
            job.id, article.source_id, article.tracking_id, event, message, level=level, url=article.url, **data
        )
