"""Source crawl worker: fetch and extract one source's candidates.

Each call to ``SourceCrawlWorker.run`` opens its own ``RequestQueue`` and its
own result buffer, drains the queue with a bounded pool of consumers, and
releases the queue and the HTTP client in ``finally``. A failed release is
logged as a source event and never discards extracted results. Results are
filed under the source ID embedded in each candidate's tracking ID, never
under whichever worker produced them.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from newsingest.core.crawler.candidates import Candidate, source_id_from_tracking_id
from newsingest.core.crawler.extractor import ArticleExtractor, ArticleFields
from newsingest.core.crawler.fetcher import PageFetcher
from newsingest.core.crawler.request_queue import RequestQueue
from newsingest.core.tracking.event_logger import ArticleEvent, ScrapingEventLogger
from newsingest.database.models.scraping_log import LogLevel
from newsingest.database.models.source import Source
from newsingest.shared.config import Settings
from newsingest.shared.exceptions import (
    BaseAppException,
    ExtractionError,
    FetchError,
    RobotsDisallowedError,
)

logger = logging.getLogger(__name__)


@dataclass
class ExtractedArticle:
    tracking_id: str
    source_id: UUID
    source_name: str
    url: str
    fields: ArticleFields
    extracted_at: datetime
    correlation_id: Optional[str] = None


@dataclass
class SourceResult:
    source_id: UUID
    source_name: str
    queue_name: str
    candidates_total: int = 0
    extracted: List[ExtractedArticle] = field(default_factory=list)
    errors: int = 0
    error_details: List[Dict[str, Any]] = field(default_factory=list)
    failed_tracking_ids: List[str] = field(default_factory=list)
    timed_out: bool = False
    duration_ms: int = 0


class _PolitenessGate:
    """Spaces request starts from one source by at least ``delay`` seconds."""

    def __init__(self, delay: float):
        self.delay = delay
        self._lock = asyncio.Lock()
        self._next_at = 0.0

    async def wait(self) -> None:
        if self.delay <= 0:
            return
        async with self._lock:
            loop = asyncio.get_running_loop()
            wait_for = self._next_at - loop.time()
            if wait_for > 0:
                await asyncio.sleep(wait_for)
            self._next_at = loop.time() + self.delay


class SourceCrawlWorker:
    """Drives one source's candidate list through fetch and extraction."""

    def __init__(
        self,
        settings: Settings,
        event_logger: ScrapingEventLogger,
        fetcher_factory: Optional[Callable[[Source], PageFetcher]] = None,
        extractor_factory: Optional[Callable[[], ArticleExtractor]] = None,
        queue_factory: Callable[[UUID, str], RequestQueue] = RequestQueue.open
    ):
        self.settings = settings
        self.event_logger = event_logger
        self.fetcher_factory = fetcher_factory or (lambda source: PageFetcher(settings, source))
        self.extractor_factory = extractor_factory or (lambda: ArticleExtractor(settings))
        self.queue_factory = queue_factory

    async def run(self, job_id: UUID, source: Source, candidates: Sequence[Candidate]) -> SourceResult:
        """Crawl ``candidates`` for ``source``.

        Candidate-level failures are logged and counted; they never raise. Neither
        do failures releasing the queue or the HTTP client.

        Raises:
            RequestQueueError: If the queue cannot be set up (source-fatal)
        """
        started = time.monotonic()
        queue = self.queue_factory(job_id, source.name)
        result = SourceResult(
            source_id=source.id,
            source_name=source.name,
            queue_name=queue.name,
            candidates_total=len(candidates)
        )
        buffer: Dict[UUID, List[ExtractedArticle]] = {}
        in_flight: Dict[str, Candidate] = {}

        try:
            queue.put_all(candidates)
            extractor = self.extractor_factory()
            gate = _PolitenessGate(source.delay_seconds)
            pool_size = min(self.settings.CRAWLER_CONCURRENCY_LIMIT, len(candidates))

            fetcher = self.fetcher_factory(source)
            await fetcher.__aenter__()
            try:
                consumers = [
                    self._consume(queue, fetcher, extractor, gate, job_id, source, buffer, in_flight, result)
                    for _ in range(pool_size)
                ]
                try:
                    async with asyncio.timeout(self.settings.SOURCE_TIMEOUT):
                        await asyncio.gather(*consumers)
                except TimeoutError:
                    result.timed_out = True
                    await self._handle_timeout(job_id, source, queue, in_flight, result)
            finally:
                await self._release(
                    job_id, source, "fetcher_teardown_failed", "HTTP client",
                    lambda: fetcher.__aexit__(None, None, None)
                )
        finally:
            await self._release(
                job_id, source, "queue_teardown_failed", f"request queue {queue.name}",
                queue.close, queue_name=queue.name
            )

        result.extracted = await self._collect_own(buffer, job_id, source)
        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    async def _consume(
        self,
        queue: RequestQueue,
        fetcher: PageFetcher,
        extractor: ArticleExtractor,
        gate: _PolitenessGate,
        job_id: UUID,
        source: Source,
        buffer: Dict[UUID, List[ExtractedArticle]],
        in_flight: Dict[str, Candidate],
        result: SourceResult
    ) -> None:
        while True:
            candidate = queue.next()
            if candidate is None:
                return
            # Stays in in_flight until its outcome is decided so the timeout handler can report it
            in_flight[candidate.tracking_id] = candidate
            await self._process(candidate, fetcher, extractor, gate, job_id, source, buffer, in_flight, result)
            queue.task_done()

    async def _process(
        self,
        candidate: Candidate,
        fetcher: PageFetcher,
        extractor: ArticleExtractor,
        gate: _PolitenessGate,
        job_id: UUID,
        source: Source,
        buffer: Dict[UUID, List[ExtractedArticle]],
        in_flight: Dict[str, Candidate],
        result: SourceResult
    ) -> None:
        await gate.wait()
        try:
            html = await fetcher.fetch(candidate.url, correlation_id=candidate.correlation_id)
            fields = extractor.extract_article(html, candidate.url)
        except Exception as e:
            in_flight.pop(candidate.tracking_id, None)
            await self._candidate_failed(job_id, source, candidate, result, e)
            return

        in_flight.pop(candidate.tracking_id, None)
        article = ExtractedArticle(
            tracking_id=candidate.tracking_id,
            source_id=candidate.source_id,
            source_name=candidate.source_name,
            url=candidate.url,
            fields=fields,
            extracted_at=datetime.now(timezone.utc),
            correlation_id=candidate.correlation_id
        )
        owner = source_id_from_tracking_id(candidate.tracking_id) or candidate.source_id
        buffer.setdefault(owner, []).append(article)
        # Shielded so the source deadline cannot drop the terminal event
        await asyncio.shield(self.event_logger.article_event(
            job_id,
            candidate.source_id,
            candidate.tracking_id,
            ArticleEvent.EXTRACTED,
            f"Extracted article from {candidate.source_name}",
            url=candidate.url,
            strategy=fields.strategy,
            quality=fields.quality,
            content_length=fields.content_length
        ))

    async def _candidate_failed(
        self,
        job_id: UUID,
        source: Source,
        candidate: Candidate,
        result: SourceResult,
        error: Exception
    ) -> None:
        if isinstance(error, RobotsDisallowedError):
            await self._record_failure(job_id, candidate, result, "robots_disallowed", error)
        elif isinstance(error, FetchError):
            await self._record_failure(job_id, candidate, result, "fetch", error)
            await self.event_logger.http_error(
                job_id, candidate.source_id, candidate.tracking_id, candidate.url, error.status_code, error.message
            )
        elif isinstance(error, ExtractionError):
            await self._record_failure(job_id, candidate, result, "extraction", error)
        else:
            logger.error(
                "Unexpected error processing candidate",
                extra={
                    "correlation_id": candidate.correlation_id,
                    "source_name": source.name,
                    "url": candidate.url,
                    "error": str(error),
                    "error_type": type(error).__name__
                },
                exc_info=error
            )
            await self._record_failure(job_id, candidate, result, "unexpected", error)

    async def _record_failure(
        self,
        job_id: UUID,
        candidate: Candidate,
        result: SourceResult,
        stage: str,
        error: Exception
    ) -> None:
        detail = {
            "tracking_id": candidate.tracking_id,
            "url": candidate.url,
            "stage": stage,
            "error": error.message if isinstance(error, BaseAppException) else str(error),
            "error_type": type(error).__name__,
        }
        result.errors += 1
        result.error_details.append(detail)
        result.failed_tracking_ids.append(candidate.tracking_id)
        await asyncio.shield(self.event_logger.article_event(
            job_id,
            candidate.source_id,
            candidate.tracking_id,
            ArticleEvent.EXTRACTION_FAILED,
            f"Extraction failed for {candidate.url}",
            level=LogLevel.WARNING,
            url=candidate.url,
            stage=stage,
            error=detail["error"],
            error_type=detail["error_type"]
        ))

    async def _handle_timeout(
        self,
        job_id: UUID,
        source: Source,
        queue: RequestQueue,
        in_flight: Dict[str, Candidate],
        result: SourceResult
    ) -> None:
        interrupted = list(in_flight.values())
        in_flight.clear()
        for candidate in interrupted:
            await self._record_failure(
                job_id, candidate, result, "source_timeout",
                TimeoutError(f"source deadline of {self.settings.SOURCE_TIMEOUT}s reached")
            )
        await self.event_logger.source_event(
            job_id,
            source.id,
            "source_timeout",
            f"Source {source.name} reached its deadline",
            level=LogLevel.WARNING,
            deadline_seconds=self.settings.SOURCE_TIMEOUT,
            interrupted=len(interrupted),
            not_started=queue.size()
        )

    async def _release(
        self,
        job_id: UUID,
        source: Source,
        event_name: str,
        resource: str,
        close: Callable[[], Awaitable[Any]],
        **data: Any
    ) -> None:
        try:
            await close()
        except Exception as e:
            await self.event_logger.source_event(
                job_id,
                source.id,
                event_name,
                f"Failed to release {resource}",
                level=LogLevel.ERROR,
                error=str(e),
                error_type=type(e).__name__,
                **data
            )

    async def _collect_own(
        self,
        buffer: Dict[UUID, List[ExtractedArticle]],
        job_id: UUID,
        source: Source
    ) -> List[ExtractedArticle]:
        own = buffer.pop(source.id, [])
        for foreign_id, articles in buffer.items():
            await self.event_logger.source_event(
                job_id,
                source.id,
                "attribution_anomaly",
                f"Discarded {len(articles)} results attributed to another source",
                level=LogLevel.ERROR,
                foreign_source_id=foreign_id,
                tracking_ids=[article.tracking_id for article in articles]
            )
        return own
