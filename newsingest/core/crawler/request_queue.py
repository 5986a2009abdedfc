"""Per-(job, source) request queues.

There is no shared or default queue: every crawl of a source opens its own
``RequestQueue`` with a unique name and closes it when done.
"""

import asyncio
import logging
import re
from typing import Iterable, Optional
from uuid import UUID, uuid4

from newsingest.core.crawler.candidates import Candidate
from newsingest.shared.exceptions import RequestQueueError

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9-]+")


def slugify_source_name(name: str) -> str:
    slug = re.sub(r"\s+", "-", name.strip()).lower()
    return _SLUG_RE.sub("", slug) or "source"


class RequestQueue:
    """FIFO of candidates owned by exactly one crawl invocation."""

    def __init__(self, name: str):
        self.name = name
        self._queue: "asyncio.Queue[Candidate]" = asyncio.Queue()
        self._closed = False

    @classmethod
    def open(cls, job_id: UUID, source_name: str) -> "RequestQueue":
        name = f"{job_id}-{slugify_source_name(source_name)}-{uuid4().hex[:8]}"
        logger.debug("Request queue opened", extra={"queue_name": name, "job_id": str(job_id)})
        return cls(name)

    @property
    def closed(self) -> bool:
        return self._closed

    def size(self) -> int:
        return self._queue.qsize()

    def put(self, candidate: Candidate) -> None:
        if self._closed:
            raise RequestQueueError(self.name, "queue is closed")
        self._queue.put_nowait(candidate)

    def put_all(self, candidates: Iterable[Candidate]) -> int:
        count = 0
        for candidate in candidates:
            self.put(candidate)
            count += 1
        return count

    def next(self) -> Optional[Candidate]:
        """Next candidate, or None when the queue is drained or closed."""
        if self._closed:
            return None
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def task_done(self) -> None:
        self._queue.task_done()

    async def close(self) -> int:
        """Close the queue and drop anything still pending. Idempotent."""
        if self._closed:
            return 0
        self._closed = True
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            dropped += 1
        logger.debug("Request queue closed", extra={"queue_name": self.name, "dropped": dropped})
        return dropped
