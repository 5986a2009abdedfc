"""RSS/Atom feed adapter: turns a source's feed into candidate URLs."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import urljoin

import feedparser
import httpx

from newsingest.core.error_handling.retry_handler import RetryHandler, feed_retry_config
from newsingest.database.models.source import Source
from newsingest.shared.config import Settings
from newsingest.shared.exceptions import FeedUnavailableError, FetchError, FetchTimeoutError

logger = logging.getLogger(__name__)

ACCEPT_FEED = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"


@dataclass(frozen=True)
class FeedItem:
    url: str
    title: Optional[str] = None
    published: Optional[datetime] = None


class FeedReader:
    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_handler: Optional[RetryHandler] = None
    ):
        self.settings = settings
        self._transport = transport
        self.retry_handler = retry_handler or RetryHandler(feed_retry_config(settings))

    async def fetch_items(self, source: Source, correlation_id: Optional[str] = None) -> List[FeedItem]:
        """Download and parse a source's feed.

        Raises:
            FeedUnavailableError: If the feed cannot be fetched after retries or cannot be parsed
        """
        headers = {
            "User-Agent": source.user_agent or self.settings.DEFAULT_USER_AGENT,
            "Accept": ACCEPT_FEED,
        }
        async with httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(float(self.settings.FEED_TIMEOUT)),
            follow_redirects=True,
            transport=self._transport
        ) as client:
            try:
                content = await self.retry_handler.execute_with_retry(
                    self._download, client, source.rss_url, correlation_id=correlation_id
                )
            except FetchError as e:
                raise FeedUnavailableError(
                    source.name,
                    source.rss_url,
                    e.message,
                    details={
                        "source_name": source.name,
                        "feed_url": source.rss_url,
                        "status_code": e.status_code,
                        "reason": e.message
                    }
                ) from e

        items = self.parse(content, source)
        logger.info(
            "Feed parsed",
            extra={"correlation_id": correlation_id, "source_name": source.name, "items": len(items)}
        )
        return items

    async def _download(self, client: httpx.AsyncClient, url: str) -> bytes:
        try:
            response = await client.get(url)
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(url, float(self.settings.FEED_TIMEOUT)) from e
        except httpx.HTTPError as e:
            raise FetchError(url, details={"url": url, "error": str(e)}) from e
        if not response.is_success:
            raise FetchError(url, status_code=response.status_code)
        return response.content

    def parse(self, content: bytes, source: Source) -> List[FeedItem]:
        parsed = feedparser.parse(content)
        if parsed.bozo and not parsed.entries:
            reason = str(getattr(parsed, "bozo_exception", "unparseable feed"))
            raise FeedUnavailableError(source.name, source.rss_url, f"unparseable feed: {reason}")

        items = []
        for entry in parsed.entries:
            link = (entry.get("link") or "").strip()
            if not link:
                continue
            items.append(FeedItem(
                url=urljoin(source.rss_url, link),
                title=(entry.get("title") or "").strip() or None,
                published=_entry_published(entry)
            ))
        return items


def _entry_published(entry) -> Optional[datetime]:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    try:
        return datetime(*parsed[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None
