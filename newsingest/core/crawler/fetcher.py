"""HTTP fetching for one source's crawl.

``PageFetcher`` owns an ``httpx.AsyncClient`` configured from the source's
politeness settings and retries failed fetches with ``RetryHandler``. When the
source asks for it, robots.txt is consulted once per host per crawl.
"""

import asyncio
import logging
from typing import Dict, Optional
from urllib.parse import urlsplit, urlunsplit
from urllib.robotparser import RobotFileParser

import httpx

from newsingest.core.error_handling.retry_handler import RetryHandler, fetch_retry_config
from newsingest.database.models.source import Source
from newsingest.shared.config import Settings
from newsingest.shared.exceptions import FetchError, FetchTimeoutError, RobotsDisallowedError

logger = logging.getLogger(__name__)

ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


class PageFetcher:
    """Async context manager fetching article pages for a single source."""

    def __init__(
        self,
        settings: Settings,
        source: Source,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_handler: Optional[RetryHandler] = None
    ):
        self.settings = settings
        self.source = source
        self.user_agent = source.user_agent or settings.DEFAULT_USER_AGENT
        self.timeout = source.timeout_seconds if source.timeout_ms else float(settings.FETCH_TIMEOUT)
        self.retry_handler = retry_handler or RetryHandler(fetch_retry_config(settings))
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._robots: Dict[str, Optional[RobotFileParser]] = {}
        self._robots_lock = asyncio.Lock()

    async def __aenter__(self) -> "PageFetcher":
        self._client = httpx.AsyncClient(
            headers={"User-Agent": self.user_agent, "Accept": ACCEPT_HTML},
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=True,
            transport=self._transport
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("PageFetcher used outside of its async context")
        return self._client

    async def _get_once(self, url: str) -> httpx.Response:
        try:
            response = await self.client.get(url)
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(url, self.timeout) from e
        except httpx.HTTPError as e:
            raise FetchError(url, details={"url": url, "error": str(e), "error_type": type(e).__name__}) from e

        if not response.is_success:
            raise FetchError(url, status_code=response.status_code)
        return response

    async def fetch(self, url: str, correlation_id: Optional[str] = None) -> str:
        """Fetch a page body, retrying transient failures.

        Raises:
            RobotsDisallowedError: If robots.txt forbids the URL
            FetchError: If every attempt failed
        """
        if self.source.respect_robots_txt and not await self.is_allowed(url):
            raise RobotsDisallowedError(url)

        response = await self.retry_handler.execute_with_retry(
            self._get_once, url, correlation_id=correlation_id
        )
        return response.text

    async def is_allowed(self, url: str) -> bool:
        parts = urlsplit(url)
        host = parts.netloc
        async with self._robots_lock:
            if host not in self._robots:
                self._robots[host] = await self._load_robots(parts.scheme, host)
        parser = self._robots[host]
        return True if parser is None else parser.can_fetch(self.user_agent, url)

    async def _load_robots(self, scheme: str, host: str) -> Optional[RobotFileParser]:
        robots_url = urlunsplit((scheme, host, "/robots.txt", "", ""))
        try:
            response = await self.client.get(robots_url)
        except httpx.HTTPError as e:
            logger.warning(
                "robots.txt unavailable, allowing all",
                extra={"robots_url": robots_url, "error": str(e), "source_name": self.source.name}
            )
            return None

        if not response.is_success:
            return None

        parser = RobotFileParser()
        parser.parse(response.text.splitlines())
        return parser
