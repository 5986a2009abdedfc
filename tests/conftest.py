import pytest
from typing import Dict, Iterable, List, Optional, Tuple
from xml.sax.saxutils import escape

import httpx

from newsingest.database.connection import DatabaseConnection
from newsingest.database.repositories import (
    ScrapedArticleRepository,
    ScrapingJobRepository,
    ScrapingLogRepository,
    SourceRepository,
)
from newsingest.core.tracking.event_logger import ScrapingEventLogger
from newsingest.shared.config import Settings


def article_html(title: str, paragraphs: Iterable[str], container: str = '<div class="article-content">{}</div>') -> str:
    """A minimal article page whose body sits in one content container."""
    body = "".join(f"<p>{escape(p)}</p>" for p in paragraphs)
    return (
        "<html><head>"
        f"<title>{escape(title)} | Example</title>"
        f'<meta property="og:title" content="{escape(title)}">'
        '<meta name="author" content="Jane Reporter">'
        '<meta property="article:published_time" content="2024-03-01T10:00:00Z">'
        "</head><body>"
        '<nav><a href="/">HOME</a></nav>'
        f"<article><h1>{escape(title)}</h1>{container.format(body)}</article>"
        "<footer>Copyright Example</footer>"
        "</body></html>"
    )


def story_paragraphs(url: str, count: int = 3) -> List[str]:
    return [
        f"Paragraph {index} of the story published at {url} explains what happened in considerable detail."
        for index in range(1, count + 1)
    ]


def rss_feed(items: Iterable[Tuple[str, str]]) -> str:
    entries = "".join(
        f"<item><title>{escape(title)}</title><link>{escape(url)}</link>"
        "<pubDate>Fri, 01 Mar 2024 10:00:00 GMT</pubDate></item>"
        for url, title in items
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel><title>Feed</title><link>https://example.com</link>'
        f"<description>News</description>{entries}</channel></rss>"
    )


class FakeWeb:
    """Serves canned responses through ``httpx.MockTransport``; anything unknown is a 404."""

    def __init__(self):
        self.routes: Dict[str, Tuple[int, str, str]] = {}
        self.requests: List[str] = []

    def add(self, url: str, body: str, status: int = 200, content_type: str = "text/html") -> None:
        self.routes[url] = (status, body, content_type)

    def add_article(self, url: str, title: Optional[str] = None, paragraphs: Optional[List[str]] = None) -> None:
        self.add(url, article_html(title or f"Story at {url}", paragraphs or story_paragraphs(url)))

    def add_site(self, domain: str, count: int, feed_path: str = "/rss.xml", feed_status: int = 200) -> List[str]:
        """Register a feed with ``count`` working article pages; returns the article URLs."""
        urls = [f"https://{domain}/news/story-{index}" for index in range(1, count + 1)]
        for url in urls:
            self.add_article(url)
        feed = rss_feed((url, f"Story {index}") for index, url in enumerate(urls, start=1))
        self.add(f"https://{domain}{feed_path}", feed, status=feed_status, content_type="application/rss+xml")
        return urls

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url not in self.routes:
            return httpx.Response(404, text="not found")
        status, body, content_type = self.routes[url]
        return httpx.Response(status, text=body, headers={"content-type": content_type})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for a file-backed SQLite database and instant retries."""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        DATABASE_ECHO=False,
        ENVIRONMENT="testing",
        LOG_LEVEL="DEBUG",
        FETCH_MAX_RETRIES=1,
        FEED_MAX_RETRIES=1,
        FETCH_RETRY_BASE_DELAY=0.0,
        SOURCE_TIMEOUT=30.0,
        CRAWLER_CONCURRENCY_LIMIT=4
    )


@pytest.fixture
async def db(test_settings: Settings):
    connection = DatabaseConnection(test_settings)
    connection.setup()
    await connection.create_all()
    yield connection
    await connection.close()


@pytest.fixture
def source_repo(db) -> SourceRepository:
    return SourceRepository(db)


@pytest.fixture
def job_repo(db) -> ScrapingJobRepository:
    return ScrapingJobRepository(db)


@pytest.fixture
def article_repo(db) -> ScrapedArticleRepository:
    return ScrapedArticleRepository(db)


@pytest.fixture
def log_repo(db) -> ScrapingLogRepository:
    return ScrapingLogRepository(db)


@pytest.fixture
def event_logger(log_repo) -> ScrapingEventLogger:
    return ScrapingEventLogger(log_repo, correlation_id="test-correlation")


@pytest.fixture
def make_source(source_repo):
    """Register a polite-but-instant source for ``domain``."""

    async def _make(name: str, domain: str, **overrides):
        data = {
            "name": name,
            "domain": domain,
            "rss_url": f"https://{domain}/rss.xml",
            "delay_between_requests": 0,
            "timeout_ms": 5000,
        }
        data.update(overrides)
        return await source_repo.create_source(**data)

    return _make


@pytest.fixture
def fake_web() -> FakeWeb:
    return FakeWeb()
