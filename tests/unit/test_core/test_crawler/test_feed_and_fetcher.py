"""Tests for the feed adapter and the page fetcher."""

import httpx
import pytest

from newsingest.core.crawler.feed import FeedReader
from newsingest.core.crawler.fetcher import PageFetcher
from newsingest.shared.exceptions import FeedUnavailableError, FetchError, RobotsDisallowedError

RELATIVE_FEED = (
    '<?xml version="1.0"?><rss version="2.0"><channel><title>Alpha</title>'
    "<item><title>Relative</title><link>/news/relative</link></item>"
    "</channel></rss>"
)


class TestFeedReader:
    async def test_items_in_feed_order(self, test_settings, make_source, fake_web):
        # Arrange
        source = await make_source("Alpha", "alpha.example")
        urls = fake_web.add_site("alpha.example", 3)

        # Act
        items = await FeedReader(test_settings, transport=fake_web.transport).fetch_items(source)

        # Assert
        assert [item.url for item in items] == urls
        assert items[0].title == "Story 1"
        assert items[0].published.year == 2024

    async def test_relative_links_are_resolved(self, test_settings, make_source, fake_web):
        source = await make_source("Alpha", "alpha.example")
        fake_web.add("https://alpha.example/rss.xml", RELATIVE_FEED)

        items = await FeedReader(test_settings, transport=fake_web.transport).fetch_items(source)

        assert [item.url for item in items] == ["https://alpha.example/news/relative"]

    async def test_missing_feed_is_source_fatal(self, test_settings, make_source, fake_web):
        source = await make_source("Alpha", "alpha.example")

        with pytest.raises(FeedUnavailableError) as exc_info:
            await FeedReader(test_settings, transport=fake_web.transport).fetch_items(source)

        assert exc_info.value.details["status_code"] == 404

    async def test_unavailable_feed_is_retried(self, test_settings, make_source, fake_web):
        """Test a 503 feed is requested once per allowed attempt."""
        # Arrange
        source = await make_source("Alpha", "alpha.example")
        fake_web.add_site("alpha.example", 3, feed_status=503)

        # Act
        with pytest.raises(FeedUnavailableError):
            await FeedReader(test_settings, transport=fake_web.transport).fetch_items(source)

        # Assert
        feed_requests = [url for url in fake_web.requests if url.endswith("/rss.xml")]
        assert len(feed_requests) == test_settings.FEED_MAX_RETRIES + 1

    async def test_missing_feed_is_not_retried(self, test_settings, make_source, fake_web):
        """Test a 404 feed fails on the first answer."""
        # Arrange
        source = await make_source("Alpha", "alpha.example")

        # Act
        with pytest.raises(FeedUnavailableError):
            await FeedReader(test_settings, transport=fake_web.transport).fetch_items(source)

        # Assert
        feed_requests = [url for url in fake_web.requests if url.endswith("/rss.xml")]
        assert len(feed_requests) == 1

    async def test_unparseable_feed(self, test_settings, make_source, fake_web):
        source = await make_source("Alpha", "alpha.example")
        fake_web.add("https://alpha.example/rss.xml", "<<< definitely not a feed")

        with pytest.raises(FeedUnavailableError):
            await FeedReader(test_settings, transport=fake_web.transport).fetch_items(source)


class TestPageFetcher:
    async def test_fetch_page(self, test_settings, make_source, fake_web):
        source = await make_source("Alpha", "alpha.example")
        fake_web.add("https://alpha.example/a", "<html>page</html>")

        async with PageFetcher(test_settings, source, transport=fake_web.transport) as fetcher:
            html = await fetcher.fetch("https://alpha.example/a")

        assert html == "<html>page</html>"

    async def test_source_user_agent_is_sent(self, test_settings, make_source):
        source = await make_source("Alpha", "alpha.example", user_agent="AlphaBot/1.0", respect_robots_txt=False)
        seen = []

        def handler(request):
            seen.append(request.headers["User-Agent"])
            return httpx.Response(200, text="ok")

        async with PageFetcher(test_settings, source, transport=httpx.MockTransport(handler)) as fetcher:
            await fetcher.fetch("https://alpha.example/a")

        assert seen == ["AlphaBot/1.0"]

    async def test_error_status_raises_fetch_error(self, test_settings, make_source, fake_web):
        source = await make_source("Alpha", "alpha.example")
        fake_web.add("https://alpha.example/a", "down", status=503)

        async with PageFetcher(test_settings, source, transport=fake_web.transport) as fetcher:
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch("https://alpha.example/a")

        assert exc_info.value.status_code == 503

    async def test_robots_txt_is_honoured(self, test_settings, make_source, fake_web):
        # Arrange
        source = await make_source("Alpha", "alpha.example")
        fake_web.add("https://alpha.example/robots.txt", "User-agent: *\nDisallow: /private/\n", content_type="text/plain")
        fake_web.add("https://alpha.example/private/a", "secret")
        fake_web.add("https://alpha.example/public/a", "public")

        # Act
        async with PageFetcher(test_settings, source, transport=fake_web.transport) as fetcher:
            public = await fetcher.fetch("https://alpha.example/public/a")
            with pytest.raises(RobotsDisallowedError):
                await fetcher.fetch("https://alpha.example/private/a")

        # Assert
        assert public == "public"
        assert "https://alpha.example/private/a" not in fake_web.requests
        assert fake_web.requests.count("https://alpha.example/robots.txt") == 1

    async def test_client_outside_context(self, test_settings, make_source):
        source = await make_source("Alpha", "alpha.example")

        with pytest.raises(RuntimeError):
            PageFetcher(test_settings, source).client
