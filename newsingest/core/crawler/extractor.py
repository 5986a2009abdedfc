"""Article extraction from fetched HTML.

``ArticleExtractor.extract`` runs an ordered cascade of strategies over a
parsed document. Each strategy is a plain function with the same signature,
``(ExtractionContext) -> Optional[StrategyResult]``, and the first one whose
body is longer than ``MIN_CONTENT_LENGTH`` wins:

1. ``json_ld``       schema.org article markup (quality ``high``)
2. ``selectors``     ordered content selectors, every match aggregated (``medium``)
3. ``meta_tags``     og/twitter/description tags (``low``)
4. ``body_fallback`` capped full-page text, always accepted (``lowest``)

Extraction is synchronous and performs no I/O. All element reads go through
the injected ``ExtractionRecorder``.

Example:
    ```python
    extractor = ArticleExtractor(settings)
    fields = extractor.extract_article(html, "https://example.com/news/1")
    print(fields.strategy, fields.content_length)
    ```
"""

import json
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from newsingest.core.crawler.content import (
    PARAGRAPH_SEPARATOR,
    collapse_separators,
    compute_content_hash,
    detect_language,
    normalize_whitespace,
    render_paragraphs,
    text_to_paragraphs,
)
from newsingest.core.crawler.recorder import ExtractionRecorder
from newsingest.shared.config import Settings
from newsingest.shared.exceptions import ContentTooShortError, ExtractionParsingError

logger = logging.getLogger(__name__)

# Tried in order; all matches of a selector are aggregated
CONTENT_SELECTORS = (
    '[itemprop="articleBody"]',
    'article [class*="body"]:not([class*="meta"])',
    'article [class*="content"]:not([class*="header"])',
    'main [class*="story-body"]',
    '.article-text',
    '.story-content',
    '[data-component="text-block"]',
    '[data-testid="article-body"]',
    'div[class*="Text-sc"]',
    'article div[class*="Paragraph"]',
    'section[name="articleBody"]',
    '.content__article-body',
    'article',
    '.article-content',
    '.story-body',
    '.entry-content',
    '.post-content',
    'main',
)

TITLE_SOURCES = (
    ('meta[property="og:title"]', "content"),
    ('meta[name="twitter:title"]', "content"),
    ("h1", None),
    ("title", None),
)

DESCRIPTION_SOURCES = (
    ('meta[property="og:description"]', "content"),
    ('meta[name="description"]', "content"),
    ('meta[name="twitter:description"]', "content"),
)

AUTHOR_SOURCES = (
    ('meta[name="author"]', "content"),
    ('meta[property="article:author"]', "content"),
    ('[rel="author"]', None),
    ('[itemprop="author"] [itemprop="name"]', None),
    ('[itemprop="author"]', None),
    ('.byline', None),
)

DATE_SOURCES = (
    ('meta[property="article:published_time"]', "content"),
    ('meta[name="pubdate"]', "content"),
    ('[itemprop="datePublished"]', "content"),
    ("time[datetime]", "datetime"),
)

JSON_LD_ARTICLE_TYPES = {"NewsArticle", "Article", "ReportageNews", "BlogPosting", "AnalysisNewsArticle"}


@dataclass
class ExtractionContext:
    soup: BeautifulSoup
    url: str
    recorder: ExtractionRecorder
    settings: Settings


@dataclass
class StrategyResult:
    content: str
    title: str = ""
    author: str = ""
    published: str = ""


@dataclass
class ArticleFields:
    """Output of the cascade for one document."""

    title: str
    content: str
    author: Optional[str]
    published_at: Optional[datetime]
    language: str
    content_hash: str
    strategy: str
    quality: str
    content_length: int = field(init=False)

    def __post_init__(self):
        self.content_length = len(self.content)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["published_at"] = self.published_at.isoformat() if self.published_at else None
        return data


Strategy = Callable[[ExtractionContext], Optional[StrategyResult]]


def _read_first(ctx: ExtractionContext, sources: Tuple[Tuple[str, Optional[str]], ...], field_name: str) -> str:
    for selector, attribute in sources:
        if attribute:
            value = ctx.recorder.attr(ctx.soup, selector, attribute, field_name)
        else:
            value = ctx.recorder.text(ctx.soup, selector, field_name)
        if value:
            return value
    return ""


def _iter_json_ld_objects(ctx: ExtractionContext):
    for script in ctx.soup.select('script[type="application/ld+json"]'):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            continue

        stack = [data]
        while stack:
            item = stack.pop(0)
            if isinstance(item, list):
                stack.extend(item)
            elif isinstance(item, dict):
                if "@graph" in item:
                    stack.extend(item["@graph"] if isinstance(item["@graph"], list) else [item["@graph"]])
                yield item


def _json_ld_type_matches(item: Dict[str, Any]) -> bool:
    item_type = item.get("@type")
    types = item_type if isinstance(item_type, list) else [item_type]
    return any(t in JSON_LD_ARTICLE_TYPES for t in types if isinstance(t, str))


def _json_ld_author(author: Any) -> str:
    if isinstance(author, str):
        return author
    if isinstance(author, dict):
        return str(author.get("name") or "")
    if isinstance(author, list):
        names = [_json_ld_author(entry) for entry in author]
        return ", ".join(name for name in names if name)
    return ""


def json_ld_strategy(ctx: ExtractionContext) -> Optional[StrategyResult]:
    for item in _iter_json_ld_objects(ctx):
        if not _json_ld_type_matches(item):
            continue
        body = item.get("articleBody")
        if not isinstance(body, str) or not body.strip():
            continue

        content = ctx.recorder.json_ld("content", text_to_paragraphs(body))
        headline = item.get("headline") or item.get("name") or ""
        title = ctx.recorder.json_ld("title", normalize_whitespace(headline if isinstance(headline, str) else ""))
        author = ctx.recorder.json_ld("author", normalize_whitespace(_json_ld_author(item.get("author"))))
        published = item.get("datePublished") or ""
        published = ctx.recorder.json_ld("published", published if isinstance(published, str) else "")
        return StrategyResult(content=content, title=title, author=author, published=published)
    return None


def selector_strategy(ctx: ExtractionContext) -> Optional[StrategyResult]:
    link_min = ctx.settings.LINK_PARAGRAPH_MIN_LENGTH

    def render(elements):
        return render_paragraphs(elements, link_min)

    for selector in CONTENT_SELECTORS:
        content = ctx.recorder.content(ctx.soup, selector, "content", render)
        if len(content) > ctx.settings.MIN_CONTENT_LENGTH:
            return StrategyResult(content=content)
    return None


def meta_tag_strategy(ctx: ExtractionContext) -> Optional[StrategyResult]:
    description = _read_first(ctx, DESCRIPTION_SOURCES, "content")
    if not description:
        return None
    return StrategyResult(content=text_to_paragraphs(description))


def body_fallback_strategy(ctx: ExtractionContext) -> Optional[StrategyResult]:
    root_selector = "body" if ctx.soup.body is not None else ":root"
    content = ctx.recorder.content(
        ctx.soup,
        root_selector,
        "content",
        lambda elements: render_paragraphs(elements, ctx.settings.LINK_PARAGRAPH_MIN_LENGTH)
    )
    return StrategyResult(content=content[:ctx.settings.FALLBACK_BODY_MAX_CHARS])


STRATEGIES: List[Tuple[str, str, Strategy]] = [
    ("json_ld", "high", json_ld_strategy),
    ("selectors", "medium", selector_strategy),
    ("meta_tags", "low", meta_tag_strategy),
    ("body_fallback", "lowest", body_fallback_strategy),
]


def parse_publication_date(raw: str) -> Optional[datetime]:
    if not raw:
        return None
    try:
        parsed = date_parser.parse(raw)
    except (ValueError, OverflowError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ArticleExtractor:
    """Runs the strategy cascade with an injected recorder."""

    def __init__(
        self,
        settings: Settings,
        recorder: Optional[ExtractionRecorder] = None,
        strategies: Optional[List[Tuple[str, str, Strategy]]] = None
    ):
        self.settings = settings
        self.recorder = recorder or ExtractionRecorder()
        self.strategies = strategies or STRATEGIES

    def parse(self, html: str, url: str) -> BeautifulSoup:
        if not html or not html.strip():
            raise ExtractionParsingError(url, {"url": url, "reason": "empty document"})
        try:
            soup = BeautifulSoup(html, "lxml")
        except Exception as e:
            raise ExtractionParsingError(url, {"url": url, "reason": str(e)}) from e
        if soup.find() is None:
            raise ExtractionParsingError(url, {"url": url, "reason": "no elements"})
        return soup

    def extract(self, html: str, url: str) -> ArticleFields:
        """Run the cascade and return the best-effort article.

        Raises:
            ExtractionParsingError: If the document is empty or unparseable
        """
        ctx = ExtractionContext(
            soup=self.parse(html, url),
            url=url,
            recorder=self.recorder,
            settings=self.settings
        )

        chosen = None
        for name, quality, strategy in self.strategies:
            result = strategy(ctx)
            if result is None:
                continue
            if len(result.content) > self.settings.MIN_CONTENT_LENGTH or name == "body_fallback":
                chosen = (name, quality, result)
                break

        if chosen is None:
            # Custom strategy lists may omit the fallback
            chosen = ("none", "lowest", StrategyResult(content=""))

        name, quality, result = chosen
        title = result.title or _read_first(ctx, TITLE_SOURCES, "title")
        author = result.author or _read_first(ctx, AUTHOR_SOURCES, "author")
        published = result.published or _read_first(ctx, DATE_SOURCES, "published")
        content = collapse_separators(result.content)

        logger.debug(
            "Extraction strategy selected",
            extra={"url": url, "strategy": name, "content_length": len(content)}
        )

        return ArticleFields(
            title=normalize_whitespace(title)[:500],
            content=content,
            author=normalize_whitespace(author)[:255] or None,
            published_at=parse_publication_date(published),
            language=detect_language(content),
            content_hash=compute_content_hash(title, content),
            strategy=name,
            quality=quality
        )

    def validate(self, fields: ArticleFields, url: str) -> ArticleFields:
        """Reject articles whose title or body is below the acceptance thresholds.

        Raises:
            ContentTooShortError: If either field is too short
        """
        if len(fields.title) < self.settings.MIN_TITLE_LENGTH or fields.content_length < self.settings.MIN_CONTENT_LENGTH:
            raise ContentTooShortError(url, len(fields.title), fields.content_length)
        return fields

    def extract_article(self, html: str, url: str) -> ArticleFields:
        return self.validate(self.extract(html, url), url)


__all__ = [
    "ArticleExtractor",
    "ArticleFields",
    "CONTENT_SELECTORS",
    "PARAGRAPH_SEPARATOR",
    "STRATEGIES",
    "parse_publication_date",
]
