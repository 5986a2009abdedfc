"""Tests for the extraction strategy cascade."""

import json
import pytest

from newsingest.core.crawler.content import PARAGRAPH_SEPARATOR
from newsingest.core.crawler.extractor import (
    ArticleExtractor,
    STRATEGIES,
    parse_publication_date,
)
from newsingest.shared.config import Settings
from newsingest.shared.exceptions import ContentTooShortError, ExtractionParsingError

LONG_SENTENCE = "The council approved the new budget after a lengthy debate that lasted well into the night."


@pytest.fixture
def settings() -> Settings:
    return Settings(ENVIRONMENT="testing")


@pytest.fixture
def extractor(settings) -> ArticleExtractor:
    return ArticleExtractor(settings)


def page(head: str = "", body: str = "") -> str:
    return f"<html><head>{head}</head><body>{body}</body></html>"


class TestStrategyOrder:
    """The first strategy with enough content wins."""

    def test_strategies_are_ordered_by_trust(self):
        """Test the cascade order and quality labels."""
        assert [(name, quality) for name, quality, _ in STRATEGIES] == [
            ("json_ld", "high"),
            ("selectors", "medium"),
            ("meta_tags", "low"),
            ("body_fallback", "lowest"),
        ]

    def test_json_ld_wins_over_selectors(self, extractor):
        """Test structured article markup is preferred when present."""
        # Arrange
        data = {
            "@context": "https://schema.org",
            "@type": "NewsArticle",
            "headline": "Budget approved",
            "articleBody": f"{LONG_SENTENCE}\n{LONG_SENTENCE}",
            "author": {"@type": "Person", "name": "Ana Diaz"},
            "datePublished": "2024-03-01T08:30:00Z",
        }
        html = page(
            head=f'<script type="application/ld+json">{json.dumps(data)}</script>',
            body=f'<article><div class="article-content"><p>{LONG_SENTENCE} Selector copy.</p>'
                 f'<p>{LONG_SENTENCE}</p></div></article>'
        )

        # Act
        fields = extractor.extract(html, "https://example.com/a")

        # Assert
        assert fields.strategy == "json_ld"
        assert fields.quality == "high"
        assert fields.title == "Budget approved"
        assert fields.author == "Ana Diaz"
        assert fields.published_at.year == 2024
        assert fields.content == f"{LONG_SENTENCE}{PARAGRAPH_SEPARATOR}{LONG_SENTENCE}"

    def test_json_ld_graph_is_searched(self, extractor):
        """Test article objects nested in @graph are found."""
        data = {"@graph": [
            {"@type": "WebPage", "name": "page"},
            {"@type": ["Article"], "headline": "Graph story", "articleBody": LONG_SENTENCE * 2},
        ]}
        html = page(head=f'<script type="application/ld+json">{json.dumps(data)}</script>')

        fields = extractor.extract(html, "https://example.com/graph")

        assert fields.strategy == "json_ld"
        assert fields.title == "Graph story"

    def test_malformed_json_ld_falls_through(self, extractor):
        """Test invalid JSON-LD is ignored rather than raising."""
        html = page(
            head='<script type="application/ld+json">{not json</script>',
            body=f'<article><div class="article-content"><p>{LONG_SENTENCE}</p><p>{LONG_SENTENCE}</p></div></article>'
        )

        fields = extractor.extract(html, "https://example.com/bad-json")

        assert fields.strategy == "selectors"

    def test_meta_tags_used_when_description_is_long(self, extractor):
        """Test the meta description is used when no body markup is usable."""
        description = f"{LONG_SENTENCE} {LONG_SENTENCE}"
        html = page(
            head=f'<meta property="og:title" content="Meta title"><meta property="og:description" content="{description}">',
            body="<div>short</div>"
        )

        fields = extractor.extract(html, "https://example.com/meta")

        assert fields.strategy == "meta_tags"
        assert fields.quality == "low"
        assert fields.title == "Meta title"
        assert fields.content == description

    def test_body_fallback_is_capped(self, settings):
        """Test the last-resort body text is truncated to the safety cap."""
        # Arrange
        capped_settings = settings.model_copy(update={"FALLBACK_BODY_MAX_CHARS": 150})
        extractor = ArticleExtractor(capped_settings)
        html = page(body="<div>" + " ".join(["word"] * 400) + "</div>")

        # Act
        fields = extractor.extract(html, "https://example.com/fallback")

        # Assert
        assert fields.strategy == "body_fallback"
        assert fields.quality == "lowest"
        assert fields.content_length <= 150

    def test_custom_strategy_list(self, settings):
        """Test strategies are plain functions that can be swapped."""
        from newsingest.core.crawler.extractor import StrategyResult

        extractor = ArticleExtractor(settings, strategies=[
            ("fixed", "test", lambda ctx: StrategyResult(content=LONG_SENTENCE * 2, title="Fixed")),
        ])

        fields = extractor.extract(page(body="<p>x</p>"), "https://example.com/custom")

        assert fields.strategy == "fixed"
        assert fields.title == "Fixed"


class TestSelectorAggregation:
    """Selector extraction aggregates every matching element."""

    def test_three_sibling_elements_are_concatenated(self, extractor):
        """Test a body split across three sibling nodes is extracted in full."""
        # Arrange
        blocks = [
            "First block of the article describes the flooding along the river banks overnight.",
            "Second block of the article quotes residents who were evacuated before dawn today.",
            "Third block of the article covers the recovery plans announced by the city officials.",
        ]
        body = "<main>" + "".join(
            f'<div data-component="text-block"><p>{text}</p></div>' for text in blocks
        ) + "</main>"

        # Act
        fields = extractor.extract(page(body=body), "https://example.com/split")

        # Assert
        assert fields.strategy == "selectors"
        assert fields.content == PARAGRAPH_SEPARATOR.join(blocks)

    def test_nested_matches_are_not_duplicated(self, extractor):
        """Test a match inside another match contributes its text once."""
        body = (
            '<div class="story-content"><p>' + LONG_SENTENCE + '</p>'
            '<div class="story-content"><p>Nested paragraph that must appear only once in the output.</p></div>'
            '</div>'
        )

        fields = extractor.extract(page(body=body), "https://example.com/nested")

        assert fields.content.count("Nested paragraph") == 1

    def test_noise_containers_are_removed(self, extractor):
        """Test navigation, ads and newsletter blocks never reach the body."""
        body = (
            '<article><div class="article-content">'
            f'<p>{LONG_SENTENCE}</p>'
            '<div class="newsletter-signup"><p>Subscribe to our newsletter for daily updates and more.</p></div>'
            '<aside><p>Related reading you might enjoy from our archive section.</p></aside>'
            f'<p>{LONG_SENTENCE}</p>'
            '</div></article>'
        )

        fields = extractor.extract(page(body=body), "https://example.com/noise")

        assert "newsletter" not in fields.content
        assert "Related reading" not in fields.content
        assert fields.content.count(LONG_SENTENCE) == 2


class TestFieldExtraction:
    """Title, author, date and derived fields."""

    def test_title_author_and_date_from_meta(self, extractor):
        html = page(
            head=(
                '<meta property="og:title" content="Storm hits coast">'
                '<meta name="author" content="Sam Lee">'
                '<meta property="article:published_time" content="2024-02-10T12:00:00+02:00">'
            ),
            body=f'<article><div class="article-content"><p>{LONG_SENTENCE}</p><p>{LONG_SENTENCE}</p></div></article>'
        )

        fields = extractor.extract(html, "https://example.com/storm")

        assert fields.title == "Storm hits coast"
        assert fields.author == "Sam Lee"
        assert fields.published_at.isoformat() == "2024-02-10T12:00:00+02:00"
        assert fields.language == "en"
        assert len(fields.content_hash) == 64

    def test_identical_articles_share_a_content_hash(self, extractor):
        html = page(
            head='<meta property="og:title" content="Same">',
            body=f'<article><div class="article-content"><p>{LONG_SENTENCE}</p><p>{LONG_SENTENCE}</p></div></article>'
        )

        first = extractor.extract(html, "https://a.example.com/1")
        second = extractor.extract(html, "https://b.example.com/2")

        assert first.content_hash == second.content_hash

    def test_parse_publication_date(self):
        assert parse_publication_date("") is None
        assert parse_publication_date("not a date") is None
        parsed = parse_publication_date("2024-01-05 09:00")
        assert parsed.tzinfo is not None


class TestValidation:
    """Accepting or rejecting extracted articles."""

    def test_empty_document_raises(self, extractor):
        with pytest.raises(ExtractionParsingError):
            extractor.extract("   ", "https://example.com/empty")

    def test_short_article_is_rejected(self, extractor):
        """Test extract_article enforces the minimum body length."""
        html = page(head='<meta property="og:title" content="Tiny">', body="<p>Too short.</p>")

        with pytest.raises(ContentTooShortError):
            extractor.extract_article(html, "https://example.com/tiny")

    def test_valid_article_passes(self, extractor):
        html = page(
            head='<meta property="og:title" content="Long enough">',
            body=f'<article><div class="article-content"><p>{LONG_SENTENCE}</p><p>{LONG_SENTENCE}</p></div></article>'
        )

        fields = extractor.extract_article(html, "https://example.com/ok")

        assert fields.content_length > 100
