"""Tests for the extraction recorder and diagnostics."""

import json

import pytest
from bs4 import BeautifulSoup

from newsingest.core.crawler.diagnostics import diagnose_extraction
from newsingest.core.crawler.extractor import ArticleExtractor
from newsingest.core.crawler.recorder import ExtractionRecorder, RecordingExtractionRecorder
from newsingest.shared.config import Settings

ARTICLE = (
    "<html><head>"
    '<meta property="og:title" content="Harbour reopens">'
    '<meta name="author" content="Kim Park">'
    "</head><body><main>"
    '<div data-component="text-block"><p>The harbour reopened on Monday after repairs to the sea wall were finished.</p></div>'
    '<div data-component="text-block"><p>Fishing crews said the closure had cost them most of the spring season.</p></div>'
    "</main></body></html>"
)


@pytest.fixture
def settings() -> Settings:
    return Settings(ENVIRONMENT="testing")


class TestExtractionRecorder:
    def test_noop_recorder_keeps_no_traces(self):
        soup = BeautifulSoup(ARTICLE, "lxml")
        recorder = ExtractionRecorder()

        value = recorder.attr(soup, 'meta[property="og:title"]', "content", "title")

        assert value == "Harbour reopens"
        assert recorder.enabled is False
        assert recorder.traces == []

    def test_recording_recorder_traces_each_read(self):
        # Arrange
        soup = BeautifulSoup(ARTICLE, "lxml")
        recorder = RecordingExtractionRecorder()

        # Act
        recorder.attr(soup, 'meta[name="author"]', "content", "author")
        recorder.text(soup, "main", "content")
        recorder.text(soup, "h1", "title")

        # Assert
        traces = recorder.traces
        assert [(t.field, t.method) for t in traces] == [("author", "attr:content"), ("content", "text")]
        assert traces[0].value == "Kim Park"

    def test_content_trace_counts_aggregated_elements(self):
        soup = BeautifulSoup(ARTICLE, "lxml")
        recorder = RecordingExtractionRecorder()

        recorder.content(soup, '[data-component="text-block"]', "content", lambda els: "x" * len(els))

        assert recorder.traces[0].method == "content[2]"

    def test_traces_property_returns_a_copy(self):
        recorder = RecordingExtractionRecorder()
        recorder.json_ld("title", "Value")

        recorder.traces.clear()

        assert len(recorder.traces) == 1

    def test_production_extractor_uses_the_noop_recorder(self, settings):
        extractor = ArticleExtractor(settings)

        assert type(extractor.recorder) is ExtractionRecorder
        assert isinstance(RecordingExtractionRecorder(), ExtractionRecorder)


class TestRecordingDoesNotChangeOutput:
    def test_outputs_are_byte_identical(self, settings):
        """Test production and diagnostic extraction produce the same article."""
        production = ArticleExtractor(settings).extract(ARTICLE, "https://example.com/harbour")
        recorder = RecordingExtractionRecorder()
        recorded = ArticleExtractor(settings, recorder=recorder).extract(ARTICLE, "https://example.com/harbour")

        assert json.dumps(production.to_dict(), sort_keys=True) == json.dumps(recorded.to_dict(), sort_keys=True)
        assert recorder.traces

    def test_diagnose_extraction(self, settings):
        # Act
        diagnosis = diagnose_extraction(ARTICLE, "https://example.com/harbour", settings)

        # Assert
        assert diagnosis.consistent is True
        assert diagnosis.article.strategy == "selectors"
        by_field = diagnosis.traces_by_field()
        assert by_field["content"][0]["selector"] == '[data-component="text-block"]'
        assert by_field["title"][0]["value"] == "Harbour reopens"
        assert diagnosis.to_dict()["article"]["title"] == "Harbour reopens"
