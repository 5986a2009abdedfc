"""Extraction diagnostics.

The diagnostic path runs the exact production cascade twice, once with the
no-op recorder and once recording, and reports whether the two articles are
identical. Only when they are can the traces be trusted to explain what
production extracted.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List

from newsingest.core.crawler.extractor import ArticleExtractor, ArticleFields
from newsingest.core.crawler.recorder import ExtractionRecorder, ExtractionTrace, RecordingExtractionRecorder
from newsingest.shared.config import Settings


@dataclass
class ExtractionDiagnosis:
    url: str
    article: ArticleFields
    traces: List[ExtractionTrace] = field(default_factory=list)
    consistent: bool = True

    def traces_by_field(self) -> Dict[str, List[Dict[str, Any]]]:
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for trace in self.traces:
            grouped.setdefault(trace.field, []).append(trace.to_dict())
        return grouped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "consistent": self.consistent,
            "article": self.article.to_dict(),
            "traces": [trace.to_dict() for trace in self.traces],
        }


def _serialize(article: ArticleFields) -> str:
    return json.dumps(article.to_dict(), sort_keys=True, ensure_ascii=False, default=str)


def diagnose_extraction(html: str, url: str, settings: Settings) -> ExtractionDiagnosis:
    """Extract ``html`` with and without recording and compare the outputs.

    Raises:
        ExtractionParsingError: If the document cannot be parsed
    """
    production = ArticleExtractor(settings, recorder=ExtractionRecorder()).extract(html, url)
    recorder = RecordingExtractionRecorder()
    recorded = ArticleExtractor(settings, recorder=recorder).extract(html, url)

    return ExtractionDiagnosis(
        url=url,
        article=recorded,
        traces=recorder.traces,
        consistent=_serialize(production) == _serialize(recorded)
    )
