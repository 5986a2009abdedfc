"""Extraction recorder: traces which selector produced which field.

Every primitive read performed by the extraction cascade goes through an
``ExtractionRecorder``. Production injects the no-op base class; the diagnostic
tool injects ``RecordingExtractionRecorder``. Both run the exact same read
code, so the article they produce is identical and only the trace list differs.

Example:
    ```python
    recorder = RecordingExtractionRecorder()
    extractor = ArticleExtractor(settings, recorder=recorder)
    fields = extractor.extract(html, url)
    for trace in recorder.traces:
        print(trace.field, trace.selector, trace.method, trace.value[:40])
    ```
"""

from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Sequence

from bs4 import Tag

from newsingest.core.crawler.content import normalize_whitespace, top_level_matches


@dataclass(frozen=True)
class ExtractionTrace:
    field: str
    selector: str
    method: str
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ExtractionRecorder:
    """Performs the primitive reads and records nothing. Injected in production."""

    __slots__ = ()

    enabled = False

    @property
    def traces(self) -> List[ExtractionTrace]:
        return []

    def _record(self, field: str, selector: str, method: str, value: str) -> None:
        pass

    def text(self, root: Tag, selector: str, field: str) -> str:
        """Whitespace-normalised text of the first element matching ``selector``."""
        element = root.select_one(selector)
        value = normalize_whitespace(element.get_text(" ", strip=True)) if element is not None else ""
        if self.enabled and value:
            self._record(field, selector, "text", value)
        return value

    def attr(self, root: Tag, selector: str, attribute: str, field: str) -> str:
        """Attribute value of the first element matching ``selector``."""
        element = root.select_one(selector)
        raw = element.get(attribute) if element is not None else None
        if isinstance(raw, list):
            raw = " ".join(raw)
        value = normalize_whitespace(raw or "")
        if self.enabled and value:
            self._record(field, selector, f"attr:{attribute}", value)
        return value

    def content(
        self,
        root: Tag,
        selector: str,
        field: str,
        render: Callable[[Sequence[Tag]], str]
    ) -> str:
        """Aggregate every element matching ``selector`` into one body.

        Matches nested inside another match are dropped so each node's text is
        counted once.
        """
        elements = top_level_matches(root.select(selector))
        value = render(elements) if elements else ""
        if self.enabled and value:
            self._record(field, selector, f"content[{len(elements)}]", value)
        return value

    def json_ld(self, field: str, value: str, selector: str = 'script[type="application/ld+json"]') -> str:
        if self.enabled and value:
            self._record(field, selector, "json-ld", value)
        return value


class RecordingExtractionRecorder(ExtractionRecorder):
    """Same reads as ``ExtractionRecorder``, keeping a trace of every non-empty one."""

    __slots__ = ("_traces",)

    enabled = True

    def __init__(self):
        self._traces: List[ExtractionTrace] = []

    @property
    def traces(self) -> List[ExtractionTrace]:
        return list(self._traces)

    def _record(self, field: str, selector: str, method: str, value: str) -> None:
        self._traces.append(ExtractionTrace(field, selector, method, value))
