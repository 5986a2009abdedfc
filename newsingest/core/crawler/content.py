"""Content structure helpers used by the extraction cascade.

Paragraphs are joined with ``PARAGRAPH_SEPARATOR`` so that paragraph breaks
survive later whitespace normalisation by consumers.
"""

import copy
import hashlib
import re
from typing import Iterable, List, Sequence

from bs4 import Tag

PARAGRAPH_SEPARATOR = "\n\n\n"

# Removed unconditionally from every content element before reading its text
NOISE_SELECTORS = (
    "script",
    "style",
    "noscript",
    "template",
    "iframe",
    "nav",
    "aside",
    "footer",
    "form",
    "figure",
    "figcaption",
    "[role=navigation]",
    "[role=complementary]",
    "[role=banner]",
    "[aria-hidden=true]",
    ".navigation",
    ".social-share",
    "[class*=share-buttons]",
    "[class*=newsletter]",
    "[class*=advert]",
    ".ad-container",
    ".ads",
    "[class*=promo]",
    "[class*=banner]",
    ".related-articles",
    "[class*=related-content]",
    ".comments",
    "[class*=caption]",
    "[class*=video-player]",
)
NOISE_SELECTOR = ", ".join(NOISE_SELECTORS)

_WHITESPACE_RE = re.compile(r"\s+")
_EXCESS_NEWLINES_RE = re.compile(r"\n{4,}")
_LINE_BREAKS_RE = re.compile(r"\s*\n\s*")


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def top_level_matches(elements: Iterable[Tag]) -> List[Tag]:
    """Drop matches that sit inside another match, keeping document order."""
    matched = list(elements)
    matched_ids = {id(element) for element in matched}
    return [
        element for element in matched
        if not any(id(parent) in matched_ids for parent in element.parents)
    ]


def strip_noise(element: Tag) -> Tag:
    """Return a detached copy of ``element`` without known non-content containers."""
    cleaned = copy.copy(element)
    for noise in cleaned.select(NOISE_SELECTOR):
        noise.decompose()
    return cleaned


def is_link_only_upper_paragraph(paragraph: Tag, min_length: int) -> bool:
    """Structural test for "related link" paragraphs.

    True only when the paragraph is entirely one hyperlink, entirely
    upper-case and longer than ``min_length``. Nothing here looks at what the
    words are.
    """
    text = normalize_whitespace(paragraph.get_text(" ", strip=True))
    if len(text) <= min_length:
        return False
    if text.upper() != text or text.lower() == text:
        return False

    links = paragraph.find_all("a")
    if len(links) != 1:
        return False
    return normalize_whitespace(links[0].get_text(" ", strip=True)) == text


def element_paragraphs(element: Tag, link_min_length: int) -> List[str]:
    """Paragraph texts of one (already cleaned) content element."""
    if element.name == "p":
        candidates = [element]
    else:
        candidates = element.find_all("p")

    if not candidates:
        text = normalize_whitespace(element.get_text(" ", strip=True))
        return [text] if text else []

    paragraphs = []
    for paragraph in candidates:
        if is_link_only_upper_paragraph(paragraph, link_min_length):
            continue
        text = normalize_whitespace(paragraph.get_text(" ", strip=True))
        if text:
            paragraphs.append(text)
    return paragraphs


def render_paragraphs(elements: Sequence[Tag], link_min_length: int) -> str:
    """Clean each element and join all of their paragraphs, in document order."""
    paragraphs: List[str] = []
    for element in elements:
        paragraphs.extend(element_paragraphs(strip_noise(element), link_min_length))
    return PARAGRAPH_SEPARATOR.join(paragraphs)


def text_to_paragraphs(text: str) -> str:
    """Normalise plain text (JSON-LD bodies, meta descriptions) keeping line breaks as paragraphs."""
    if not text:
        return ""
    lines = [normalize_whitespace(line) for line in _LINE_BREAKS_RE.split(text.strip())]
    return PARAGRAPH_SEPARATOR.join(line for line in lines if line)


def collapse_separators(text: str) -> str:
    return _EXCESS_NEWLINES_RE.sub(PARAGRAPH_SEPARATOR, text).strip()


def compute_content_hash(title: str, content: str) -> str:
    """sha256 over the normalised title and the first 2000 characters of the body."""
    normalized_title = normalize_whitespace(title).lower()
    normalized_content = normalize_whitespace(content[:2000]).lower()
    return hashlib.sha256(f"{normalized_title}:{normalized_content}".encode("utf-8")).hexdigest()


_RTL_HEBREW_RE = re.compile(r"[\u0590-\u05FF]")
_RTL_ARABIC_RE = re.compile(r"[\u0600-\u06FF\u0700-\u074F]")

_LANGUAGE_PATTERNS = {
    "en": re.compile(r"\b(the|and|of|to|in|is|that|it|was|for|with|as|on|at|by|from|this|have|been|are|were)\b", re.I),
    "fr": re.compile(r"\b(le|la|les|un|une|de|du|des|et|est|pour|que|dans|avec)\b", re.I),
    "es": re.compile(r"\b(el|la|los|las|un|una|de|del|y|es|en|que|por|para|con)\b", re.I),
    "de": re.compile(r"\b(der|die|das|ein|eine|und|ist|von|mit|für|auf|den|dem)\b", re.I),
    "it": re.compile(r"\b(il|la|lo|gli|le|un|una|di|del|della|e|è|per|che|con|da)\b", re.I),
    "pt": re.compile(r"\b(o|a|os|as|um|uma|de|do|da|e|é|para|que|com|por|em|no|na|nos|nas)\b", re.I),
    "nl": re.compile(r"\b(de|het|een|van|en|is|in|op|voor|met|te|dat|die)\b", re.I),
    "ru": re.compile(r"[\u0400-\u04FF]"),
    "zh": re.compile(r"[\u4E00-\u9FFF]"),
    "ja": re.compile(r"[\u3040-\u309F\u30A0-\u30FF]"),
    "ko": re.compile(r"[\uAC00-\uD7AF]"),
}


def detect_language(text: str) -> str:
    """Cheap word-frequency language guess; defaults to ``en`` when unsure."""
    if not text or len(text) < 20:
        return "en"

    hebrew = len(_RTL_HEBREW_RE.findall(text))
    arabic = len(_RTL_ARABIC_RE.findall(text))
    if hebrew or arabic:
        return "he" if hebrew > arabic else "ar"

    best_language, best_score = "en", 0
    for language, pattern in _LANGUAGE_PATTERNS.items():
        score = len(pattern.findall(text))
        if score > best_score:
            best_language, best_score = language, score

    return best_language if best_score >= 5 else "en"
