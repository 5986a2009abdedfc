#!/usr/bin/env python3
"""Show how the extraction cascade handles one page.

Runs production extraction with and without recording, prints every field
trace (selector and method) and the resulting article, and reports whether
the two runs produced identical output.

Usage:
    python scripts/inspect_extraction.py https://example.com/news/story
    python scripts/inspect_extraction.py --file saved_page.html --url https://example.com/news/story
    python scripts/inspect_extraction.py https://example.com/news/story --json
"""

import argparse
import json
import os
import sys

import httpx

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from newsingest.core.crawler.diagnostics import diagnose_extraction
from newsingest.shared.config import get_settings
from newsingest.shared.exceptions import ExtractionError


def load_document(args, settings) -> str:
    if args.file:
        with open(args.file, encoding="utf-8") as handle:
            return handle.read()
    response = httpx.get(
        args.url,
        headers={"User-Agent": settings.DEFAULT_USER_AGENT},
        timeout=settings.FETCH_TIMEOUT,
        follow_redirects=True
    )
    response.raise_for_status()
    return response.text


def print_report(diagnosis) -> None:
    print(f"URL: {diagnosis.url}")
    print(f"Consistent with production: {'yes' if diagnosis.consistent else 'NO'}")
    print("=" * 60)
    for field_name, traces in diagnosis.traces_by_field().items():
        print(f"\n[{field_name}]")
        for trace in traces:
            preview = trace["value"].replace("\n", " ")[:80]
            print(f"  {trace['method']:<14} {trace['selector']:<40} {preview}")

    article = diagnosis.article
    print("\n" + "=" * 60)
    print(f"Strategy: {article.strategy} ({article.quality})")
    print(f"Title:    {article.title}")
    print(f"Author:   {article.author or '-'}")
    print(f"Date:     {article.published_at.isoformat() if article.published_at else '-'}")
    print(f"Length:   {article.content_length}")
    print("-" * 60)
    print(article.content)


def main() -> int:
    parser = argparse.ArgumentParser(description="Inspect article extraction for one page")
    parser.add_argument("url", nargs="?", help="Page URL to fetch (or the base URL when --file is used)")
    parser.add_argument("--file", help="Read HTML from a local file instead of fetching")
    parser.add_argument("--json", action="store_true", help="Print the diagnosis as JSON")
    args = parser.parse_args()

    if not args.url:
        parser.error("a URL is required, also with --file")

    settings = get_settings()
    try:
        html = load_document(args, settings)
        diagnosis = diagnose_extraction(html, args.url, settings)
    except (OSError, httpx.HTTPError, ExtractionError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(diagnosis.to_dict(), indent=2, ensure_ascii=False, default=str))
    else:
        print_report(diagnosis)
    return 0 if diagnosis.consistent else 2


if __name__ == "__main__":
    sys.exit(main())
