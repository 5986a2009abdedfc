"""Candidates and tracking IDs.

A tracking ID embeds the owning source's ID (``"<source_id>:<hex>"``) so any
extraction result can be attributed back to its source from the ID alone.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple
from uuid import UUID, uuid4

from newsingest.core.crawler.feed import FeedItem

TRACKING_ID_SEPARATOR = ":"


def new_tracking_id(source_id: UUID) -> str:
    return f"{source_id}{TRACKING_ID_SEPARATOR}{uuid4().hex}"


def source_id_from_tracking_id(tracking_id: str) -> Optional[UUID]:
    prefix, _, suffix = tracking_id.partition(TRACKING_ID_SEPARATOR)
    if not suffix:
        return None
    try:
        return UUID(prefix)
    except ValueError:
        return None


@dataclass(frozen=True)
class Candidate:
    tracking_id: str
    job_id: UUID
    source_id: UUID
    source_name: str
    url: str
    title: Optional[str] = None
    published: Optional[datetime] = None
    correlation_id: Optional[str] = None
    position: int = 0


def select_candidates(
    items: Iterable[FeedItem],
    existing_urls: Set[str],
    job_id: UUID,
    source_id: UUID,
    source_name: str,
    articles_per_source: int,
    margin: float,
    scan_multiplier: float,
    correlation_id: Optional[str] = None
) -> Tuple[List[Candidate], int]:
    """Turn feed items into candidates.

    At most ``articles_per_source * scan_multiplier`` items are examined and at
    most ``ceil(articles_per_source * margin)`` candidates are kept. Items whose
    URL is already stored, or repeated in the feed, are skipped.

    Returns:
        ``(candidates, already_stored_count)``
    """
    scan_limit = math.ceil(articles_per_source * max(scan_multiplier, margin))
    keep_limit = math.ceil(articles_per_source * margin)

    candidates: List[Candidate] = []
    seen: Set[str] = set()
    already_stored = 0

    for index, item in enumerate(items):
        if index >= scan_limit or len(candidates) >= keep_limit:
            break
        if item.url in seen:
            continue
        seen.add(item.url)
        if item.url in existing_urls:
            already_stored += 1
            continue
        candidates.append(Candidate(
            tracking_id=new_tracking_id(source_id),
            job_id=job_id,
            source_id=source_id,
            source_name=source_name,
            url=item.url,
            title=item.title,
            published=item.published,
            correlation_id=correlation_id,
            position=len(candidates)
        ))

    return candidates, already_stored
