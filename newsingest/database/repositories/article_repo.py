"""Repository for persisted articles (``scraped_content``).

Reads open their own session. Writes used by the persistence layer take the
caller's ``session`` so they join its per-source transaction.
"""

import logging
from typing import Optional, List, Dict, Any, Iterable, Set
from uuid import UUID
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from newsingest.database.models.scraped_article import ScrapedArticle
from newsingest.database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class ScrapedArticleRepository(BaseRepository[ScrapedArticle]):
    """Repository for managing persisted articles."""

    model_class = ScrapedArticle

    async def existing_urls(self, urls: Iterable[str]) -> Set[str]:
        """Return the subset of ``urls`` that is already stored."""
        url_list = list(dict.fromkeys(urls))
        if not url_list:
            return set()
        async with self.session() as session:
            result = await session.execute(
                select(ScrapedArticle.source_url).where(ScrapedArticle.source_url.in_(url_list))
            )
            return set(result.scalars().all())

    async def find_duplicate(
        self,
        session: AsyncSession,
        source_id: UUID,
        source_url: str,
        content_hash: Optional[str]
    ) -> Optional[str]:
        """Return the reason an article would be a duplicate, or None.

        A URL is unique across all sources. A content hash only counts as a
        duplicate within the same source, so syndicated copies stay attributed
        to every outlet that published them.
        """
        url_match = await session.scalar(
            select(ScrapedArticle.id).where(ScrapedArticle.source_url == source_url).limit(1)
        )
        if url_match is not None:
            return "source_url"
        if not content_hash:
            return None
        hash_match = await session.scalar(
            select(ScrapedArticle.id).where(
                ScrapedArticle.source_id == source_id,
                ScrapedArticle.content_hash == content_hash
            ).limit(1)
        )
        return "content_hash" if hash_match is not None else None

    async def add_article(self, session: AsyncSession, data: Dict[str, Any]) -> ScrapedArticle:
        """Insert one article inside the caller's transaction and flush it."""
        article = ScrapedArticle(**data)
        session.add(article)
        await session.flush()
        return article

    async def count_for_job_source(self, job_id: UUID, source_id: UUID) -> int:
        async with self.session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(ScrapedArticle)
                .where(ScrapedArticle.job_id == job_id, ScrapedArticle.source_id == source_id)
            )
            return result.scalar() or 0

    async def ids_for_job_source(self, job_id: UUID, source_id: UUID, limit: Optional[int] = None) -> List[UUID]:
        async with self.session() as session:
            query = (
                select(ScrapedArticle.id)
                .where(ScrapedArticle.job_id == job_id, ScrapedArticle.source_id == source_id)
                .order_by(ScrapedArticle.created_at)
            )
            if limit:
                query = query.limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def counts_by_source_for_job(self, job_id: UUID) -> Dict[UUID, int]:
        async with self.session() as session:
            result = await session.execute(
                select(ScrapedArticle.source_id, func.count())
                .where(ScrapedArticle.job_id == job_id)
                .group_by(ScrapedArticle.source_id)
            )
            return {source_id: count for source_id, count in result.all()}

    async def list_for_job(
        self,
        job_id: UUID,
        source_id: Optional[UUID] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[ScrapedArticle]:
        async with self.session() as session:
            query = select(ScrapedArticle).where(ScrapedArticle.job_id == job_id)
            if source_id is not None:
                query = query.where(ScrapedArticle.source_id == source_id)
            query = query.order_by(ScrapedArticle.created_at).offset(offset).limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())
