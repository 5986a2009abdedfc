"""Read access to the source registry."""

import logging
from typing import Optional, List, Dict, Any
from sqlalchemy import select

from newsingest.database.models.source import Source
from newsingest.database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class SourceRepository(BaseRepository[Source]):
    """Repository for news sources."""

    model_class = Source

    async def get_by_name(self, name: str) -> Optional[Source]:
        return await self.get_by_field("name", name)

    async def get_by_names(self, names: List[str]) -> Dict[str, Source]:
        """Fetch several sources at once, keyed by name. Unknown names are absent."""
        if not names:
            return {}
        async with self.session() as session:
            query = select(Source).where(Source.name.in_(names))
            result = await session.execute(query)
            return {source.name: source for source in result.scalars().all()}

    async def list_active(self) -> List[Source]:
        async with self.session() as session:
            query = select(Source).where(Source.is_active.is_(True)).order_by(Source.name)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def create_source(
        self,
        name: str,
        domain: str,
        rss_url: str,
        delay_between_requests: int = 1000,
        timeout_ms: int = 30000,
        user_agent: Optional[str] = None,
        respect_robots_txt: bool = True,
        candidate_multiplier: Optional[float] = None,
        **extra: Any
    ) -> Source:
        source = await self.create({
            "name": name,
            "domain": domain,
            "rss_url": rss_url,
            "delay_between_requests": delay_between_requests,
            "timeout_ms": timeout_ms,
            "user_agent": user_agent,
            "respect_robots_txt": respect_robots_txt,
            "candidate_multiplier": candidate_multiplier,
            **extra,
        })
        logger.info("Source registered", extra={"source_name": name, "domain": domain})
        return source
