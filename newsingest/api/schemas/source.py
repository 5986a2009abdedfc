from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class SourceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    domain: str
    rss_url: str
    delay_between_requests: int
    timeout_ms: int
    user_agent: Optional[str] = None
    respect_robots_txt: bool
    candidate_multiplier: Optional[float] = None
    is_active: bool


class SourceListResponse(BaseModel):
    sources: List[SourceResponse]
    total: int
