"""Read-only view of the source registry."""

from fastapi import APIRouter, Depends

from newsingest.api.schemas.source import SourceListResponse, SourceResponse
from newsingest.database.repositories import SourceRepository

router = APIRouter(prefix="/api/v1/sources", tags=["sources"])


def get_source_repository() -> SourceRepository:
    return SourceRepository()


@router.get("", response_model=SourceListResponse)
async def list_sources(source_repo: SourceRepository = Depends(get_source_repository)) -> SourceListResponse:
    sources = await source_repo.list_active()
    return SourceListResponse(
        sources=[SourceResponse.model_validate(source) for source in sources],
        total=len(sources)
    )
