from fastapi import APIRouter, Depends, Path, Query

from karaoke_server.core.exceptions import NotFoundError
from karaoke_server.core.logging import get_logger
from karaoke_server.dependencies import get_catalog_search
from karaoke_server.schemas.song import YOUTUBE_VIDEO_ID_PATTERN, SearchResultResponse
from karaoke_server.services.catalog_search import CatalogSearchService

logger = get_logger("api.song")
router = APIRouter()


@router.get("/search", response_model=list[SearchResultResponse])
async def search_songs(
    q: str = Query("", description="Search term; 'karaoke' is added automatically"),
    max_results: int | None = Query(None, alias="maxResults", ge=1),
    catalog: CatalogSearchService = Depends(get_catalog_search),
):
    """Search the video catalog for karaoke tracks"""
    logger.debug(f"Searching songs: {q!r}")
    results = await catalog.search(q, max_results)
    return [SearchResultResponse(**vars(candidate)) for candidate in results]


@router.get("/{video_id}", response_model=SearchResultResponse)
async def get_video(
    video_id: str = Path(..., pattern=YOUTUBE_VIDEO_ID_PATTERN),
    catalog: CatalogSearchService = Depends(get_catalog_search),
):
    """Get catalog details for one video"""
    candidate = await catalog.get_video_details(video_id)
    if candidate is None:
        raise NotFoundError("Video", video_id)
    return SearchResultResponse(**vars(candidate))
