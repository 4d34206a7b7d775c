from typing import List
from fastapi import APIRouter, Depends
from apps.core.models import MediaKind, TvSummary, MovieSummary, EpisodeSummary, SearchResult, CastPerson
from apps.core.tmdb import TMDBService, parse_ids

router = APIRouter(prefix="/api/tmdb", tags=["catalog"])

async def get_catalog():
    service = TMDBService()
    try:
        yield service
    finally:
        await service.close()

@router.get("/tv-summaries", response_model=List[TvSummary])
async def tv_summaries(ids: str = "", catalog: TMDBService = Depends(get_catalog)):
    return await catalog.get_tv_summaries(parse_ids(ids))

@router.get("/movie-summaries", response_model=List[MovieSummary])
async def movie_summaries(ids: str = "", catalog: TMDBService = Depends(get_catalog)):
    return await catalog.get_movie_summaries(parse_ids(ids))

@router.get("/tv-episodes", response_model=List[EpisodeSummary])
async def tv_episodes(id: int, catalog: TMDBService = Depends(get_catalog)):
    if id <= 0:
        return []
    return await catalog.get_episodes(id)

@router.get("/search", response_model=List[SearchResult])
async def search(q: str = "", catalog: TMDBService = Depends(get_catalog)):
    return await catalog.search(q)

@router.get("/cast/{media_type}/{tmdb_id}", response_model=List[CastPerson])
async def cast(media_type: MediaKind, tmdb_id: int, catalog: TMDBService = Depends(get_catalog)):
    return await catalog.get_cast(media_type.value, tmdb_id)
